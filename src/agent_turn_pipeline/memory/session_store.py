from __future__ import annotations

import json
from uuid import uuid4

from pydantic import BaseModel

from agent_turn_pipeline.errors import SessionAccessError
from agent_turn_pipeline.extraction.payloads import dump_payload, load_payload
from agent_turn_pipeline.memory.events import EventEmitter, utc_now
from agent_turn_pipeline.memory.models import Message, SessionRecord
from agent_turn_pipeline.memory.store import MemoryStore

_ROLES = ("user", "assistant")


class SessionStore:
    """Append-only conversation log, one row per message."""

    def __init__(self, store: MemoryStore, events: EventEmitter, *, title_max_chars: int = 60):
        self._store = store
        self._events = events
        self._title_max_chars = title_max_chars

    @property
    def events(self) -> EventEmitter:
        return self._events

    def create(
        self,
        agent_slug: str,
        *,
        user_id: str | None = None,
        organization_id: str | None = None,
        session_id: str | None = None,
        title: str | None = None,
    ) -> str:
        sid = session_id or str(uuid4())
        now = utc_now()
        metadata = {"title": title.strip()} if title and title.strip() else {}
        self._store.execute(
            """
            INSERT INTO sessions (id, agent_slug, user_id, organization_id, created_at, updated_at, status, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?, 'active', ?)
            """,
            (sid, agent_slug, user_id, organization_id, now, now, json.dumps(metadata, ensure_ascii=True)),
        )
        self._store.commit()
        self._events.emit(sid, "session.started", {"session_id": sid, "agent_slug": agent_slug})
        return sid

    def get_session(self, session_id: str) -> SessionRecord | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return self._to_record(row)

    def load_or_create(
        self,
        session_id: str,
        agent_slug: str,
        *,
        user_id: str | None = None,
        organization_id: str | None = None,
    ) -> SessionRecord:
        """Return the session, creating it when the id is new.

        An existing session is only handed back to its owner and its agent.
        """
        session = self.get_session(session_id)
        if session is not None:
            if session.agent_slug != agent_slug:
                raise SessionAccessError(f"Session {session_id} belongs to agent {session.agent_slug!r}")
            if session.user_id is not None and session.user_id != user_id:
                raise SessionAccessError(f"Session {session_id} belongs to another user")
            return session
        self.create(agent_slug, user_id=user_id, organization_id=organization_id, session_id=session_id)
        return self.get_session(session_id)

    def list_sessions(
        self,
        *,
        user_id: str | None = None,
        organization_id: str | None = None,
        agent_slug: str | None = None,
        limit: int = 50,
    ) -> list[SessionRecord]:
        clauses: list[str] = []
        params: list = []
        for column, value in (("user_id", user_id), ("organization_id", organization_id), ("agent_slug", agent_slug)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._store.execute(
            f"""
            SELECT * FROM sessions
            {where}
            ORDER BY updated_at DESC, created_at DESC
            LIMIT ?
            """,
            (*params, max(1, limit)),
        ).fetchall()
        return [self._to_record(row) for row in rows]

    def set_session_title(self, session_id: str, title: str) -> None:
        row = self._store.execute(
            "SELECT metadata_json FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            raise ValueError(f"Session does not exist: {session_id}")

        metadata = self._parse_metadata(row["metadata_json"])
        metadata["title"] = title.strip()
        self._store.execute(
            "UPDATE sessions SET metadata_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(metadata, ensure_ascii=True), utc_now(), session_id),
        )
        self._store.commit()
        self._events.emit(session_id, "session.renamed", {"session_id": session_id, "title": metadata["title"]})

    def append(self, session_id: str, role: str, content: str, payload: BaseModel | None = None) -> Message:
        if role not in _ROLES:
            raise ValueError(f"Unsupported message role: {role}")
        if payload is not None and role != "assistant":
            raise ValueError("Only assistant messages may carry a payload")

        session_row = self._store.execute(
            "SELECT metadata_json FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if session_row is None:
            raise ValueError(f"Session does not exist: {session_id}")

        row = self._store.execute(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        next_seq = int(row["max_seq"]) + 1
        message_id = str(uuid4())
        now = utc_now()
        payload_json = json.dumps(dump_payload(payload), ensure_ascii=True) if payload is not None else None

        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO messages (id, session_id, seq, role, content, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (message_id, session_id, next_seq, role, content, payload_json, now),
            )
            metadata = self._parse_metadata(session_row["metadata_json"])
            if role == "user" and not metadata.get("title") and content.strip():
                metadata["title"] = self._title_from(content)
                self._store.execute(
                    "UPDATE sessions SET metadata_json = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(metadata, ensure_ascii=True), now, session_id),
                )
            else:
                self._store.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id))

        self._events.emit(
            session_id,
            "message.appended",
            {
                "session_id": session_id,
                "message_id": message_id,
                "seq": next_seq,
                "role": role,
                "has_payload": payload is not None,
            },
        )
        return Message(
            id=message_id,
            session_id=session_id,
            seq=next_seq,
            role=role,
            content=content,
            created_at=now,
            payload=payload,
        )

    def list(self, session_id: str) -> list[Message]:
        rows = self._store.execute(
            """
            SELECT id, session_id, seq, role, content, payload_json, created_at
            FROM messages
            WHERE session_id = ?
            ORDER BY seq ASC
            """,
            (session_id,),
        ).fetchall()
        return [self._to_message(row) for row in rows]

    def latest_payload(self, session_id: str) -> BaseModel | None:
        row = self._store.execute(
            """
            SELECT payload_json FROM messages
            WHERE session_id = ? AND payload_json IS NOT NULL
            ORDER BY seq DESC
            LIMIT 1
            """,
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return self._decode_payload(row["payload_json"])

    def _to_message(self, row) -> Message:
        payload = self._decode_payload(row["payload_json"]) if row["payload_json"] else None
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            seq=int(row["seq"]),
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
            payload=payload,
        )

    def _to_record(self, row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            agent_slug=row["agent_slug"],
            user_id=row["user_id"],
            organization_id=row["organization_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            status=row["status"],
            title=self._extract_title(row["metadata_json"], row["created_at"]),
        )

    def _decode_payload(self, payload_json: str) -> BaseModel | None:
        try:
            return load_payload(json.loads(payload_json))
        except ValueError:
            return None

    def _title_from(self, content: str) -> str:
        text = " ".join(content.split())
        if len(text) <= self._title_max_chars:
            return text
        return text[: self._title_max_chars - 3].rstrip() + "..."

    def _default_title(self, iso_timestamp: str) -> str:
        return f"Session {iso_timestamp[:16].replace('T', ' ')}"

    def _extract_title(self, metadata_json: str, created_at: str) -> str:
        title = self._parse_metadata(metadata_json).get("title")
        if isinstance(title, str) and title.strip():
            return title.strip()
        return self._default_title(created_at)

    def _parse_metadata(self, metadata_json: str) -> dict:
        try:
            parsed = json.loads(metadata_json)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
