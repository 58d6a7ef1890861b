"""Wire envelope for turn events sent to the client."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

KEEPALIVE_FRAME = ": keepalive\n\n"

TurnEventName = Literal[
    "turn.start",
    "turn.chunk",
    "turn.complete",
    "turn.error",
    "turn.cancelled",
]

TERMINAL_EVENTS = frozenset({"turn.complete", "turn.error", "turn.cancelled"})


class TurnEvent(BaseModel):
    """One frame of a turn: start, 0..n chunks, then exactly one terminal event."""

    event: TurnEventName
    session_id: str
    turn_id: str
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_sse(self) -> str:
        """Serialize to a server-sent-events frame."""
        return f"event: {self.event}\ndata: {self.to_json()}\n\n"


def turn_start(session_id: str, turn_id: str, user_text: str) -> TurnEvent:
    return TurnEvent(
        event="turn.start",
        session_id=session_id,
        turn_id=turn_id,
        data={"sessionId": session_id, "userText": user_text},
    )


def turn_chunk(session_id: str, turn_id: str, text: str) -> TurnEvent:
    return TurnEvent(event="turn.chunk", session_id=session_id, turn_id=turn_id, data={"text": text})


def turn_complete(
    session_id: str,
    turn_id: str,
    conversational_text: str,
    payload: dict | None,
    extracted: bool,
) -> TurnEvent:
    return TurnEvent(
        event="turn.complete",
        session_id=session_id,
        turn_id=turn_id,
        data={"conversationalText": conversational_text, "payload": payload, "extracted": extracted},
    )


def turn_error(session_id: str, turn_id: str, kind: str, message: str) -> TurnEvent:
    return TurnEvent(
        event="turn.error",
        session_id=session_id,
        turn_id=turn_id,
        data={"kind": kind, "message": message},
    )


def turn_cancelled(session_id: str, turn_id: str) -> TurnEvent:
    return TurnEvent(event="turn.cancelled", session_id=session_id, turn_id=turn_id)
