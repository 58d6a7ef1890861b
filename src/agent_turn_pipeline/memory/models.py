from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class SessionRecord:
    id: str
    agent_slug: str
    user_id: str | None
    organization_id: str | None
    created_at: str
    updated_at: str
    status: str
    title: str


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    seq: int
    role: Role
    content: str
    created_at: str
    payload: BaseModel | None = None

    def as_history_entry(self) -> dict:
        return {"role": self.role, "content": self.content}
