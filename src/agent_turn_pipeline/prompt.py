"""Turns a user message, its history and domain context into a prompt pair.

Everything here is pure: no I/O, same inputs give the same strings.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from agent_turn_pipeline.extraction import ExtractionParser, Grammar, PayloadBuilder, dump_payload

MAX_DOCUMENT_CHARS = 50_000
_TRUNCATION_NOTE = "\n[... document truncated ...]"
_HISTORY_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class DomainContext:
    current_payload: BaseModel | dict | None = None
    document_text: str | None = None
    document_name: str | None = None
    records: Sequence[dict] = ()


@dataclass(frozen=True)
class PromptPair:
    system_prompt: str
    user_prompt: str


ContextRenderer = Callable[["AgentDescriptor", DomainContext], str]


@dataclass(frozen=True)
class AgentDescriptor:
    slug: str
    name: str
    system_prompt: str
    history_window: int
    grammars: tuple[Grammar, ...]
    build_payload: PayloadBuilder
    payload_label: str
    context_renderer: ContextRenderer | None = None
    document_label: str = "Attached document"
    greeting: str = ""

    def parser(self) -> ExtractionParser:
        return ExtractionParser(self.grammars, self.build_payload)

    def render_context(self, context: DomainContext) -> str:
        renderer = self.context_renderer or render_current_state
        return renderer(self, context)


def payload_to_dict(payload: BaseModel | dict | None) -> dict | None:
    if payload is None:
        return None
    if isinstance(payload, BaseModel):
        return dump_payload(payload)
    return dict(payload)


def render_current_state(descriptor: AgentDescriptor, context: DomainContext) -> str:
    current = payload_to_dict(context.current_payload)
    if current is None:
        return f"Current {descriptor.payload_label} state: No {descriptor.payload_label} started yet"
    return f"Current {descriptor.payload_label} state: {json.dumps(current, ensure_ascii=False)}"


def render_activity_log(descriptor: AgentDescriptor, context: DomainContext, *, limit: int = 20) -> str:
    if not context.records:
        return "**Activity Log Context:**\nNo recent activities found."
    lines = []
    for record in list(context.records)[:limit]:
        line = f"- {record.get('createdAt', '')}: {record.get('action', 'activity')} on {record.get('resource', 'unknown')}"
        if record.get("resourceId"):
            line += f" ({record['resourceId']})"
        if record.get("metadata"):
            line += f" - {json.dumps(record['metadata'], ensure_ascii=False, sort_keys=True)}"
        lines.append(line)
    return "**Activity Log Context:**\nRecent activities:\n" + "\n".join(lines)


def window_history(history: Iterable[Any], window: int) -> list[tuple[str, str]]:
    entries = []
    for item in history:
        if isinstance(item, dict):
            role, content = item.get("role"), item.get("content")
        else:
            role, content = getattr(item, "role", None), getattr(item, "content", None)
        if role in _HISTORY_ROLES and isinstance(content, str):
            entries.append((role, content))
    if window <= 0:
        return []
    return entries[-window:]


def render_document(label: str, text: str, name: str | None = None) -> str:
    if len(text) > MAX_DOCUMENT_CHARS:
        text = text[:MAX_DOCUMENT_CHARS] + _TRUNCATION_NOTE
    heading = f"{label} ({name}):" if name else f"{label}:"
    return f"{heading}\n---DOCUMENT START---\n{text}\n---DOCUMENT END---"


def assemble(
    descriptor: AgentDescriptor,
    message: str,
    history: Iterable[Any] = (),
    context: DomainContext | None = None,
) -> PromptPair:
    context = context or DomainContext()

    context_section = descriptor.render_context(context)
    system_prompt = descriptor.system_prompt
    if context_section:
        system_prompt = f"{system_prompt}\n\n{context_section}"

    parts: list[str] = []
    if context.document_text:
        parts.append(render_document(descriptor.document_label, context.document_text, context.document_name))
    parts.extend(f"{role}: {content}" for role, content in window_history(history, descriptor.history_window))

    if not parts:
        return PromptPair(system_prompt, message)
    parts.append(f"user: {message}")
    return PromptPair(system_prompt, "\n\n".join(parts))
