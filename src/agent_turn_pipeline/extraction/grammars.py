"""Embedding grammars: how a model hides a structured object inside prose.

Each grammar inspects a full response and reports a ``GrammarMatch`` when its
boundary markers are present. ``raw`` is None when the markers were found but
the body could not be decoded.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class GrammarMatch:
    grammar: str
    conversational_text: str
    raw: dict[str, Any] | None


@runtime_checkable
class Grammar(Protocol):
    name: str
    priority: int

    def match(self, text: str) -> GrammarMatch | None: ...


def _loads_object(candidate: str) -> dict[str, Any] | None:
    """Decode a JSON object, tolerating trailing prose after it. Never raises."""
    candidate = candidate.strip()
    if not candidate:
        return None
    fenced = _FENCE_RE.search(candidate)
    if fenced is not None and candidate.startswith("```"):
        candidate = fenced.group("body").strip()
    start = candidate.find("{")
    if start == -1:
        return None
    try:
        value, _ = json.JSONDecoder().raw_decode(candidate[start:])
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


class MarkerBlockGrammar:
    """``---DOCUMENT---`` block with ``TITLE:``/``TYPE:``/``CONTENT:`` fields."""

    name = "document_block"
    priority = 1

    _TITLE_RE = re.compile(r"^\s*TITLE:[ \t]*(.+)$", re.MULTILINE)
    _TYPE_RE = re.compile(r"^\s*TYPE:[ \t]*(.+)$", re.MULTILINE)
    _CONTENT_RE = re.compile(r"^\s*CONTENT:[ \t]*(.*)$", re.MULTILINE | re.DOTALL)

    def __init__(self, start_marker: str = "---DOCUMENT---", end_marker: str = "---END DOCUMENT---"):
        self.start_marker = start_marker
        self.end_marker = end_marker

    def match(self, text: str) -> GrammarMatch | None:
        start = text.find(self.start_marker)
        if start == -1:
            return None
        end = text.find(self.end_marker, start + len(self.start_marker))
        if end == -1:
            return None

        conversational = text[:start].strip()
        block = text[start + len(self.start_marker):end].strip()

        title = self._TITLE_RE.search(block)
        content = self._CONTENT_RE.search(block)
        if title is None or content is None or not content.group(1).strip():
            return GrammarMatch(self.name, conversational, None)

        doc_type = self._TYPE_RE.search(block)
        return GrammarMatch(
            self.name,
            conversational,
            {
                "title": title.group(1).strip(),
                "type": doc_type.group(1).strip() if doc_type else "Document",
                "content": content.group(1).strip(),
                "status": "complete",
            },
        )


class DelimiterJsonGrammar:
    """Prose, then a single delimiter line, then a JSON object."""

    name = "delimiter_json"
    priority = 2

    def __init__(self, delimiter: str):
        self.delimiter = delimiter
        self.name = f"delimiter_json:{delimiter.strip('-').lower()}"

    def match(self, text: str) -> GrammarMatch | None:
        index = text.find(self.delimiter)
        if index == -1:
            return None
        conversational = text[:index].strip()
        raw = _loads_object(text[index + len(self.delimiter):])
        return GrammarMatch(self.name, conversational, raw)


_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(?P<body>.*?)```", re.DOTALL)
_JSON_FENCE_RE = re.compile(r"```(?:json|JSON)[ \t]*\r?\n?(?P<body>.*?)```", re.DOTALL)


class FencedJsonGrammar:
    """A ```json fenced block, optionally wrapping the payload under ``embedding_key``."""

    name = "fenced_json"
    priority = 3

    def __init__(self, embedding_key: str | None = None):
        self.embedding_key = embedding_key

    def match(self, text: str) -> GrammarMatch | None:
        first: GrammarMatch | None = None
        for fence in _JSON_FENCE_RE.finditer(text):
            conversational = (text[:fence.start()] + text[fence.end():]).strip()
            raw = _loads_object(fence.group("body"))
            if raw is not None and self.embedding_key:
                inner = raw.get(self.embedding_key)
                if isinstance(inner, dict):
                    raw = inner
            if raw is not None:
                return GrammarMatch(self.name, conversational, raw)
            if first is None:
                first = GrammarMatch(self.name, conversational, None)
        return first


_MARKUP_RE = re.compile(r"[*_#`>]+")


class HeuristicDocumentGrammar:
    """Last-resort document detection for responses with no explicit marker.

    Fires when the response is longer than ``min_length`` and either carries a
    document heading phrase or both a salutation and a closing.
    """

    name = "heuristic_document"
    priority = 4

    DEFAULT_HEADINGS = (
        "ENGAGEMENT LETTER",
        "SERVICE AGREEMENT",
        "LETTER OF ENGAGEMENT",
        "SCOPE OF SERVICES",
        "TERMS AND CONDITIONS",
    )
    DEFAULT_SALUTATIONS = ("Dear ", "To whom it may concern")
    DEFAULT_CLOSINGS = ("Sincerely", "Yours faithfully", "Yours truly", "Kind regards", "Best regards")

    def __init__(
        self,
        *,
        min_length: int = 500,
        max_title_length: int = 80,
        headings: tuple[str, ...] = DEFAULT_HEADINGS,
        salutations: tuple[str, ...] = DEFAULT_SALUTATIONS,
        closings: tuple[str, ...] = DEFAULT_CLOSINGS,
    ):
        self.min_length = min_length
        self.max_title_length = max_title_length
        self.headings = headings
        self.salutations = salutations
        self.closings = closings

    def match(self, text: str) -> GrammarMatch | None:
        body = text.strip()
        if len(body) <= self.min_length:
            return None
        upper = body.upper()
        has_heading = any(h.upper() in upper for h in self.headings)
        has_letter_shape = any(s in body for s in self.salutations) and any(c in body for c in self.closings)
        if not (has_heading or has_letter_shape):
            return None
        return GrammarMatch(
            self.name,
            body,
            {"title": self.derive_title(body), "type": "Document", "content": body, "status": "complete"},
        )

    def derive_title(self, body: str) -> str:
        for line in body.splitlines():
            cleaned = _MARKUP_RE.sub("", line).strip()
            if cleaned:
                if len(cleaned) > self.max_title_length:
                    return cleaned[: self.max_title_length - 3].rstrip() + "..."
                return cleaned
        return "Document"
