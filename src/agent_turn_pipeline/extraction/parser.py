from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel

from agent_turn_pipeline.extraction.grammars import Grammar, GrammarMatch
from agent_turn_pipeline.extraction.payloads import AnalysisRecord

PayloadBuilder = Callable[[dict[str, Any]], BaseModel]


@dataclass(frozen=True)
class ExtractionResult:
    conversational_text: str
    payload: BaseModel | None
    grammar: str | None = None

    @property
    def matched(self) -> bool:
        return self.payload is not None


def model_builder(model: type[BaseModel]) -> PayloadBuilder:
    def build(raw: dict[str, Any]) -> BaseModel:
        data = {k: v for k, v in raw.items() if k != "kind"}
        return model.model_validate(data)

    return build


def analysis_builder(schema_name: str, required_keys: Iterable[str] = ()) -> PayloadBuilder:
    required = tuple(required_keys)

    def build(raw: dict[str, Any]) -> BaseModel:
        missing = [key for key in required if key not in raw]
        if missing:
            raise ValueError(f"{schema_name} record is missing keys: {', '.join(missing)}")
        return AnalysisRecord(schema_name=schema_name, data=raw)

    return build


class ExtractionParser:
    """Recovers (prose, payload) from a finished response.

    Grammars run in priority order; the first one whose body decodes and
    validates wins. ``parse`` never raises: a miss returns the prose with no
    payload.
    """

    def __init__(self, grammars: Iterable[Grammar], build_payload: PayloadBuilder):
        self._grammars = sorted(grammars, key=lambda g: g.priority)
        self._build_payload = build_payload

    @property
    def grammars(self) -> list[Grammar]:
        return list(self._grammars)

    def parse(self, text: str) -> ExtractionResult:
        if not isinstance(text, str):
            text = "" if text is None else str(text)

        fallback: GrammarMatch | None = None
        for grammar in self._grammars:
            try:
                match = grammar.match(text)
            except Exception as ex:
                logger.warning(f"Grammar {grammar.name} failed on response: {ex}")
                continue
            if match is None:
                continue

            payload = self._build(match)
            if payload is not None:
                logger.debug(f"Extracted {type(payload).__name__} via {match.grammar}")
                return ExtractionResult(match.conversational_text, payload, match.grammar)

            if fallback is None:
                fallback = match

        if fallback is not None:
            logger.info(f"Markers for {fallback.grammar} found but payload was unusable")
            return ExtractionResult(fallback.conversational_text, None, None)
        return ExtractionResult(text, None, None)

    def _build(self, match: GrammarMatch) -> BaseModel | None:
        if match.raw is None:
            return None
        try:
            return self._build_payload(match.raw)
        except (ValueError, TypeError, RecursionError) as ex:
            # pydantic.ValidationError is a ValueError
            logger.info(f"Payload from {match.grammar} failed validation: {str(ex)[:200]}")
            return None
