from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger
from pydantic import BaseModel

from agent_turn_pipeline.errors import ErrorKind, PipelineError, TransportError, friendly_message
from agent_turn_pipeline.extraction import ExtractionParser, ExtractionResult
from agent_turn_pipeline.prompt import PromptPair, payload_to_dict
from agent_turn_pipeline.provider import LLMProvider
from agent_turn_pipeline.relay.events import (
    TurnEvent,
    turn_cancelled,
    turn_chunk,
    turn_complete,
    turn_error,
    turn_start,
)
from agent_turn_pipeline.relay.transports import Transport


class TurnState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class StreamingTurn:
    turn_id: str
    session_id: str
    transport: Transport | None = None
    state: TurnState = TurnState.IDLE
    buffer: list[str] = field(default_factory=list)
    chunk_count: int = 0
    cancelled: bool = False

    @property
    def text(self) -> str:
        return "".join(self.buffer)


FinalizeCallback = Callable[[ExtractionResult, str], Awaitable[None]]


class StreamRelay:
    """Drives one turn from transport negotiation to its terminal event.

    Chunks are forwarded in arrival order and also buffered; the parser runs
    once over the finished text. Nothing is persisted for a turn that is
    cancelled or fails.
    """

    def __init__(self, *, open_timeout_seconds: float = 10.0):
        self._open_timeout_seconds = open_timeout_seconds

    async def open(self, turn: StreamingTurn, candidates: Sequence[Transport], user_text: str) -> Transport:
        """Pick the first candidate that opens and accepts ``turn.start``."""
        for transport in candidates:
            if not transport.available:
                logger.debug(f"Transport {transport.name} unavailable, skipping")
                continue
            try:
                await asyncio.wait_for(transport.open(), timeout=self._open_timeout_seconds)
                await transport.send(turn_start(turn.session_id, turn.turn_id, user_text))
            except asyncio.TimeoutError:
                logger.info(f"Transport {transport.name} did not open within {self._open_timeout_seconds}s")
                await transport.close()
                continue
            except TransportError as ex:
                logger.info(f"Transport {transport.name} failed before streaming: {ex}")
                await transport.close()
                continue
            turn.transport = transport
            turn.state = TurnState.DISPATCHED
            logger.debug(f"Turn {turn.turn_id} dispatched over {transport.name}")
            return transport

        turn.state = TurnState.FAILED
        raise TransportError("No client transport could be opened")

    async def stream(
        self,
        turn: StreamingTurn,
        provider: LLMProvider,
        prompt: PromptPair,
        parser: ExtractionParser,
        *,
        previous_payload: BaseModel | dict | None = None,
        on_finalize: FinalizeCallback | None = None,
    ) -> TurnEvent:
        transport = turn.transport
        if transport is None or turn.state != TurnState.DISPATCHED:
            raise RuntimeError(f"Turn {turn.turn_id} is not dispatched")

        async def on_chunk(text: str) -> None:
            if turn.state == TurnState.DISPATCHED:
                turn.state = TurnState.STREAMING
            turn.buffer.append(text)
            turn.chunk_count += 1
            await transport.send(turn_chunk(turn.session_id, turn.turn_id, text))

        if transport.supports_streaming:
            call = provider.send_streaming(prompt.system_prompt, prompt.user_prompt, on_chunk)
        else:
            call = provider.send(prompt.system_prompt, prompt.user_prompt)

        provider_task = asyncio.create_task(call)
        cancel_task = asyncio.create_task(transport.cancelled.wait())
        try:
            await asyncio.wait({provider_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            provider_task.cancel()
            raise
        finally:
            cancel_task.cancel()
            await asyncio.gather(cancel_task, return_exceptions=True)

        write_error = _transport_failure(provider_task)
        if write_error is not None:
            return await self.fail(turn, write_error)

        if transport.cancelled.is_set():
            if not provider_task.done():
                provider_task.cancel()
            await asyncio.gather(provider_task, return_exceptions=True)
            return await self._cancel(turn)

        try:
            full_text = provider_task.result()
        except PipelineError as ex:
            return await self.fail(turn, ex)
        except Exception as ex:
            logger.exception(f"Unexpected failure in turn {turn.turn_id}: {ex}")
            return await self.fail(turn, ex)

        if not transport.supports_streaming:
            turn.buffer = [full_text]
        turn.state = TurnState.FINALIZING
        result = parser.parse(full_text)

        if transport.cancelled.is_set():
            return await self._cancel(turn)

        if on_finalize is not None:
            try:
                await on_finalize(result, full_text)
            except Exception as ex:
                logger.exception(f"Could not persist turn {turn.turn_id}: {ex}")
                return await self.fail(turn, ex)

        payload = result.payload if result.payload is not None else previous_payload
        event = turn_complete(
            turn.session_id,
            turn.turn_id,
            result.conversational_text,
            payload_to_dict(payload),
            result.matched,
        )
        turn.state = TurnState.COMPLETED
        try:
            await transport.send(event)
        except TransportError as ex:
            logger.warning(f"Turn {turn.turn_id} completed but the client missed turn.complete: {ex}")
        await transport.close()
        return event

    async def fail(self, turn: StreamingTurn, error: BaseException) -> TurnEvent:
        kind = error.kind if isinstance(error, PipelineError) else ErrorKind.INTERNAL
        turn.state = TurnState.FAILED
        if isinstance(error, PipelineError):
            logger.warning(f"Turn {turn.turn_id} failed ({kind.value}): {error}")
        event = turn_error(turn.session_id, turn.turn_id, kind.value, friendly_message(kind))
        await self._send_best_effort(turn, event)
        return event

    async def _cancel(self, turn: StreamingTurn) -> TurnEvent:
        turn.state = TurnState.CANCELLED
        turn.cancelled = True
        logger.info(f"Turn {turn.turn_id} cancelled after {turn.chunk_count} chunk(s)")
        event = turn_cancelled(turn.session_id, turn.turn_id)
        await self._send_best_effort(turn, event)
        return event

    async def _send_best_effort(self, turn: StreamingTurn, event: TurnEvent) -> None:
        transport = turn.transport
        if transport is None:
            return
        if transport.writable:
            try:
                await transport.send(event)
            except TransportError as ex:
                logger.debug(f"Could not deliver {event.event} for turn {turn.turn_id}: {ex}")
        await transport.close()


def _transport_failure(task: asyncio.Task) -> TransportError | None:
    if not task.done() or task.cancelled():
        return None
    error = task.exception()
    return error if isinstance(error, TransportError) else None
