from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel

from agent_turn_pipeline.agents import get_agent
from agent_turn_pipeline.credentials import CredentialResolver, ProviderConfig
from agent_turn_pipeline.errors import CONFIGURE_PROVIDER_MESSAGE, ConfigurationError, PipelineError, friendly_message
from agent_turn_pipeline.extraction import ExtractionResult
from agent_turn_pipeline.logging_config import turn_context
from agent_turn_pipeline.memory import SessionRecord, SessionStore
from agent_turn_pipeline.prompt import AgentDescriptor, DomainContext, assemble
from agent_turn_pipeline.provider import LLMProvider, create_provider
from agent_turn_pipeline.providers.common import RetryingProvider
from agent_turn_pipeline.relay import StreamingTurn, StreamRelay, Transport, TurnEvent, TurnState
from agent_turn_pipeline.relay.events import turn_error

ProviderFactory = Callable[[ProviderConfig], LLMProvider]
PayloadHook = Callable[[SessionRecord, BaseModel], Awaitable[None]]

_LIFECYCLE_EVENTS = {
    TurnState.COMPLETED: "turn.completed",
    TurnState.CANCELLED: "turn.cancelled",
    TurnState.FAILED: "turn.failed",
}


class AgentRuntime:
    """Runs conversational turns for any registered agent.

    Turns within one session are strictly sequential; different sessions run
    concurrently.
    """

    def __init__(
        self,
        sessions: SessionStore,
        credentials: CredentialResolver,
        *,
        relay: StreamRelay | None = None,
        provider_factory: ProviderFactory = create_provider,
        provider_max_attempts: int = 1,
        history_window: int | None = None,
        on_payload: PayloadHook | None = None,
    ):
        self._sessions = sessions
        self._credentials = credentials
        self._relay = relay or StreamRelay()
        self._provider_factory = provider_factory
        self._provider_max_attempts = provider_max_attempts
        self._history_window = history_window
        self._on_payload = on_payload
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    def open_session(
        self,
        agent_slug: str,
        *,
        user_id: str | None = None,
        organization_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        agent = get_agent(agent_slug)
        return self._sessions.create(
            agent.slug,
            user_id=user_id,
            organization_id=organization_id,
            session_id=session_id,
        )

    async def handle_turn(
        self,
        session_id: str,
        agent_slug: str,
        user_text: str,
        transports: Sequence[Transport],
        *,
        user_id: str | None = None,
        organization_id: str | None = None,
        context: DomainContext | None = None,
    ) -> TurnEvent:
        """Run one turn end to end and return its terminal event.

        Failures never propagate: they come back as a ``turn.error`` event.
        """
        turn = StreamingTurn(turn_id=str(uuid4()), session_id=session_id)
        async with self._session_turn(session_id):
            with turn_context(session_id, turn.turn_id):
                return await self._run_turn(
                    turn,
                    agent_slug,
                    user_text,
                    transports,
                    user_id=user_id,
                    organization_id=organization_id,
                    context=context or DomainContext(),
                )

    async def _run_turn(
        self,
        turn: StreamingTurn,
        agent_slug: str,
        user_text: str,
        transports: Sequence[Transport],
        *,
        user_id: str | None,
        organization_id: str | None,
        context: DomainContext,
    ) -> TurnEvent:
        session_id = turn.session_id
        try:
            await self._relay.open(turn, transports, user_text)
        except PipelineError as ex:
            logger.warning(f"Turn {turn.turn_id} for session {session_id} has no client channel: {ex}")
            return turn_error(session_id, turn.turn_id, ex.kind.value, friendly_message(ex.kind))

        session: SessionRecord | None = None
        try:
            agent = self._descriptor(agent_slug)
            session = self._sessions.load_or_create(
                session_id,
                agent.slug,
                user_id=user_id,
                organization_id=organization_id,
            )
            history = self._sessions.list(session_id)
            self._sessions.append(session_id, "user", user_text)

            config = self._credentials.resolve(organization_id)
            if config is None:
                raise ConfigurationError(CONFIGURE_PROVIDER_MESSAGE)
            provider = self._make_provider(config)
        except PipelineError as ex:
            event = await self._relay.fail(turn, ex)
            self._record(session, turn, {"kind": ex.kind.value})
            return event
        except Exception as ex:
            logger.exception(f"Turn {turn.turn_id} could not be prepared: {ex}")
            event = await self._relay.fail(turn, ex)
            self._record(session, turn, {"kind": event.data["kind"]})
            return event

        previous_payload = context.current_payload
        if previous_payload is None:
            previous_payload = self._sessions.latest_payload(session_id)
            context = dataclasses.replace(context, current_payload=previous_payload)
        prompt = assemble(agent, user_text, history, context)

        async def persist(result: ExtractionResult, full_text: str) -> None:
            self._sessions.append(session_id, "assistant", result.conversational_text or full_text, result.payload)
            if result.payload is not None and self._on_payload is not None:
                try:
                    await self._on_payload(session, result.payload)
                except Exception as ex:
                    logger.exception(f"on_payload hook failed for session {session_id}: {ex}")

        event = await self._relay.stream(
            turn,
            provider,
            prompt,
            agent.parser(),
            previous_payload=previous_payload,
            on_finalize=persist,
        )
        details = {"chunks": turn.chunk_count}
        if event.event == "turn.complete":
            details["extracted"] = event.data["extracted"]
        elif event.event == "turn.error":
            details["kind"] = event.data["kind"]
        self._record(session, turn, details)
        return event

    def _descriptor(self, agent_slug: str) -> AgentDescriptor:
        agent = get_agent(agent_slug)
        if self._history_window is not None:
            agent = dataclasses.replace(agent, history_window=self._history_window)
        return agent

    def _make_provider(self, config: ProviderConfig) -> LLMProvider:
        provider = self._provider_factory(config)
        if self._provider_max_attempts > 1:
            provider = RetryingProvider(provider, max_attempts=self._provider_max_attempts)
        return provider

    @asynccontextmanager
    async def _session_turn(self, session_id: str) -> AsyncIterator[None]:
        # The lock is dropped once no turn holds or awaits it.
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def _record(self, session: SessionRecord | None, turn: StreamingTurn, details: dict) -> None:
        event_type = _LIFECYCLE_EVENTS.get(turn.state)
        if session is None or event_type is None:
            return
        self._sessions.events.emit(
            session.id,
            event_type,
            {"session_id": session.id, "turn_id": turn.turn_id, **details},
        )
