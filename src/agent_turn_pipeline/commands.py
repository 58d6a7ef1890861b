from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_agent: Callable[[str], Awaitable[None]],
        on_new: Callable[[], Awaitable[None]],
        on_session: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_agent = on_agent
        self._on_new = on_new
        self._on_session = on_session
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        if trimmed == "/help":
            await self._on_help()
            return True
        if trimmed == "/new":
            await self._on_new()
            return True
        if trimmed.startswith("/agent"):
            await self._on_agent(trimmed)
            return True
        if trimmed.startswith("/session"):
            await self._on_session(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
