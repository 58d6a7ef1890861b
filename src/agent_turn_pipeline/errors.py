from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT = "transport"
    SESSION = "session"
    INTERNAL = "internal"


CONFIGURE_PROVIDER_MESSAGE = (
    "No AI provider is configured for your organization. "
    "Please configure your AI provider in Settings > LLM Configuration."
)

_FRIENDLY_MESSAGES = {
    ErrorKind.CONFIGURATION: CONFIGURE_PROVIDER_MESSAGE,
    ErrorKind.AUTH: "Authentication with the AI provider failed. Please check your API key configuration.",
    ErrorKind.RATE_LIMIT: "The AI provider is rate limiting requests. Please try again in a moment.",
    ErrorKind.TIMEOUT: "The AI provider took too long to respond. Please try again.",
    ErrorKind.MALFORMED_RESPONSE: "The AI provider returned a response that could not be read. Please try again.",
    ErrorKind.TRANSPORT: "The connection was interrupted while sending the response.",
    ErrorKind.SESSION: "This conversation belongs to another user or assistant. Please start a new session.",
    ErrorKind.INTERNAL: "Something went wrong while processing your message. Please try again.",
}


def friendly_message(kind: ErrorKind) -> str:
    return _FRIENDLY_MESSAGES.get(kind, _FRIENDLY_MESSAGES[ErrorKind.INTERNAL])


class PipelineError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(PipelineError):
    """No usable provider configuration. Raised before any provider call."""

    kind = ErrorKind.CONFIGURATION


class ProviderError(PipelineError):
    """Any provider failure, normalized to one of four kinds."""

    PROVIDER_KINDS = frozenset({
        ErrorKind.AUTH,
        ErrorKind.RATE_LIMIT,
        ErrorKind.TIMEOUT,
        ErrorKind.MALFORMED_RESPONSE,
    })

    def __init__(self, kind: ErrorKind, message: str, *, provider: str = "", model: str = ""):
        if kind not in self.PROVIDER_KINDS:
            raise ValueError(f"Not a provider error kind: {kind!r}")
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.model = model

    def __str__(self) -> str:
        prefix = f"[{self.provider}/{self.model}] " if self.provider else ""
        return f"{prefix}{self.kind.value}: {self.message}"


class TransportError(PipelineError):
    """Write or handshake failure on the active client channel."""

    kind = ErrorKind.TRANSPORT


class SessionAccessError(PipelineError):
    """Session id exists but belongs to another user or agent."""

    kind = ErrorKind.SESSION
