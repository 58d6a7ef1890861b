import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable

from loguru import logger

# Records logged outside a turn carry these placeholders.
_NO_TURN = {"session_id": "-", "turn_id": "-"}

_TURN_TAG = "<magenta>{extra[session_id]}/{extra[turn_id]:.8}</magenta>"


@contextmanager
def turn_context(session_id: str, turn_id: str) -> Iterator[None]:
    """Tag every record logged while a turn runs, including from tasks it spawns."""
    with logger.contextualize(session_id=session_id, turn_id=turn_id):
        yield


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """Human-readable records on stderr so they never mix with streamed replies."""

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            format="<level>{level:<8}</level> | " + _TURN_TAG + " | <cyan>{name}</cyan> - <level>{message}</level>",
        )

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    """Rotating log file. With ``json`` set, one serialized record per line."""

    def __init__(
        self,
        path: str = "turn-pipeline.log",
        rotation: str = "10 MB",
        retention: int = 3,
        json: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._json = json

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[session_id]} {extra[turn_id]} | {name}:{line} - {message}",
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._json,
        )

    def describe(self, level: str) -> str:
        fmt = "jsonl" if self._json else "text"
        return f"file ({self._path}, {fmt}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

# The REPL prints streamed text to stdout, so the default console sink only
# reports warnings.
_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file", "path": "turn-pipeline.log"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all sinks with the configured consumers and describe each one."""
    logger.remove()
    logger.configure(extra=dict(_NO_TURN))

    descriptions: list[str] = []
    for config in _DEFAULT_CONSUMERS if consumers is None else consumers:
        cls = _CONSUMER_TYPES.get(config.get("type", ""))
        if cls is None:
            logger.warning(f"Unknown log consumer type: {config.get('type')!r}")
            continue

        sink_level = config.get("level", level)
        consumer = cls(**{k: v for k, v in config.items() if k not in ("type", "level")})
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
