import sys
import threading
from typing import TextIO

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

_TERMINAL_EVENTS = ("turn.complete", "turn.error", "turn.cancelled")


class TurnSpinner:
    """Shows progress until a turn produces visible output.

    The spinner runs on a background thread and clears itself on the first
    ``turn.chunk`` or terminal event it observes.
    """

    def __init__(self, prefix: str = "", label: str = " Thinking...", stream: TextIO | None = None):
        self._prefix = prefix
        self._label = label
        self._stream = stream or sys.stdout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def observe(self, event_name: str) -> bool:
        """Feed a turn event name. Returns True once output may be written."""
        if event_name == "turn.chunk" or event_name in _TERMINAL_EVENTS:
            self.stop()
            return True
        return False

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            width = 1 + len(self._label)
            self._stream.write("\r" + self._prefix + " " * width + "\r" + self._prefix)
            self._stream.flush()

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                self._stream.write("\r" + self._prefix + frame)
                self._stream.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            pass  # terminal can't draw the frames


def describe_terminal(event: str, data: dict, *, streamed: bool) -> list[str]:
    """Lines the REPL prints for a terminal turn event."""
    if event == "turn.complete":
        lines = [] if streamed else [data["conversationalText"]]
        payload = data.get("payload")
        if payload is not None and data.get("extracted"):
            label = payload.get("name") or payload.get("title") or payload.get("schemaName") or ""
            lines.append(f"\n[{payload.get('kind', 'payload')} updated] {label}".rstrip())
        return lines
    if event == "turn.error":
        return [f"[error: {data['kind']}] {data['message']}"]
    if event == "turn.cancelled":
        return ["[cancelled]"]
    return []
