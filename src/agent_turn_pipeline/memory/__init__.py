from agent_turn_pipeline.memory.events import EventEmitter, utc_now
from agent_turn_pipeline.memory.models import Message, SessionRecord
from agent_turn_pipeline.memory.session_store import SessionStore
from agent_turn_pipeline.memory.store import MemoryStore

__all__ = [
    "EventEmitter",
    "MemoryStore",
    "Message",
    "SessionRecord",
    "SessionStore",
    "utc_now",
]
