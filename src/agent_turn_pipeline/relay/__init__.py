from agent_turn_pipeline.relay.events import KEEPALIVE_FRAME, TurnEvent
from agent_turn_pipeline.relay.relay import StreamingTurn, StreamRelay, TurnState
from agent_turn_pipeline.relay.transports import (
    BlockingTransport,
    PushChannelTransport,
    SocketConnection,
    SocketTransport,
    Transport,
)

__all__ = [
    "KEEPALIVE_FRAME",
    "BlockingTransport",
    "PushChannelTransport",
    "SocketConnection",
    "SocketTransport",
    "StreamRelay",
    "StreamingTurn",
    "Transport",
    "TurnEvent",
    "TurnState",
]
