"""Wire protocol for the real-time connection.

Key concepts:
- Control frames: client -> server, each with a unique ``seq``
- Replies: server -> client, correlated by ``seq_reply``
- Broadcast events: server -> client, named, with a server ``seq`` used as
  the resume cursor on reconnect
"""

from .events import (
    BroadcastEvent,
    ControlAction,
    MurmurClassification,
    RecordingSite,
    ReportStatus,
    RhythmClassification,
)
from .frames import (
    EventFrame,
    InboundFrame,
    MalformedFrame,
    OutgoingFrame,
    ReplyFrame,
    decode_frame,
    encode_frame,
)

__all__ = [
    "BroadcastEvent",
    "ControlAction",
    "RecordingSite",
    "MurmurClassification",
    "RhythmClassification",
    "ReportStatus",
    "OutgoingFrame",
    "ReplyFrame",
    "EventFrame",
    "MalformedFrame",
    "InboundFrame",
    "encode_frame",
    "decode_frame",
]
