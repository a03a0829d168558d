"""Frame codec for the real-time connection.

Outgoing control frames:
    {"action": "ping", "data": {"timestamp": 1700000000000}, "seq": 3, "id": 4}

Inbound frames are one of:
- Reply: {"seq_reply": 3, "data": {...}, "error": {...}?}  (answers seq 3)
- Event: {"event": "audio_recording_classified", "data": {...}, "seq": 41}

Decoding never raises. Anything that is neither a reply nor an event comes
back as a MalformedFrame so the reader can log it and move on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class OutgoingFrame(BaseModel):
    """A control frame sent by the client.

    ``seq`` is the correlation key a reply will echo back as ``seq_reply``.
    ``id`` follows the server's convention of being one ahead of ``seq``.
    """

    action: str
    data: dict[str, Any] = Field(default_factory=dict)
    seq: int
    id: int

    @classmethod
    def create(cls, action: str, data: dict[str, Any] | None, seq: int) -> OutgoingFrame:
        """Factory method for creating frames."""
        return cls(action=action, data=data or {}, seq=seq, id=seq + 1)

    def to_json(self) -> str:
        """Serialize to JSON."""
        return self.model_dump_json()


class ReplyFrame(BaseModel):
    """A reply to a frame this client sent."""

    model_config = ConfigDict(extra="allow")

    seq_reply: int
    data: Any = None
    error: Any = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def error_message(self) -> str:
        """Best-effort human readable text for ``error``."""
        if isinstance(self.error, dict):
            for key in ("message", "detailed_error", "id"):
                if self.error.get(key):
                    return str(self.error[key])
        return str(self.error)


class EventFrame(BaseModel):
    """A server-initiated broadcast event."""

    model_config = ConfigDict(extra="allow")

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    seq: int | None = None


@dataclass(frozen=True)
class MalformedFrame:
    """A frame that could not be decoded."""

    raw: str
    reason: str


InboundFrame = ReplyFrame | EventFrame | MalformedFrame


def encode_frame(action: str, data: dict[str, Any] | None, seq: int) -> str:
    """Encode a control frame to its wire form."""
    return OutgoingFrame.create(action, data, seq).to_json()


def decode_frame(raw: str | bytes) -> InboundFrame:
    """Decode one inbound frame.

    Returns ReplyFrame when ``seq_reply`` is present, EventFrame when
    ``event`` is present, MalformedFrame otherwise.
    """
    if isinstance(raw, bytes | bytearray):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return MalformedFrame(raw=repr(raw[:80]), reason=f"Invalid UTF-8: {e}")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        return MalformedFrame(raw=raw, reason=f"Invalid JSON: {e}")

    if not isinstance(parsed, dict):
        return MalformedFrame(raw=raw, reason=f"Expected object, got {type(parsed).__name__}")

    try:
        if parsed.get("seq_reply") is not None:
            return ReplyFrame.model_validate(parsed)
        if parsed.get("event") is not None:
            if parsed.get("data") is None:
                parsed = {**parsed, "data": {}}
            return EventFrame.model_validate(parsed)
    except ValidationError as e:
        return MalformedFrame(raw=raw, reason=f"Invalid frame: {e.error_count()} validation error(s)")

    return MalformedFrame(raw=raw, reason="Frame has neither seq_reply nor event")
