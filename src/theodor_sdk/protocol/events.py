"""Names used on the real-time connection.

Broadcast events are server-initiated and carry no reply correlation.
Control actions are what the client sends.
"""

from __future__ import annotations

from enum import Enum


class ControlAction(str, Enum):
    """Actions the client sends over the socket."""

    AUTHENTICATION_CHALLENGE = "authentication_challenge"
    PING = "ping"


class BroadcastEvent(str, Enum):
    """Known broadcast event names.

    The router dispatches unknown names too; this list only names the ones
    the SDK itself reacts to or that callers commonly subscribe to.
    """

    HELLO = "hello"
    STATUS_CHANGE = "status_change"

    # Recording lifecycle
    RECORDING_CREATED = "audio_recording_created"
    RECORDING_UPLOADED = "audio_recording_uploaded"
    RECORDING_UPDATED = "audio_recording_updated"
    RECORDING_DELETED = "audio_recording_deleted"

    # Classification
    RECORDING_CLASSIFIED = "audio_recording_classified"
    RECORDING_CLASSIFICATION_FAILURE = "audio_recording_classification_failure"

    # Post-processing
    SPECTROGRAM_GENERATED = "audio_recording_spec_created"
    RECORDING_ENHANCED = "audio_recording_enhanced"
    RECORDING_ENHANCEMENT_STARTED = "audio_recording_enhancement_started"
    RECORDING_ENHANCEMENT_FAILED = "audio_recording_enhancement_failed"
    RECORDING_ENHANCEMENT_COMPLETE = "audio_recording_denoised"

    PROCESSING_QUEUE_STATE_CHANGED = "processing_queue_state_changed"


class RecordingSite(str, Enum):
    """Body sites a recording can be taken from."""

    HEART = "heart"
    LUNG = "lung"
    ABDOMEN = "abdomen"


class MurmurClassification(str, Enum):
    ABSENT = "normal"
    PRESENT = "murmur"
    NO_SIGNAL = "noise"


class RhythmClassification(str, Enum):
    REGULAR = "rhythmic"
    IRREGULAR = "arrhythmic"
    INCONCLUSIVE = "inconclusive"
    NO_SIGNAL = "noise"


class ReportStatus(str, Enum):
    COMPLETE = "complete"
    PENDING = "pending"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"
