"""SDK type definitions."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from .protocol.events import MurmurClassification, ReportStatus

# Status values that end a job
COMPLETED_STATUSES = frozenset({ReportStatus.COMPLETE.value, "completed", "classified", "done"})
FAILED_STATUSES = frozenset({ReportStatus.FAILED.value, "error", "classification_failure"})

PENDING = "pending"


class JobOutcome(str, Enum):
    """Where a polled job stands."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobSnapshot(BaseModel):
    """A recording as returned by ``GET /recordings/{id}``.

    Only the fields that decide completion are typed; everything else the
    server returns is kept as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    status: str | None = None
    murmur: str | None = None
    rhythm: str | None = None
    error: Any = None
    message: str | None = None

    def outcome(self) -> JobOutcome:
        """Classify the snapshot as pending, succeeded or failed."""
        status = (self.status or "").lower()
        if status in FAILED_STATUSES or self.error:
            return JobOutcome.FAILED
        if status in COMPLETED_STATUSES:
            return JobOutcome.SUCCEEDED

        if self.murmur and self.rhythm and self.murmur != PENDING and self.rhythm != PENDING:
            return JobOutcome.SUCCEEDED
        if self.murmur in (MurmurClassification.ABSENT.value, MurmurClassification.PRESENT.value):
            return JobOutcome.SUCCEEDED

        return JobOutcome.PENDING

    def failure_message(self) -> str:
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error)
        if self.error:
            return str(self.error)
        return self.message or "Unknown error"

    def to_dict(self) -> dict[str, Any]:
        """The snapshot as the server sent it."""
        return self.model_dump(exclude_unset=True)
