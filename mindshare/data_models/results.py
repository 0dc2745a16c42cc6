"""
Outcome envelopes returned to collaborators.

Every public operation reports success or failure together with a timestamp;
callers translate these into transport-level responses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResultStatus(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a single facade call."""
    status: ResultStatus
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return self.status is ResultStatus.OK

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(status=ResultStatus.OK, data=data)

    @classmethod
    def not_found(cls, message: str) -> "OperationResult":
        return cls(status=ResultStatus.NOT_FOUND, error=message, error_type="not_found")

    @classmethod
    def failure(cls, error: Exception) -> "OperationResult":
        return cls(
            status=ResultStatus.ERROR,
            error=str(error),
            error_type=getattr(error, 'code', type(error).__name__),
        )


class TriggerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RunOutcome:
    """Outcome of one trigger run."""
    trigger: str
    status: ResultStatus
    started_at: datetime
    finished_at: datetime
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is ResultStatus.OK

    @property
    def timestamp(self) -> datetime:
        return self.finished_at
