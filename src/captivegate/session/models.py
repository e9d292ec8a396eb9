"""Session data models — grants, store changes, and submission records."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Grant:
    """A time-boxed admission for one client address."""

    client: str
    granted_at: float
    expires_at: float

    @property
    def ttl(self) -> float:
        return self.expires_at - self.granted_at

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


class ChangeKind(enum.Enum):
    """Why the admitted set changed."""

    ADMITTED = "admitted"
    REFRESHED = "refreshed"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class StoreChange:
    """Notification delivered to store listeners after a committed write."""

    kind: ChangeKind
    client: str


class Outcome(enum.Enum):
    """Result of one admission submission."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass(frozen=True)
class SubmissionRecord:
    """Append-only audit entry for one submission."""

    client: str
    outcome: Outcome
    reason: str = ""
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class SubmissionState(enum.Enum):
    """Lifecycle of a submission through the admission API."""

    RECEIVED = "received"
    VALIDATED = "validated"
    ADMITTED = "admitted"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


@dataclass
class SubmissionResult:
    """What the admission service hands back to the web layer."""

    state: SubmissionState
    record: SubmissionRecord
    grant: Grant | None = None

    @property
    def accepted(self) -> bool:
        return self.state == SubmissionState.ACKNOWLEDGED
