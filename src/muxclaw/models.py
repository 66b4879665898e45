"""Outcome models for ingress submissions and egress job processing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class FailureTier(str, Enum):
    """Which error-handling tier handled a failure."""

    FATAL = "fatal"
    ITEM_SKIPPED = "item_skipped"
    ROLLBACK = "rollback"


class ConfigError(ValueError):
    """Missing or invalid configuration; the process must not start."""

    tier = FailureTier.FATAL


class SubmitStatus(str, Enum):
    """Result of one ingress submission."""

    QUEUED = "queued"
    REJECTED = "rejected"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Result of one egress job handling."""

    DELIVERED = "delivered"
    EMPTY = "empty"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class SubmitResult:
    """Outcome of ``IngressEnqueuer.submit``."""

    status: SubmitStatus
    tier: FailureTier | None = None
    reason: str | None = None
    job_id: str | None = None
    message_dir: Path | None = None

    @property
    def queued(self) -> bool:
        return self.status is SubmitStatus.QUEUED


@dataclass(slots=True)
class JobResult:
    """Outcome of handling one terminal job file."""

    job_name: str
    status: JobStatus
    tier: FailureTier | None = None
    reason: str | None = None
    chunks_sent: int = 0

    @property
    def delivered(self) -> bool:
        return self.status is JobStatus.DELIVERED
