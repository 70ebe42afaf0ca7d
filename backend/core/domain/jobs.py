"""Scheduled job run summaries."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class JobFailure:
    """One unit of work that failed during a run."""

    entity_key: str
    error: str


@dataclass
class JobRunSummary:
    """Structured outcome of one job run, emitted for external alerting.

    ``processed`` counts units of work attempted; each lands in exactly one
    of ``succeeded``, ``skipped`` or ``failed``.
    """

    job_name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[JobFailure] = field(default_factory=list)

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_skip(self) -> None:
        self.processed += 1
        self.skipped += 1

    def record_failure(self, entity_key: str, error: BaseException | str) -> None:
        self.processed += 1
        self.failed += 1
        self.failures.append(JobFailure(entity_key=entity_key, error=str(error)[:500]))

    def finish(self) -> "JobRunSummary":
        self.finished_at = datetime.now(timezone.utc)
        return self

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "failures": [
                {"entity_key": f.entity_key, "error": f.error} for f in self.failures
            ],
        }
