"""
Job Dispatcher

One sweep = fetch every pending job (oldest first) and run each through the
JobProcessor, one at a time. Sequential on purpose: it bounds concurrent
LLM calls (and their cost) to one per worker.

A failing job never stops the sweep. Overlapping sweeps are safe: a job
already claimed by another sweep is reported as skipped.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from models import JobStatus
from services.job_processor import JobProcessor
from services.job_store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    found: int = 0
    processed: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    # kind -> {"found": n, "processed": n}
    by_kind: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def record_found(self, kind: str) -> None:
        self.found += 1
        self.by_kind.setdefault(kind, {"found": 0, "processed": 0})["found"] += 1

    def record_outcome(self, kind: str, outcome: Optional[str]) -> None:
        if outcome == JobStatus.COMPLETED:
            self.processed += 1
            self.by_kind[kind]["processed"] += 1
        elif outcome == JobStatus.FAILED:
            self.failed += 1
        elif outcome == JobStatus.CANCELLED:
            self.cancelled += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def run_sweep(
    db: Session,
    processor: Optional[JobProcessor] = None,
    kinds: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
) -> SweepResult:
    processor = processor or JobProcessor(db)
    result = SweepResult()

    # Snapshot ids up front; processing commits and expires the ORM rows.
    pending: List[Tuple[int, str]] = [(job.id, job.kind) for job in JobStore(db).list_pending(kinds, limit)]
    for job_id, kind in pending:
        result.record_found(kind)

    logger.info(
        f"Job sweep found {result.found} pending jobs",
        extra={"extra_fields": {"found": result.found, "by_kind": result.by_kind}},
    )

    for job_id, kind in pending:
        try:
            outcome = processor.process(job_id)
        except Exception as e:
            # process() is not supposed to raise; keep going regardless.
            db.rollback()
            logger.error(
                f"Error processing {kind} job {job_id}: {e}",
                exc_info=True,
                extra={"extra_fields": {"job_id": job_id, "kind": kind}},
            )
            result.failed += 1
            continue
        result.record_outcome(kind, outcome)

    logger.info(
        f"Job sweep done: {result.processed}/{result.found} completed, "
        f"{result.failed} failed, {result.skipped} skipped",
        extra={"extra_fields": result.to_dict()},
    )
    return result
