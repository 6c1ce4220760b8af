"""
Job Store

Persistence and lifecycle for background jobs of every kind
(recommendation, week-generation, scan-extraction).

Lifecycle:
    pending -> processing -> completed | failed
    pending | processing -> cancelled

Every transition is a conditional UPDATE filtered on the allowed source
states. The affected row count decides whether the caller won the
transition, which makes `mark_processing` the exclusive gate when two
dispatcher sweeps overlap.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from models import Job, JobKind, JobStatus

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4000

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[str, Sequence[str]] = {
    JobStatus.PROCESSING: (JobStatus.PENDING,),
    JobStatus.COMPLETED: (JobStatus.PROCESSING,),
    JobStatus.FAILED: (JobStatus.PROCESSING,),
    JobStatus.CANCELLED: (JobStatus.PENDING, JobStatus.PROCESSING),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStore:
    """Job persistence bound to one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id: int) -> Optional[Job]:
        return self.db.get(Job, job_id, populate_existing=True)

    def get_or_404(self, job_id: int) -> Job:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def get_latest_by_owner(
        self,
        kind: str,
        owner_id: int,
        week_number: Optional[int] = None,
    ) -> Optional[Job]:
        q = self.db.query(Job).filter(Job.kind == kind, Job.owner_id == owner_id)
        if week_number is not None:
            q = q.filter(Job.week_number == week_number)
        return q.order_by(Job.created_at.desc(), Job.id.desc()).first()

    def get_active_for_owner(self, kind: str, owner_key: str) -> Optional[Job]:
        return (
            self.db.query(Job)
            .filter(
                Job.kind == kind,
                Job.owner_key == owner_key,
                Job.status.in_(JobStatus.ACTIVE),
            )
            .order_by(Job.id.desc())
            .first()
        )

    def list_pending(
        self,
        kinds: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Job]:
        """Pending jobs, oldest first."""
        q = self.db.query(Job).filter(Job.status == JobStatus.PENDING)
        if kinds:
            q = q.filter(Job.kind.in_(list(kinds)))
        q = q.order_by(Job.created_at.asc(), Job.id.asc())
        if limit:
            q = q.limit(limit)
        return q.all()

    def list_for_recommendation(self, recommendation_id: int) -> List[Job]:
        return (
            self.db.query(Job)
            .filter(
                Job.kind == JobKind.WEEK_GENERATION,
                Job.owner_id == recommendation_id,
            )
            .order_by(Job.week_number.asc(), Job.created_at.desc(), Job.id.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        kind: str,
        owner_id: int,
        week_number: Optional[int] = None,
        client_id: Optional[int] = None,
        created_by: Optional[int] = None,
    ) -> Job:
        """
        Insert a pending job and commit.

        Raises ConflictError (with existing_job_id) when an active job already
        exists for the same kind + owner. The partial unique index backs this
        up when two requests race past the pre-check.
        """
        if kind not in JobKind.ALL:
            raise ValueError(f"Unknown job kind: {kind}")

        owner_key = Job.build_owner_key(kind, owner_id, week_number)
        existing = self.get_active_for_owner(kind, owner_key)
        if existing is not None:
            raise ConflictError(
                f"A {kind} job is already {existing.status} for {owner_key}",
                existing_job_id=existing.id,
            )

        now = _utcnow()
        job = Job(
            kind=kind,
            status=JobStatus.PENDING,
            owner_id=owner_id,
            week_number=week_number,
            owner_key=owner_key,
            client_id=client_id,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(job)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.get_active_for_owner(kind, owner_key)
            raise ConflictError(
                f"A {kind} job is already active for {owner_key}",
                existing_job_id=existing.id if existing else None,
            )

        logger.info(
            f"Created {kind} job {job.id} for {owner_key}",
            extra={"extra_fields": {"job_id": job.id, "kind": kind, "owner_key": owner_key}},
        )
        return job

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        job_id: int,
        target: str,
        values: Optional[Dict[str, Any]] = None,
        from_states: Optional[Sequence[str]] = None,
        commit: bool = True,
    ) -> Job:
        from_states = from_states or ALLOWED_TRANSITIONS[target]
        update_values: Dict[str, Any] = {"status": target, "updated_at": _utcnow()}
        update_values.update(values or {})

        count = (
            self.db.query(Job)
            .filter(Job.id == job_id, Job.status.in_(list(from_states)))
            .update(update_values, synchronize_session=False)
        )
        if count != 1:
            current = self.db.query(Job.status).filter(Job.id == job_id).scalar()
            if current is None:
                raise NotFoundError("Job", job_id)
            raise InvalidTransitionError(job_id, current, target)

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return self.get(job_id)

    def mark_processing(self, job_id: int) -> Job:
        """pending -> processing. Only one caller can win this for a given job."""
        return self._transition(
            job_id,
            JobStatus.PROCESSING,
            {"started_at": _utcnow(), "current_step": "Starting..."},
        )

    def update_step(self, job_id: int, step_text: str) -> Job:
        """Overwrite current_step of a processing job. Status is unchanged."""
        return self._transition(
            job_id,
            JobStatus.PROCESSING,
            {"current_step": step_text},
            from_states=(JobStatus.PROCESSING,),
        )

    def mark_completed(
        self,
        job_id: int,
        result_reference: Optional[int] = None,
        commit: bool = True,
    ) -> Job:
        """
        processing -> completed.

        Pass commit=False to complete the job in the same transaction as the
        artifacts it produced; the caller then commits both together.
        """
        return self._transition(
            job_id,
            JobStatus.COMPLETED,
            {
                "completed_at": _utcnow(),
                "result_reference": result_reference,
                "current_step": "Completed",
            },
            commit=commit,
        )

    def mark_failed(self, job_id: int, error_message: str, commit: bool = True) -> Job:
        """processing -> failed."""
        message = (error_message or "Unknown error")[:MAX_MESSAGE_CHARS]
        return self._transition(
            job_id,
            JobStatus.FAILED,
            {"completed_at": _utcnow(), "error_message": message, "current_step": "Failed"},
            commit=commit,
        )

    def cancel(self, job_id: int, reason: Optional[str] = None) -> Job:
        """
        pending | processing -> cancelled.

        Cancelling an already-cancelled job returns it unchanged.
        """
        job = self.get_or_404(job_id)
        if job.status == JobStatus.CANCELLED:
            return job
        return self._transition(
            job_id,
            JobStatus.CANCELLED,
            {
                "completed_at": _utcnow(),
                "cancel_reason": (reason or "Cancelled by user")[:MAX_MESSAGE_CHARS],
                "current_step": "Cancelled",
            },
        )
