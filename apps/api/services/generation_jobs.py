"""
Starting and cancelling generation jobs (API side).

Start operations validate the request against fresh database state, then
create a pending job. If an active job already exists for the same owner,
that job is returned instead of creating a second one, so a double click or
a second tab never produces duplicate work.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ConflictError, NotFoundError, ValidationError
from models import Job, JobKind, Questionnaire, Recommendation
from services.inbody_scans import client_has_scan, mark_extraction_failed
from services.job_store import JobStore
from services.week_completion import check_next_week_allowed

logger = logging.getLogger(__name__)


def _create_or_reuse(store: JobStore, **kwargs) -> Tuple[Job, bool]:
    """Returns (job, created)."""
    try:
        return store.create(**kwargs), True
    except ConflictError as e:
        if e.existing_job_id is None:
            raise
        logger.info(f"Reusing active job {e.existing_job_id}: {e.detail}")
        return store.get_or_404(e.existing_job_id), False


def start_recommendation_job(
    db: Session,
    questionnaire_id: int,
    created_by: Optional[int] = None,
) -> Tuple[Job, bool]:
    questionnaire = db.get(Questionnaire, questionnaire_id)
    if questionnaire is None:
        raise NotFoundError("Questionnaire", questionnaire_id)

    if settings.REQUIRE_INBODY_SCAN and not client_has_scan(db, questionnaire.client_id):
        raise ValidationError(
            "At least one InBody scan is required before generating recommendations",
            field="inbody_scan",
        )

    return _create_or_reuse(
        JobStore(db),
        kind=JobKind.RECOMMENDATION,
        owner_id=questionnaire.id,
        client_id=questionnaire.client_id,
        created_by=created_by,
    )


def start_recommendation_job_for_client(
    db: Session,
    client_id: int,
    created_by: Optional[int] = None,
) -> Tuple[Job, bool]:
    """Same as start_recommendation_job, using the client's latest questionnaire."""
    questionnaire = (
        db.query(Questionnaire)
        .filter(Questionnaire.client_id == client_id)
        .order_by(Questionnaire.created_at.desc(), Questionnaire.id.desc())
        .first()
    )
    if questionnaire is None:
        raise NotFoundError("Questionnaire for client", client_id)
    return start_recommendation_job(db, questionnaire.id, created_by=created_by)


def start_week_generation_job(
    db: Session,
    recommendation_id: int,
    week_number: int,
    created_by: Optional[int] = None,
) -> Tuple[Job, bool]:
    recommendation = db.get(Recommendation, recommendation_id)
    if recommendation is None:
        raise NotFoundError("Recommendation", recommendation_id)

    store = JobStore(db)
    active = store.get_active_for_owner(
        JobKind.WEEK_GENERATION,
        Job.build_owner_key(JobKind.WEEK_GENERATION, recommendation_id, week_number),
    )
    if active is not None:
        return active, False

    # Re-read the gate now; never trust what the page showed.
    check_next_week_allowed(db, recommendation, week_number)

    return _create_or_reuse(
        store,
        kind=JobKind.WEEK_GENERATION,
        owner_id=recommendation_id,
        week_number=week_number,
        client_id=recommendation.client_id,
        created_by=created_by,
    )


def cancel_job(db: Session, job_id: int, reason: Optional[str] = None) -> Job:
    """
    Cancel a pending or processing job.

    A cancelled scan extraction leaves its scan `failed` with the reason, so
    the trainer sees why no numbers arrived.
    """
    job = JobStore(db).cancel(job_id, reason)
    if job.kind == JobKind.SCAN_EXTRACTION:
        mark_extraction_failed(db, job.owner_id, job.cancel_reason or "Cancelled by user")
        db.commit()
    logger.info(
        f"Job {job_id} cancelled: {job.cancel_reason}",
        extra={"extra_fields": {"job_id": job_id, "kind": job.kind}},
    )
    return job
