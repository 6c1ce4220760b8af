"""
Job API Endpoints

Read-only status access for pollers, plus explicit cancellation. Every job
kind (recommendation, week-generation, scan-extraction) goes through here.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from core.database import get_db
from core.auth import get_current_user
from core.exceptions import ValidationError
from models import JobKind, Trainer
from schemas import CancelJobRequest, JobResponse
from services.generation_jobs import cancel_job
from services.job_store import JobStore

router = APIRouter(prefix="/v1/jobs", tags=["jobs"])


@router.get("/latest", response_model=Optional[JobResponse])
def get_latest_job(
    kind: str = Query(..., description="recommendation | week-generation | scan-extraction"),
    owner_id: int = Query(...),
    week_number: Optional[int] = Query(None),
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Most recent job for an owner, or null.

    Used to resume polling after a page reload: null means nothing was ever
    started for this owner.
    """
    if kind not in JobKind.ALL:
        raise ValidationError(f"Unknown job kind: {kind}", field="kind")
    return JobStore(db).get_latest_by_owner(kind, owner_id, week_number)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return JobStore(db).get_or_404(job_id)


@router.post("/{job_id}/cancel", response_model=JobResponse)
def cancel(
    job_id: int,
    request: Optional[CancelJobRequest] = None,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Cancel a pending or processing job.

    A processing job finishes its current step; its results are discarded.
    Cancelling a finished job returns 409.
    """
    return cancel_job(db, job_id, request.reason if request else None)
