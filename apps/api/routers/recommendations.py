"""
Recommendation Generation API Endpoints

Starting a generation never blocks on the LLM: the request creates a pending
job (or returns the one already running) and the worker sweep does the work.
Clients poll /v1/jobs/{job_id}.
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from core.database import get_db
from core.auth import get_current_user
from core.exceptions import NotFoundError
from models import Job, Recommendation, Trainer
from schemas import (
    JobResponse,
    JobStartResponse,
    WeekGenerationRequest,
    WeekJobsResponse,
    WeekStatusResponse,
    WorkoutResponse,
)
from services.generation_jobs import (
    start_recommendation_job,
    start_recommendation_job_for_client,
    start_week_generation_job,
)
from services.job_store import JobStore
from services.week_completion import get_week_status, get_week_workouts

router = APIRouter(prefix="/v1/recommendations", tags=["recommendations"])


def _start_response(response: Response, job: Job, created: bool, what: str) -> JobStartResponse:
    response.status_code = status.HTTP_202_ACCEPTED if created else status.HTTP_200_OK
    return JobStartResponse(
        job_id=job.id,
        kind=job.kind,
        status=job.status,
        created=created,
        message=f"{what} started" if created else f"{what} already in progress",
    )


def _get_recommendation(db: Session, recommendation_id: int) -> Recommendation:
    recommendation = db.get(Recommendation, recommendation_id)
    if recommendation is None:
        raise NotFoundError("Recommendation", recommendation_id)
    return recommendation


@router.post(
    "/generate/questionnaire/{questionnaire_id}/start",
    response_model=JobStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_for_questionnaire(
    questionnaire_id: int,
    response: Response,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start recommendation generation for a questionnaire.

    202 with a new job id, or 200 with the id of the job already running.
    """
    job, created = start_recommendation_job(db, questionnaire_id, created_by=current_user.id)
    return _start_response(response, job, created, "Recommendation generation")


@router.post(
    "/generate/client/{client_id}/start",
    response_model=JobStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_for_client(
    client_id: int,
    response: Response,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Same as the questionnaire start, using the client's latest questionnaire."""
    job, created = start_recommendation_job_for_client(db, client_id, created_by=current_user.id)
    return _start_response(response, job, created, "Recommendation generation")


@router.post(
    "/{recommendation_id}/generate-week",
    response_model=JobStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def generate_week(
    recommendation_id: int,
    request: WeekGenerationRequest,
    response: Response,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start generation of the next week.

    Rejected with 400 while the previous week still has scheduled or
    in-progress workouts.
    """
    job, created = start_week_generation_job(
        db, recommendation_id, request.week_number, created_by=current_user.id
    )
    return _start_response(response, job, created, f"Week {request.week_number} generation")


@router.get("/{recommendation_id}/week/{week_number}/status", response_model=WeekStatusResponse)
def week_status(
    recommendation_id: int,
    week_number: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _get_recommendation(db, recommendation_id)
    week = get_week_status(db, recommendation_id, week_number)
    workouts = get_week_workouts(db, recommendation_id, week_number)
    return WeekStatusResponse(
        **week.to_dict(),
        workouts=[WorkoutResponse.model_validate(w) for w in workouts],
    )


@router.get("/{recommendation_id}/week-jobs", response_model=WeekJobsResponse)
def week_jobs(
    recommendation_id: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """All week-generation jobs for a plan, by week, newest first within a week."""
    recommendation = _get_recommendation(db, recommendation_id)
    jobs = JobStore(db).list_for_recommendation(recommendation_id)
    return WeekJobsResponse(
        recommendation_id=recommendation.id,
        current_week=recommendation.current_week,
        jobs=[JobResponse.model_validate(j) for j in jobs],
    )
