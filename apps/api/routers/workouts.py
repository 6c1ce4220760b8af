"""
Workout Session Endpoints

Start, complete or skip one session of a plan. Completing or skipping every
active session of a week is what unlocks generation of the next week.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from core.database import get_db
from core.auth import get_current_user
from models import Trainer
from schemas import WorkoutCompleteRequest, WorkoutResponse, WorkoutSkipRequest
from services.workouts import complete_workout, get_workout_or_404, skip_workout, start_workout

router = APIRouter(prefix="/v1/workouts", tags=["workouts"])


@router.get("/{workout_id}", response_model=WorkoutResponse)
def get_workout(
    workout_id: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_workout_or_404(db, workout_id)


@router.post("/{workout_id}/start", response_model=WorkoutResponse)
def start(
    workout_id: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return start_workout(db, workout_id)


@router.post("/{workout_id}/complete", response_model=WorkoutResponse)
def complete(
    workout_id: int,
    request: WorkoutCompleteRequest,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Save the actual performance (at least one exercise) and mark the session completed."""
    return complete_workout(
        db,
        workout_id,
        exercises=[e.model_dump() for e in request.exercises],
        notes=request.notes,
        completed_at=request.completed_at,
    )


@router.post("/{workout_id}/skip", response_model=WorkoutResponse)
def skip(
    workout_id: int,
    request: Optional[WorkoutSkipRequest] = None,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return skip_workout(db, workout_id, request.reason if request else None)
