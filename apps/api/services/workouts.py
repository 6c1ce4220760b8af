"""
Trainer actions on a single workout session.

These are the only writes to Workout.status, and therefore what moves a week
toward completion:

    scheduled --start--> in_progress --complete--> completed
        |                     +--skip--> skipped
        +--complete / skip--> completed / skipped

Completed and skipped sessions are final here. `performance_notes` recorded
on completion is what week generation feeds back to the plan generator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.exceptions import ConflictError, NotFoundError
from models import Workout, WorkoutStatus

logger = logging.getLogger(__name__)

OPEN_STATUSES = (WorkoutStatus.SCHEDULED, WorkoutStatus.IN_PROGRESS)


def get_workout_or_404(db: Session, workout_id: int) -> Workout:
    workout = db.get(Workout, workout_id)
    if workout is None:
        raise NotFoundError("Workout", workout_id)
    return workout


def _require_open(workout: Workout, action: str) -> None:
    if workout.status not in OPEN_STATUSES:
        raise ConflictError(f"Workout {workout.id} is {workout.status} and cannot be {action}")


def _save(db: Session, workout: Workout) -> Workout:
    db.add(workout)
    db.commit()
    db.refresh(workout)
    logger.info(
        f"Workout {workout.id} is now {workout.status}",
        extra={"extra_fields": {
            "workout_id": workout.id,
            "recommendation_id": workout.recommendation_id,
            "week_number": workout.week_number,
            "status": workout.status,
        }},
    )
    return workout


def start_workout(db: Session, workout_id: int) -> Workout:
    """Open the session. Starting one that is already in progress is a no-op."""
    workout = get_workout_or_404(db, workout_id)
    if workout.status == WorkoutStatus.IN_PROGRESS:
        return workout
    _require_open(workout, "started")
    workout.status = WorkoutStatus.IN_PROGRESS
    return _save(db, workout)


def complete_workout(
    db: Session,
    workout_id: int,
    exercises: List[Dict[str, Any]],
    notes: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> Workout:
    """Record what the client actually did and close the session."""
    workout = get_workout_or_404(db, workout_id)
    _require_open(workout, "completed")
    workout.status = WorkoutStatus.COMPLETED
    workout.completed_at = completed_at or datetime.now(timezone.utc)
    workout.performance_notes = {"exercises": exercises, "notes": notes}
    return _save(db, workout)


def skip_workout(db: Session, workout_id: int, reason: Optional[str] = None) -> Workout:
    workout = get_workout_or_404(db, workout_id)
    _require_open(workout, "skipped")
    workout.status = WorkoutStatus.SKIPPED
    workout.performance_notes = {"skipped_reason": reason} if reason else None
    return _save(db, workout)
