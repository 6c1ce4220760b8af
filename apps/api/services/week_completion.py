"""
Week-Completion Gate

A week of a training plan is complete when every active workout in it has
been completed or skipped. Cancelled workouts are not active: they neither
count toward completion nor block it, so a cancelled session can be
restarted without holding the plan back.

A week with no active workouts is NOT complete. The next week cannot be
generated off an empty week.

Always evaluated against the database at call time. The week-generation
start path calls `check_next_week_allowed` right before creating a job.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ValidationError, WeekNotCompleteError
from models import Recommendation, Workout, WorkoutStatus


@dataclass
class WeekStatus:
    week_number: int
    total: int = 0
    completed: int = 0
    skipped: int = 0
    in_progress: int = 0
    scheduled: int = 0
    cancelled: int = 0
    is_complete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_week_status(db: Session, recommendation_id: int, week_number: int) -> WeekStatus:
    rows = (
        db.query(Workout.status, func.count(Workout.id))
        .filter(
            Workout.recommendation_id == recommendation_id,
            Workout.week_number == week_number,
        )
        .group_by(Workout.status)
        .all()
    )
    counts: Dict[str, int] = {(s or "").lower(): int(n) for s, n in rows}

    status = WeekStatus(
        week_number=week_number,
        total=sum(counts.values()),
        completed=counts.get(WorkoutStatus.COMPLETED, 0),
        skipped=counts.get(WorkoutStatus.SKIPPED, 0),
        in_progress=counts.get(WorkoutStatus.IN_PROGRESS, 0),
        scheduled=counts.get(WorkoutStatus.SCHEDULED, 0),
        cancelled=counts.get(WorkoutStatus.CANCELLED, 0),
    )
    # Unknown statuses are treated like cancelled: not active.
    unknown = status.total - sum(counts.get(s, 0) for s in WorkoutStatus.ALL)
    active = status.total - status.cancelled - unknown
    status.is_complete = active > 0 and active == status.completed + status.skipped
    return status


def get_week_workouts(db: Session, recommendation_id: int, week_number: int) -> List[Workout]:
    return (
        db.query(Workout)
        .populate_existing()
        .filter(
            Workout.recommendation_id == recommendation_id,
            Workout.week_number == week_number,
        )
        .order_by(Workout.session_number.asc())
        .all()
    )


def check_next_week_allowed(db: Session, recommendation: Recommendation, week_number: int) -> WeekStatus:
    """
    Validate that `week_number` may be generated now.

    Rules:
        - 2 <= week_number <= MAX_PLAN_WEEKS
        - week_number == recommendation.current_week + 1
        - the week has no workouts yet
        - the previous week passes the completion gate

    Returns the previous week's status. Raises ValidationError or
    WeekNotCompleteError.
    """
    if week_number < 2 or week_number > settings.MAX_PLAN_WEEKS:
        raise ValidationError(
            f"Week number must be between 2 and {settings.MAX_PLAN_WEEKS}",
            field="week_number",
        )

    expected = (recommendation.current_week or 1) + 1
    if week_number != expected:
        raise ValidationError(
            f"Week {week_number} cannot be generated; the next week for this plan is Week {expected}",
            field="week_number",
        )

    existing = (
        db.query(func.count(Workout.id))
        .filter(
            Workout.recommendation_id == recommendation.id,
            Workout.week_number == week_number,
        )
        .scalar()
    )
    if existing:
        raise ValidationError(f"Week {week_number} workouts already exist", field="week_number")

    previous = get_week_status(db, recommendation.id, week_number - 1)
    if not previous.is_complete:
        raise WeekNotCompleteError(week_number, previous.to_dict())
    return previous
