"""
Job tasks.

`process_pending_jobs` is the periodic sweep (Celery Beat). `process_job`
runs a single job right away; scan uploads enqueue it so extraction does
not wait for the next sweep. Both go through the same `mark_processing`
gate, so a job picked by both is only processed once.
"""

from typing import Dict, List, Optional

from celery import Task
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db_sync
from services.job_dispatcher import run_sweep
from services.job_processor import JobProcessor
from tasks import celery_app
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="jobs.process_pending_jobs", bind=True)
def process_pending_jobs_task(self: Task, kinds: Optional[List[str]] = None) -> Dict:
    """
    Sweep all pending jobs (optionally only some kinds).

    Returns:
        SweepResult as a dict: found / processed / failed / cancelled / skipped / by_kind
    """
    db: Session = get_db_sync()
    try:
        result = run_sweep(db, kinds=kinds, limit=settings.JOB_SWEEP_BATCH_LIMIT)
        return {"status": "success", **result.to_dict()}
    except Exception as e:
        db.rollback()
        logger.error(f"Job sweep failed: {e}", exc_info=True)
        return {"status": "error", "error": str(e)}
    finally:
        db.close()


@celery_app.task(name="jobs.process_job", bind=True)
def process_job_task(self: Task, job_id: int) -> Dict:
    """Process one job now. A job that is no longer pending is skipped."""
    db: Session = get_db_sync()
    try:
        outcome = JobProcessor(db).process(int(job_id))
        return {"status": outcome or "skipped", "job_id": job_id}
    finally:
        db.close()


def enqueue_job(job_id: int) -> None:
    """Best-effort immediate processing; the periodic sweep is the fallback."""
    try:
        celery_app.send_task("jobs.process_job", args=[job_id])
    except Exception as e:
        logger.warning(f"Could not enqueue job {job_id}, leaving it for the next sweep: {e}")
