"""
Cron Endpoint

Lets an external scheduler trigger a dispatcher sweep over HTTP, for
deployments that run without Celery Beat. Guarded by CRON_SECRET instead of
user auth.
"""
import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.exceptions import UnauthorizedError
from schemas import SweepResponse
from services.job_dispatcher import run_sweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cron", tags=["cron"])


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    expected = settings.CRON_SECRET
    if not expected:
        logger.warning("Cron request rejected: CRON_SECRET is not configured")
        raise UnauthorizedError("Cron endpoint is disabled")
    if not authorization or not hmac.compare_digest(authorization, f"Bearer {expected}"):
        raise UnauthorizedError("Invalid cron credentials")


@router.post("/process-jobs", response_model=SweepResponse, dependencies=[Depends(require_cron_secret)])
def process_jobs(
    kind: Optional[List[str]] = Query(None, description="Restrict the sweep to these job kinds"),
    db: Session = Depends(get_db),
):
    """Run one sweep synchronously and report what it did."""
    result = run_sweep(db, kinds=kind, limit=settings.JOB_SWEEP_BATCH_LIMIT)
    return result.to_dict()
