"""
InBody scan records: upload intake, lookup and trainer verification.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, ValidationError
from models import Client, ExtractionStatus, InBodyScan, Job, JobKind
from services import file_storage
from services.job_store import JobStore

logger = logging.getLogger(__name__)


def get_scan_or_404(db: Session, scan_id: int) -> InBodyScan:
    scan = db.get(InBodyScan, scan_id)
    if scan is None:
        raise NotFoundError("InBody scan", scan_id)
    return scan


def latest_scan_for_client(db: Session, client_id: int) -> Optional[InBodyScan]:
    """Latest verified scan, falling back to the latest completed (unreviewed) one."""
    for statuses in ((ExtractionStatus.VERIFIED,), (ExtractionStatus.COMPLETED,)):
        scan = (
            db.query(InBodyScan)
            .filter(InBodyScan.client_id == client_id, InBodyScan.extraction_status.in_(statuses))
            .order_by(InBodyScan.created_at.desc(), InBodyScan.id.desc())
            .first()
        )
        if scan is not None:
            return scan
    return None


def client_has_scan(db: Session, client_id: int) -> bool:
    return db.query(InBodyScan.id).filter(InBodyScan.client_id == client_id).first() is not None


def scan_summary(scan: Optional[InBodyScan]) -> Optional[Dict[str, Any]]:
    if scan is None:
        return None
    summary: Dict[str, Any] = {f: getattr(scan, f) for f in InBodyScan.NUMERIC_FIELDS}
    summary["scan_date"] = scan.scan_date.isoformat() if scan.scan_date else None
    summary["segment_analysis"] = scan.segment_analysis
    summary["verified"] = scan.extraction_status == ExtractionStatus.VERIFIED
    return summary


def create_scan_from_upload(
    db: Session,
    client_id: int,
    original_filename: str,
    data: bytes,
    mime_type: str,
    uploaded_by: Optional[int] = None,
) -> Tuple[InBodyScan, Job]:
    """Store the image, insert a pending scan and queue its extraction job."""
    if db.get(Client, client_id) is None:
        raise NotFoundError("Client", client_id)

    stored_path = file_storage.save_scan_image(client_id, original_filename, data)
    scan = InBodyScan(
        client_id=client_id,
        uploaded_by=uploaded_by,
        file_path=stored_path,
        file_name=original_filename,
        file_size_bytes=len(data),
        mime_type=mime_type,
        extraction_status=ExtractionStatus.PENDING,
    )
    db.add(scan)
    try:
        db.flush()
        # Commits the scan together with its job.
        job = JobStore(db).create(
            JobKind.SCAN_EXTRACTION,
            owner_id=scan.id,
            client_id=client_id,
            created_by=uploaded_by,
        )
    except Exception:
        db.rollback()
        file_storage.delete_file(stored_path)
        raise
    db.refresh(scan)
    return scan, job


def mark_extraction_failed(db: Session, scan_id: int, message: str) -> Optional[InBodyScan]:
    """
    Record a failed or cancelled extraction on a scan that is still pending.

    Scans that already have data are left alone. Does not commit.
    """
    scan = db.get(InBodyScan, scan_id)
    if scan is None or scan.extraction_status != ExtractionStatus.PENDING:
        return scan
    scan.extraction_status = ExtractionStatus.FAILED
    scan.extraction_raw_response = message
    db.add(scan)
    return scan


def verify_scan(
    db: Session,
    scan_id: int,
    corrections: Dict[str, Any],
    trainer_id: Optional[int] = None,
) -> InBodyScan:
    """Apply trainer corrections to the extracted fields and mark the scan verified."""
    scan = get_scan_or_404(db, scan_id)
    if scan.extraction_status not in (ExtractionStatus.COMPLETED, ExtractionStatus.VERIFIED):
        raise ValidationError(
            f"Scan {scan_id} cannot be verified while extraction is {scan.extraction_status}",
            field="extraction_status",
        )

    for name in InBodyScan.NUMERIC_FIELDS:
        if name in corrections and corrections[name] is not None:
            setattr(scan, name, float(corrections[name]))
    if corrections.get("scan_date") is not None:
        value = corrections["scan_date"]
        scan.scan_date = value if isinstance(value, date) else date.fromisoformat(str(value))
    if corrections.get("segment_analysis") is not None:
        scan.segment_analysis = corrections["segment_analysis"]

    scan.extraction_status = ExtractionStatus.VERIFIED
    scan.verified_by = trainer_id
    scan.verified_at = datetime.now(timezone.utc)
    db.add(scan)
    db.commit()
    db.refresh(scan)
    logger.info(f"InBody scan {scan_id} verified by trainer {trainer_id}")
    return scan
