"""
InBody Scan API Endpoints

Upload stores the image and queues a scan-extraction job; the numbers are
filled in by the worker. Trainers then review and verify the extracted values.
"""
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.auth import get_current_user
from models import InBodyScan, JobKind, JobStatus, Trainer
from schemas import (
    JobResponse,
    ScanResponse,
    ScanStatusResponse,
    ScanUploadResponse,
    ScanVerifyRequest,
)
from services import file_storage
from services.inbody_scans import create_scan_from_upload, get_scan_or_404, verify_scan
from services.job_store import JobStore
from tasks.job_tasks import enqueue_job

router = APIRouter(prefix="/v1/inbody-scans", tags=["inbody_scans"])

ALLOWED_MIME_TYPES = {
    "image/png": (".png",),
    "image/jpeg": (".jpg", ".jpeg"),
}


def _mime_type_for(filename: str, content_type: str) -> str:
    content_type = (content_type or "").lower()
    if content_type in ALLOWED_MIME_TYPES:
        return content_type
    lowered = filename.lower()
    for mime, extensions in ALLOWED_MIME_TYPES.items():
        if lowered.endswith(extensions):
            return mime
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="expected_png_or_jpeg")


@router.post("/upload", response_model=ScanUploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_scan(
    client_id: int = Form(...),
    file: UploadFile = File(...),
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Upload an InBody scan image (PNG or JPEG).

    Extraction runs asynchronously; poll /v1/inbody-scans/{scan_id}/status or
    the returned job id.
    """
    original_filename = file_storage.safe_filename(file.filename or "inbody-scan.png")
    mime_type = _mime_type_for(original_filename, file.content_type)

    chunks = []
    total = 0
    try:
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            total += len(chunk)
            if total > settings.SCAN_MAX_FILE_BYTES:
                raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="file_too_large")
            chunks.append(chunk)
    finally:
        await file.close()

    if total == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="empty_file")

    scan, job = create_scan_from_upload(
        db,
        client_id=client_id,
        original_filename=original_filename,
        data=b"".join(chunks),
        mime_type=mime_type,
        uploaded_by=current_user.id,
    )

    # Process now instead of waiting for the next sweep
    enqueue_job(job.id)

    return ScanUploadResponse(
        scan_id=scan.id,
        job_id=job.id,
        extraction_status=scan.extraction_status,
        message="Scan uploaded; extraction started",
    )


@router.get("/{scan_id}/status", response_model=ScanStatusResponse)
def scan_status(
    scan_id: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    scan = get_scan_or_404(db, scan_id)
    job = JobStore(db).get_latest_by_owner(JobKind.SCAN_EXTRACTION, scan.id)
    error_message = None
    if job is not None and job.status == JobStatus.FAILED:
        error_message = job.error_message
    elif job is not None and job.status == JobStatus.CANCELLED:
        error_message = job.cancel_reason
    return ScanStatusResponse(
        scan_id=scan.id,
        extraction_status=scan.extraction_status,
        job=JobResponse.model_validate(job) if job is not None else None,
        error_message=error_message,
    )


@router.get("/{scan_id}", response_model=ScanResponse)
def get_scan(
    scan_id: int,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> InBodyScan:
    return get_scan_or_404(db, scan_id)


@router.put("/{scan_id}/verify", response_model=ScanResponse)
def verify(
    scan_id: int,
    request: ScanVerifyRequest,
    current_user: Trainer = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Apply the trainer's corrections and mark the scan verified."""
    return verify_scan(db, scan_id, request.model_dump(exclude_none=True), trainer_id=current_user.id)
