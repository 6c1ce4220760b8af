from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, date
from typing import Any, Optional, List, Dict


class JobResponse(BaseModel):
    """What pollers read: status, progress text and the terminal outcome."""
    id: int
    kind: str
    status: str
    current_step: Optional[str] = None
    owner_id: int
    week_number: Optional[int] = None
    client_id: Optional[int] = None
    result_reference: Optional[int] = None
    error_message: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class JobStartResponse(BaseModel):
    job_id: int
    kind: str
    status: str
    created: bool  # False when an already-active job was reused
    message: str


class CancelJobRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class WeekGenerationRequest(BaseModel):
    week_number: int = Field(..., ge=1)


class WorkoutResponse(BaseModel):
    id: int
    recommendation_id: int
    week_number: int
    session_number: int
    workout_name: Optional[str] = None
    workout_data: Dict[str, Any] = {}
    workout_reasoning: Optional[str] = None
    status: str
    performance_notes: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WeekStatusResponse(BaseModel):
    week_number: int
    total: int
    completed: int
    skipped: int
    in_progress: int
    scheduled: int
    cancelled: int
    is_complete: bool
    workouts: List[WorkoutResponse] = []


class WeekJobsResponse(BaseModel):
    recommendation_id: int
    current_week: int
    jobs: List[JobResponse]


class SweepResponse(BaseModel):
    found: int
    processed: int
    failed: int
    cancelled: int
    skipped: int
    by_kind: Dict[str, Dict[str, int]] = {}


class ScanUploadResponse(BaseModel):
    scan_id: int
    job_id: int
    extraction_status: str
    message: str


class ScanStatusResponse(BaseModel):
    scan_id: int
    extraction_status: str
    job: Optional[JobResponse] = None
    error_message: Optional[str] = None


class ScanVerifyRequest(BaseModel):
    """Trainer corrections; omitted fields keep the extracted value."""
    scan_date: Optional[date] = None
    weight_lbs: Optional[float] = Field(None, gt=0)
    smm_lbs: Optional[float] = Field(None, gt=0)
    body_fat_mass_lbs: Optional[float] = Field(None, ge=0)
    bmi: Optional[float] = Field(None, gt=0)
    percent_body_fat: Optional[float] = Field(None, ge=0, le=100)
    segment_analysis: Optional[Dict[str, Any]] = None


class ScanResponse(BaseModel):
    id: int
    client_id: int
    created_at: datetime
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    extraction_status: str
    scan_date: Optional[date] = None
    weight_lbs: Optional[float] = None
    smm_lbs: Optional[float] = None
    body_fat_mass_lbs: Optional[float] = None
    bmi: Optional[float] = None
    percent_body_fat: Optional[float] = None
    segment_analysis: Optional[Dict[str, Any]] = None
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ExercisePerformance(BaseModel):
    """One exercise as actually performed. Extra keys (sets, loads, RIR) are kept."""
    name: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="allow")


class WorkoutCompleteRequest(BaseModel):
    exercises: List[ExercisePerformance] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)
    completed_at: Optional[datetime] = None


class WorkoutSkipRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
