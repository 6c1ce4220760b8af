from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
from typing import Optional

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class JobKind:
    RECOMMENDATION = "recommendation"
    WEEK_GENERATION = "week-generation"
    SCAN_EXTRACTION = "scan-extraction"

    ALL = (RECOMMENDATION, WEEK_GENERATION, SCAN_EXTRACTION)


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ACTIVE = (PENDING, PROCESSING)
    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class WorkoutStatus:
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    ALL = (SCHEDULED, IN_PROGRESS, COMPLETED, SKIPPED, CANCELLED)


class ExtractionStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    VERIFIED = "verified"


class Trainer(Base):
    __tablename__ = "trainer"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=False)
    display_name = Column(Text, nullable=True)
    role = Column(Text, default="trainer", nullable=False)  # 'trainer' | 'admin'


class Client(Base):
    __tablename__ = "client"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_by = Column(Integer, ForeignKey("trainer.id"), nullable=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)
    status = Column(Text, default="active", nullable=False)  # 'active' | 'inactive' | 'archived'

    questionnaires = relationship("Questionnaire", back_populates="client")
    scans = relationship("InBodyScan", back_populates="client")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Questionnaire(Base):
    __tablename__ = "questionnaire"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("client.id"), nullable=False, index=True)
    # Raw answers keyed by question id; owned by the questionnaire screens.
    responses = Column(JSONType, nullable=False, default=dict)
    notes = Column(Text, nullable=True)

    client = relationship("Client", back_populates="questionnaires")


class InBodyScan(Base):
    """
    Body-composition scan image plus the numbers extracted from it.

    extraction_status: 'pending' -> 'completed' | 'failed'; 'completed' -> 'verified'
    once a trainer has reviewed (and possibly corrected) the extracted fields.
    """

    __tablename__ = "inbody_scan"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)
    client_id = Column(Integer, ForeignKey("client.id"), nullable=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("trainer.id"), nullable=True)

    file_path = Column(Text, nullable=False)
    file_name = Column(Text, nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    mime_type = Column(Text, nullable=True)

    extraction_status = Column(Text, default=ExtractionStatus.PENDING, nullable=False, index=True)
    # Raw model output on success, error text on failure (operator diagnostics).
    extraction_raw_response = Column(Text, nullable=True)

    scan_date = Column(Date, nullable=True)
    weight_lbs = Column(Float, nullable=True)
    smm_lbs = Column(Float, nullable=True)  # skeletal muscle mass
    body_fat_mass_lbs = Column(Float, nullable=True)
    bmi = Column(Float, nullable=True)
    percent_body_fat = Column(Float, nullable=True)
    # {"right_arm": {"muscle_mass_lbs":..,"fat_mass_lbs":..,"percent_fat":..}, ...}
    segment_analysis = Column(JSONType, nullable=True)

    verified_by = Column(Integer, ForeignKey("trainer.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    client = relationship("Client", back_populates="scans")

    NUMERIC_FIELDS = ("weight_lbs", "smm_lbs", "body_fat_mass_lbs", "bmi", "percent_body_fat")


class Recommendation(Base):
    """
    A generated multi-week training plan.

    Rows are only created by a completed recommendation job. current_week moves
    forward only when a week-generation job completes.
    """

    __tablename__ = "recommendation"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)
    client_id = Column(Integer, ForeignKey("client.id"), nullable=False, index=True)
    questionnaire_id = Column(Integer, ForeignKey("questionnaire.id"), nullable=True, index=True)
    inbody_scan_id = Column(Integer, ForeignKey("inbody_scan.id"), nullable=True)
    created_by = Column(Integer, ForeignKey("trainer.id"), nullable=True)

    # 'draft' | 'approved' | 'active' | 'completed'
    status = Column(Text, default="draft", nullable=False)
    current_week = Column(Integer, default=1, nullable=False)

    client_type = Column(Text, nullable=True)
    sessions_per_week = Column(Integer, nullable=True)
    session_length_minutes = Column(Integer, nullable=True)
    training_style = Column(Text, nullable=True)
    plan_structure = Column(JSONType, nullable=True)
    ai_reasoning = Column(Text, nullable=True)

    workouts = relationship("Workout", back_populates="recommendation")


class Workout(Base):
    __tablename__ = "workout"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)
    recommendation_id = Column(Integer, ForeignKey("recommendation.id"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    session_number = Column(Integer, nullable=False)

    workout_name = Column(Text, nullable=True)
    workout_data = Column(JSONType, nullable=False, default=dict)
    workout_reasoning = Column(Text, nullable=True)

    # 'scheduled' | 'in_progress' | 'completed' | 'skipped' | 'cancelled'
    status = Column(Text, default=WorkoutStatus.SCHEDULED, nullable=False)
    # What the client actually did (sets, loads, RIR, notes); context for later weeks.
    performance_notes = Column(JSONType, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    recommendation = relationship("Recommendation", back_populates="workouts")

    __table_args__ = (
        UniqueConstraint("recommendation_id", "week_number", "session_number", name="uq_workout_rec_week_session"),
        Index("ix_workout_rec_week", "recommendation_id", "week_number"),
    )


class Job(Base):
    """
    Background job for one of the three kinds (see JobKind).

    Lifecycle: pending -> processing -> completed | failed; pending | processing -> cancelled.
    Terminal rows are never modified again.

    owner_key identifies what the job works on ('questionnaire:42',
    'recommendation:5:week:3', 'scan:9'). The partial unique index allows at
    most one active job per (kind, owner_key).
    """

    __tablename__ = "job"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(Text, nullable=False, index=True)
    status = Column(Text, default=JobStatus.PENDING, nullable=False, index=True)
    current_step = Column(Text, nullable=True)

    owner_id = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=True)  # week-generation only
    owner_key = Column(Text, nullable=False)

    client_id = Column(Integer, ForeignKey("client.id"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("trainer.id"), nullable=True)

    result_reference = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)

    __table_args__ = (
        Index(
            "uq_job_active_owner",
            "kind",
            "owner_key",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
        Index("ix_job_kind_owner", "kind", "owner_id"),
    )

    @staticmethod
    def build_owner_key(kind: str, owner_id: int, week_number: Optional[int] = None) -> str:
        if kind == JobKind.RECOMMENDATION:
            return f"questionnaire:{owner_id}"
        if kind == JobKind.WEEK_GENERATION:
            return f"recommendation:{owner_id}:week:{week_number}"
        if kind == JobKind.SCAN_EXTRACTION:
            return f"scan:{owner_id}"
        raise ValueError(f"Unknown job kind: {kind}")

    @property
    def is_active(self) -> bool:
        return self.status in JobStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL
