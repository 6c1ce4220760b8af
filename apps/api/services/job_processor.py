"""
Job Processor

Runs one pending job to a terminal state.

    pending --mark_processing--> processing --handler.run--> completed
                                             +--exception--> failed

One handler per job kind, looked up in a registry. Handlers:
    - report progress through `ctx.step(...)` (committed immediately so pollers see it)
    - call the external collaborators (LLM generation, scan extraction)
    - build their full result in memory, then write it in one go
    - never commit; the processor commits the writes together with the
      `completed` transition, so a failed attempt leaves no partial rows

`process()` never raises. Every error becomes `mark_failed` with a
readable message (collaborator messages verbatim). A job cancelled while
its handler ran keeps `cancelled`, its writes are rolled back and the
handler's `on_cancel` hook updates the owning entity.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from core.exceptions import GenerationFailure, InvalidTransitionError, NotFoundError
from core.logging import job_log_fields
from models import (
    Client,
    ExtractionStatus,
    InBodyScan,
    Job,
    JobKind,
    JobStatus,
    Questionnaire,
    Recommendation,
    Workout,
)
from services import file_storage
from services.inbody_extraction import InBodyExtractor
from services.inbody_scans import latest_scan_for_client, mark_extraction_failed, scan_summary
from services.job_store import JobStore
from services.plan_generator import (
    GeneratedWorkout,
    PlanContext,
    PlanGenerator,
    PlanStructure,
    WeekContext,
)
from services.week_completion import check_next_week_allowed, get_week_workouts

logger = logging.getLogger(__name__)


def error_message_for(exc: BaseException) -> str:
    """Human-readable message stored on a failed job."""
    if isinstance(exc, HTTPException):
        detail = exc.detail
        if isinstance(detail, dict):
            return str(detail.get("message") or detail)
        return str(detail)
    if isinstance(exc, KeyError):
        return f"Missing key: {exc}"
    return str(exc) or exc.__class__.__name__


class JobContext:
    """What a handler gets: the session, the job row and a progress reporter."""

    def __init__(self, db: Session, store: JobStore, job: Job):
        self.db = db
        self.store = store
        self.job = job

    def step(self, text: str) -> None:
        """Publish progress text. Raises InvalidTransitionError if the job was cancelled meanwhile."""
        self.store.update_step(self.job.id, text)
        logger.info(f"[Job {self.job.id}] {text}", extra=job_log_fields(self.job, step=text))


class JobHandler:
    """Kind-specific work. Subclasses implement `run`; `on_failure` and `on_cancel` are optional."""

    kind: str = ""

    def run(self, ctx: JobContext) -> Optional[int]:
        """Do the work and return the result reference (or None)."""
        raise NotImplementedError

    def on_failure(self, db: Session, job: Job, message: str) -> None:
        """Update the owning entity after a failed attempt. Must not commit."""

    def on_cancel(self, db: Session, job: Job, reason: str) -> None:
        """Update the owning entity after the job was cancelled. Must not commit."""


def _validate_workouts(workouts: List[GeneratedWorkout], week_number: int) -> None:
    if not workouts:
        raise GenerationFailure("No workouts were generated")

    invalid = [w for w in workouts if not w.session_number or not w.workout_data]
    if invalid:
        raise GenerationFailure(f"Generated {len(invalid)} workouts with missing required fields")

    wrong_week = [w for w in workouts if w.week_number != week_number]
    if wrong_week:
        raise GenerationFailure(
            f"Generated {len(wrong_week)} workouts for the wrong week (expected Week {week_number})"
        )

    sessions = [w.session_number for w in workouts]
    if len(set(sessions)) != len(sessions):
        raise GenerationFailure(f"Generated duplicate session numbers for Week {week_number}")


def _plan_context(db: Session, questionnaire: Questionnaire, client: Client) -> PlanContext:
    return PlanContext(
        client_name=client.full_name,
        questionnaire=questionnaire.responses or {},
        questionnaire_notes=questionnaire.notes,
        body_composition=scan_summary(latest_scan_for_client(db, client.id)),
    )


def _workout_rows(recommendation_id: int, workouts: List[GeneratedWorkout]) -> List[Workout]:
    return [
        Workout(
            recommendation_id=recommendation_id,
            week_number=w.week_number,
            session_number=w.session_number,
            workout_name=w.workout_name,
            workout_data=w.workout_data,
            workout_reasoning=w.workout_reasoning,
        )
        for w in sorted(workouts, key=lambda w: w.session_number)
    ]


class RecommendationJobHandler(JobHandler):
    """questionnaire -> new Recommendation + its Week 1 workouts."""

    kind = JobKind.RECOMMENDATION

    def __init__(self, generator: PlanGenerator):
        self.generator = generator

    def run(self, ctx: JobContext) -> Optional[int]:
        db, job = ctx.db, ctx.job

        ctx.step("Analyzing questionnaire...")
        questionnaire = db.get(Questionnaire, job.owner_id)
        if questionnaire is None:
            raise LookupError(f"Questionnaire {job.owner_id} not found")
        client = db.get(Client, questionnaire.client_id)
        if client is None:
            raise LookupError(f"Client {questionnaire.client_id} not found")
        context = _plan_context(db, questionnaire, client)
        scan = latest_scan_for_client(db, client.id)

        ctx.step("Generating plan structure...")
        structure = self.generator.generate_plan_structure(context)
        if not structure.client_type or not structure.sessions_per_week:
            raise GenerationFailure("Generated recommendation structure is missing required fields")

        ctx.step("Generating workouts...")
        workouts = self.generator.generate_workouts(structure, context, week_number=1)
        _validate_workouts(workouts, week_number=1)
        if len(workouts) != structure.sessions_per_week:
            logger.warning(
                f"[Job {job.id}] Workout count mismatch: expected {structure.sessions_per_week}, got {len(workouts)}",
                extra=job_log_fields(job),
            )

        ctx.step("Saving recommendation...")
        recommendation = Recommendation(
            client_id=client.id,
            questionnaire_id=questionnaire.id,
            inbody_scan_id=scan.id if scan else None,
            created_by=job.created_by,
            status="draft",
            current_week=1,
            client_type=structure.client_type,
            sessions_per_week=structure.sessions_per_week,
            session_length_minutes=structure.session_length_minutes,
            training_style=structure.training_style,
            plan_structure=structure.plan_structure,
            ai_reasoning=structure.ai_reasoning,
        )
        db.add(recommendation)
        db.flush()
        db.add_all(_workout_rows(recommendation.id, workouts))
        db.flush()
        return recommendation.id


class WeekGenerationJobHandler(JobHandler):
    """recommendation + target week -> that week's workouts; advances current_week."""

    kind = JobKind.WEEK_GENERATION

    def __init__(self, generator: PlanGenerator):
        self.generator = generator

    def run(self, ctx: JobContext) -> Optional[int]:
        db, job = ctx.db, ctx.job
        week_number = job.week_number

        ctx.step("Collecting performance data...")
        # Worker sessions outlive one job; reload what trainers may have changed.
        recommendation = db.get(Recommendation, job.owner_id, populate_existing=True)
        if recommendation is None:
            raise LookupError("Recommendation not found")
        # The start endpoint checked this already; workouts may have changed since.
        check_next_week_allowed(db, recommendation, week_number)

        questionnaire = db.get(Questionnaire, recommendation.questionnaire_id) if recommendation.questionnaire_id else None
        if questionnaire is None:
            raise LookupError("Questionnaire not found")
        client = db.get(Client, recommendation.client_id)
        if client is None:
            raise LookupError(f"Client {recommendation.client_id} not found")

        previous_weeks = []
        for week in range(1, week_number):
            previous_weeks.append({
                "week_number": week,
                "workouts": [
                    {
                        "session_number": w.session_number,
                        "workout_name": w.workout_name,
                        "status": w.status,
                        "workout_data": w.workout_data,
                        "performance_notes": w.performance_notes,
                    }
                    for w in get_week_workouts(db, recommendation.id, week)
                ],
            })

        context = WeekContext(
            plan=_plan_context(db, questionnaire, client),
            structure=PlanStructure(
                client_type=recommendation.client_type,
                sessions_per_week=recommendation.sessions_per_week,
                session_length_minutes=recommendation.session_length_minutes,
                training_style=recommendation.training_style,
                plan_structure=recommendation.plan_structure or {},
                ai_reasoning=recommendation.ai_reasoning,
            ),
            week_number=week_number,
            previous_weeks=previous_weeks,
        )

        ctx.step(f"Generating week {week_number}...")
        workouts = self.generator.generate_week_workouts(context)
        _validate_workouts(workouts, week_number=week_number)

        ctx.step("Saving workouts...")
        db.add_all(_workout_rows(recommendation.id, workouts))
        recommendation.current_week = week_number
        db.add(recommendation)
        db.flush()
        return None


class ScanExtractionJobHandler(JobHandler):
    """scan image -> extracted numeric fields on the scan row."""

    kind = JobKind.SCAN_EXTRACTION

    def __init__(
        self,
        extractor: InBodyExtractor,
        read_bytes: Callable[[str], bytes] = file_storage.read_file,
    ):
        self.extractor = extractor
        self.read_bytes = read_bytes

    def run(self, ctx: JobContext) -> Optional[int]:
        db, job = ctx.db, ctx.job

        ctx.step("Reading scan image...")
        scan = db.get(InBodyScan, job.owner_id)
        if scan is None:
            raise LookupError(f"InBody scan {job.owner_id} not found")
        image = self.read_bytes(scan.file_path)

        ctx.step("Extracting body composition data...")
        extracted = self.extractor.extract_scan_data(image, mime_type=scan.mime_type or "image/png")

        ctx.step("Saving extracted data...")
        for name in InBodyScan.NUMERIC_FIELDS:
            setattr(scan, name, getattr(extracted, name))
        scan.scan_date = extracted.scan_date
        scan.segment_analysis = extracted.segment_analysis or None
        scan.extraction_raw_response = extracted.raw_response
        scan.extraction_status = ExtractionStatus.COMPLETED
        db.add(scan)
        db.flush()
        return scan.id

    def on_failure(self, db: Session, job: Job, message: str) -> None:
        mark_extraction_failed(db, job.owner_id, message)

    def on_cancel(self, db: Session, job: Job, reason: str) -> None:
        mark_extraction_failed(db, job.owner_id, reason)


def default_handlers(
    generator: Optional[PlanGenerator] = None,
    extractor: Optional[InBodyExtractor] = None,
) -> Dict[str, JobHandler]:
    generator = generator or PlanGenerator()
    extractor = extractor or InBodyExtractor()
    handlers: List[JobHandler] = [
        RecommendationJobHandler(generator),
        WeekGenerationJobHandler(generator),
        ScanExtractionJobHandler(extractor),
    ]
    return {h.kind: h for h in handlers}


class JobProcessor:
    def __init__(self, db: Session, handlers: Optional[Dict[str, JobHandler]] = None):
        self.db = db
        self.store = JobStore(db)
        self.handlers = handlers if handlers is not None else default_handlers()

    def process(self, job_id: int) -> Optional[str]:
        """
        Run one job. Returns its final status, or None when the job was not
        claimed (missing, or no longer pending because another sweep took it).
        """
        try:
            job = self.store.mark_processing(job_id)
        except (InvalidTransitionError, NotFoundError) as e:
            self.db.rollback()
            logger.info(f"[Job {job_id}] Skipped: {error_message_for(e)}", extra=job_log_fields(job_id))
            return None

        started = time.monotonic()
        logger.info(f"[Job {job.id}] Starting {job.kind} job", extra=job_log_fields(job))

        handler = self.handlers.get(job.kind)
        if handler is None:
            return self._fail(job, None, f"No processor registered for job kind '{job.kind}'")

        try:
            result_reference = handler.run(JobContext(self.db, self.store, job))
            self.store.mark_completed(job.id, result_reference, commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            current = self.store.get(job.id)
            if current is not None and current.status == JobStatus.CANCELLED:
                logger.info(
                    f"[Job {job.id}] Cancelled while processing; discarding partial result",
                    extra=job_log_fields(job),
                )
                self._record_cancel(job, handler, current.cancel_reason or "Cancelled by user")
                return JobStatus.CANCELLED
            logger.error(
                f"[Job {job.id}] Failed after {round((time.monotonic() - started) * 1000)}ms: {error_message_for(e)}",
                exc_info=not isinstance(e, GenerationFailure),
                extra=job_log_fields(job),
            )
            return self._fail(job, handler, error_message_for(e))

        duration_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            f"[Job {job.id}] Completed in {duration_ms}ms",
            extra=job_log_fields(job, duration_ms=duration_ms, result_reference=result_reference),
        )
        return JobStatus.COMPLETED

    def _record_cancel(self, job: Job, handler: JobHandler, reason: str) -> None:
        try:
            handler.on_cancel(self.db, job, reason)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"[Job {job.id}] Failed to record cancellation: {e}",
                exc_info=True,
                extra=job_log_fields(job),
            )

    def _fail(self, job: Job, handler: Optional[JobHandler], message: str) -> str:
        try:
            if handler is not None:
                handler.on_failure(self.db, job, message)
            self.store.mark_failed(job.id, message)
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"[Job {job.id}] Failed to record failure: {e}",
                exc_info=True,
                extra=job_log_fields(job, original_error=message),
            )
        return JobStatus.FAILED
