"""
Job Processor Tests

Organization:
    1. Recommendation jobs: questionnaire -> plan + week 1
    2. Week-generation jobs: gate re-check, atomic writes, current_week
    3. Scan-extraction jobs: numbers land on the scan, failures mark it failed
    4. Claiming and cancellation
"""

from unittest.mock import MagicMock

import pytest

from core.exceptions import GenerationFailure, ValidationError
from models import (
    ExtractionStatus,
    InBodyScan,
    JobKind,
    JobStatus,
    Recommendation,
    Workout,
    WorkoutStatus,
)
from services.generation_jobs import cancel_job
from services.inbody_scans import verify_scan
from services.job_processor import JobProcessor, RecommendationJobHandler, error_message_for
from services.job_store import JobStore
from services.plan_generator import PlanGenerator
from services.week_completion import get_week_status
from tests.job_test_helpers import make_workouts


def _workouts(db_session, recommendation_id, week_number):
    return (
        db_session.query(Workout)
        .filter(Workout.recommendation_id == recommendation_id, Workout.week_number == week_number)
        .order_by(Workout.session_number)
        .all()
    )


# ===================================================================
# 1. RECOMMENDATION JOBS
# ===================================================================

class TestRecommendationJobs:

    def test_questionnaire_42_end_to_end(self, db_session, processor, questionnaire, completed_scan):
        """Pending job -> processed -> completed with the new recommendation id."""
        store = JobStore(db_session)
        job = store.create(JobKind.RECOMMENDATION, owner_id=questionnaire.id, client_id=questionnaire.client_id)

        outcome = processor.process(job.id)

        assert outcome == JobStatus.COMPLETED
        done = store.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.current_step == "Completed"
        assert done.error_message is None

        rec = db_session.get(Recommendation, done.result_reference)
        assert rec is not None
        assert rec.questionnaire_id == questionnaire.id
        assert rec.current_week == 1
        assert rec.inbody_scan_id == completed_scan.id
        assert rec.sessions_per_week == 3
        assert [w.session_number for w in _workouts(db_session, rec.id, 1)] == [1, 2, 3]

    def test_exactly_one_recommendation_per_job(self, db_session, processor, questionnaire):
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)
        processor.process(job.id)
        processor.process(job.id)  # already completed: not claimed again

        assert db_session.query(Recommendation).count() == 1

    def test_current_step_visible_while_generating(self, db_session, generator, processor, questionnaire):
        seen = []

        def record_step(context):
            seen.append(JobStore(db_session).get(job.id).current_step)

        generator.before_structure = record_step
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)
        processor.process(job.id)

        assert seen == ["Generating plan structure..."]

    def test_generator_failure_fails_job_with_message(self, db_session, generator, processor, questionnaire):
        generator.fail_with = GenerationFailure("OpenAI request failed: quota exceeded")
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)

        assert processor.process(job.id) == JobStatus.FAILED

        failed = JobStore(db_session).get(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "OpenAI request failed: quota exceeded"
        assert failed.result_reference is None
        assert db_session.query(Recommendation).count() == 0
        assert db_session.query(Workout).count() == 0

    def test_missing_questionnaire_fails_job(self, db_session, processor):
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=999)

        assert processor.process(job.id) == JobStatus.FAILED
        assert "Questionnaire 999 not found" in JobStore(db_session).get(job.id).error_message

    def test_non_finite_numbers_from_model_fail_readably(self, db_session, questionnaire):
        openai_client = MagicMock()
        openai_client.chat.completions.create.return_value = MagicMock(
            choices=[MagicMock(message=MagicMock(content='{"client_type": "general_fitness", "sessions_per_week": 1e400}'))]
        )
        handler = RecommendationJobHandler(PlanGenerator(client=openai_client, model="test-model"))
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)

        outcome = JobProcessor(db_session, handlers={JobKind.RECOMMENDATION: handler}).process(job.id)

        assert outcome == JobStatus.FAILED
        assert JobStore(db_session).get(job.id).error_message == (
            "Generated recommendation structure is missing required fields"
        )

    def test_empty_workout_list_fails_job(self, db_session, generator, processor, questionnaire):
        generator.sessions_per_week = 0
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)

        assert processor.process(job.id) == JobStatus.FAILED
        assert db_session.query(Recommendation).count() == 0


# ===================================================================
# 2. WEEK-GENERATION JOBS
# ===================================================================

class TestWeekGenerationJobs:

    def test_generates_next_week_and_advances_plan(self, db_session, processor, make_recommendation, all_done):
        rec = make_recommendation({1: all_done})
        job = JobStore(db_session).create(JobKind.WEEK_GENERATION, owner_id=rec.id, week_number=2)

        assert processor.process(job.id) == JobStatus.COMPLETED

        db_session.refresh(rec)
        assert rec.current_week == 2
        week_2 = _workouts(db_session, rec.id, 2)
        assert len(week_2) == 3
        assert all(w.status == WorkoutStatus.SCHEDULED for w in week_2)

    def test_generator_raises_leaves_no_workouts(self, db_session, generator, processor, make_recommendation, all_done):
        """Failed week generation: job failed with message, nothing written for that week."""
        generator.fail_with = GenerationFailure("OpenAI request failed: 503")
        rec = make_recommendation({1: all_done})
        job = JobStore(db_session).create(JobKind.WEEK_GENERATION, owner_id=rec.id, week_number=2)

        assert processor.process(job.id) == JobStatus.FAILED

        failed = JobStore(db_session).get(job.id)
        assert failed.error_message == "OpenAI request failed: 503"
        assert _workouts(db_session, rec.id, 2) == []
        db_session.refresh(rec)
        assert rec.current_week == 1

    def test_invalid_generated_week_leaves_no_partial_rows(self, db_session, generator, processor, make_recommendation, all_done):
        # Session 2 is duplicated; none of the three rows may survive.
        workouts = make_workouts(2, 3)
        workouts[2].session_number = 2
        generator.week_workouts = workouts
        rec = make_recommendation({1: all_done})
        job = JobStore(db_session).create(JobKind.WEEK_GENERATION, owner_id=rec.id, week_number=2)

        assert processor.process(job.id) == JobStatus.FAILED
        assert "duplicate session numbers" in JobStore(db_session).get(job.id).error_message
        assert _workouts(db_session, rec.id, 2) == []

    def test_gate_rechecked_when_job_runs(self, db_session, processor, make_recommendation, all_done):
        rec = make_recommendation({1: all_done})
        job = JobStore(db_session).create(JobKind.WEEK_GENERATION, owner_id=rec.id, week_number=2)

        # Trainer reopens a session after the job was queued.
        workout = _workouts(db_session, rec.id, 1)[0]
        workout.status = WorkoutStatus.IN_PROGRESS
        db_session.commit()

        assert processor.process(job.id) == JobStatus.FAILED
        assert "Week 1 must be completed" in JobStore(db_session).get(job.id).error_message
        assert _workouts(db_session, rec.id, 2) == []

    def test_previous_weeks_passed_to_generator(self, db_session, generator, processor, make_recommendation, all_done):
        captured = {}
        generator.before_week = lambda ctx: captured.update(previous=ctx.previous_weeks)
        rec = make_recommendation({1: all_done, 2: all_done})
        job = JobStore(db_session).create(JobKind.WEEK_GENERATION, owner_id=rec.id, week_number=3)

        assert processor.process(job.id) == JobStatus.COMPLETED
        assert [w["week_number"] for w in captured["previous"]] == [1, 2]
        assert [w["status"] for w in captured["previous"][0]["workouts"]] == all_done


# ===================================================================
# 3. SCAN-EXTRACTION JOBS
# ===================================================================

class TestScanExtractionJobs:

    @pytest.fixture
    def pending_scan(self, db_session, sample_client, scan_bytes):
        scan = InBodyScan(
            client_id=sample_client.id,
            file_path="/uploads/inbody-scans/scan-1.png",
            file_name="scan-1.png",
            mime_type="image/png",
            extraction_status=ExtractionStatus.PENDING,
        )
        db_session.add(scan)
        db_session.commit()
        scan_bytes[scan.file_path] = b"\x89PNG fake image"
        return scan

    def test_extracted_values_saved(self, db_session, processor, extractor, pending_scan):
        job = JobStore(db_session).create(JobKind.SCAN_EXTRACTION, owner_id=pending_scan.id)

        assert processor.process(job.id) == JobStatus.COMPLETED

        db_session.refresh(pending_scan)
        assert pending_scan.extraction_status == ExtractionStatus.COMPLETED
        assert pending_scan.weight_lbs == 180.2
        assert pending_scan.percent_body_fat == 16.7
        assert pending_scan.segment_analysis["trunk"]["percent_fat"] == 15.0
        assert extractor.calls == [b"\x89PNG fake image"]
        assert JobStore(db_session).get(job.id).result_reference == pending_scan.id

    def test_extraction_failure_marks_scan_failed(self, db_session, processor, extractor, pending_scan):
        extractor.fail_with = GenerationFailure("No valid data extracted from image")
        job = JobStore(db_session).create(JobKind.SCAN_EXTRACTION, owner_id=pending_scan.id)

        assert processor.process(job.id) == JobStatus.FAILED

        db_session.refresh(pending_scan)
        assert pending_scan.extraction_status == ExtractionStatus.FAILED
        assert pending_scan.extraction_raw_response == "No valid data extracted from image"
        assert pending_scan.weight_lbs is None
        assert JobStore(db_session).get(job.id).error_message == "No valid data extracted from image"

    def test_missing_image_file_fails_job(self, db_session, processor, pending_scan, scan_bytes):
        scan_bytes.clear()
        job = JobStore(db_session).create(JobKind.SCAN_EXTRACTION, owner_id=pending_scan.id)

        assert processor.process(job.id) == JobStatus.FAILED
        db_session.refresh(pending_scan)
        assert pending_scan.extraction_status == ExtractionStatus.FAILED

    def test_cancelled_while_pending_marks_scan_failed(self, db_session, processor, extractor, pending_scan):
        job = JobStore(db_session).create(JobKind.SCAN_EXTRACTION, owner_id=pending_scan.id)

        cancel_job(db_session, job.id, "Uploaded the wrong file")
        assert processor.process(job.id) is None

        db_session.refresh(pending_scan)
        assert pending_scan.extraction_status == ExtractionStatus.FAILED
        assert pending_scan.extraction_raw_response == "Uploaded the wrong file"
        assert extractor.calls == []
        with pytest.raises(ValidationError) as exc_info:
            verify_scan(db_session, pending_scan.id, {})
        assert "extraction is failed" in exc_info.value.detail

    def test_cancelled_while_processing_marks_scan_failed(self, db_session, processor, extractor, pending_scan):
        job = JobStore(db_session).create(JobKind.SCAN_EXTRACTION, owner_id=pending_scan.id)
        real_extract = extractor.extract_scan_data

        def cancel_then_extract(image_bytes, mime_type="image/png"):
            JobStore(db_session).cancel(job.id, "Trainer re-uploaded")
            return real_extract(image_bytes, mime_type=mime_type)

        extractor.extract_scan_data = cancel_then_extract

        assert processor.process(job.id) == JobStatus.CANCELLED

        db_session.refresh(pending_scan)
        assert pending_scan.extraction_status == ExtractionStatus.FAILED
        assert pending_scan.extraction_raw_response == "Trainer re-uploaded"
        assert pending_scan.weight_lbs is None
        assert JobStore(db_session).get(job.id).status == JobStatus.CANCELLED

    def test_cancelling_a_generation_job_leaves_scans_alone(self, db_session, questionnaire, completed_scan):
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)
        cancel_job(db_session, job.id)

        db_session.refresh(completed_scan)
        assert completed_scan.extraction_status == ExtractionStatus.COMPLETED


# ===================================================================
# 4. CLAIMING AND CANCELLATION
# ===================================================================

class TestClaimingAndCancellation:

    def test_job_claimed_elsewhere_is_skipped(self, db_session, generator, processor, questionnaire):
        store = JobStore(db_session)
        job = store.create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)
        store.mark_processing(job.id)  # another sweep got there first

        assert processor.process(job.id) is None
        assert generator.calls == []
        assert store.get(job.id).status == JobStatus.PROCESSING

    def test_missing_job_is_skipped(self, processor):
        assert processor.process(12345) is None

    def test_cancel_during_processing_discards_results(self, db_session, generator, processor, make_recommendation, all_done):
        rec = make_recommendation({1: all_done})
        job = JobStore(db_session).create(JobKind.WEEK_GENERATION, owner_id=rec.id, week_number=2)
        generator.before_week = lambda ctx: JobStore(db_session).cancel(job.id, "Trainer cancelled")

        assert processor.process(job.id) == JobStatus.CANCELLED

        cancelled = JobStore(db_session).get(job.id)
        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.cancel_reason == "Trainer cancelled"
        assert cancelled.error_message is None
        assert _workouts(db_session, rec.id, 2) == []
        assert get_week_status(db_session, rec.id, 2).total == 0

    def test_unknown_kind_fails_job(self, db_session, questionnaire):
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)
        processor = JobProcessor(db_session, handlers={})

        assert processor.process(job.id) == JobStatus.FAILED
        assert "No processor registered" in JobStore(db_session).get(job.id).error_message

    def test_unexpected_exception_becomes_failed(self, db_session, questionnaire):
        handler = MagicMock()
        handler.run.side_effect = RuntimeError("disk on fire")
        job = JobStore(db_session).create(JobKind.RECOMMENDATION, owner_id=questionnaire.id)

        outcome = JobProcessor(db_session, handlers={JobKind.RECOMMENDATION: handler}).process(job.id)

        assert outcome == JobStatus.FAILED
        assert JobStore(db_session).get(job.id).error_message == "disk on fire"
        handler.on_failure.assert_called_once()


class TestErrorMessages:

    def test_http_exception_detail_dict(self):
        from core.exceptions import WeekNotCompleteError

        message = error_message_for(WeekNotCompleteError(3, {"total": 4}))
        assert message.startswith("Week 2 must be completed")

    def test_empty_exception_uses_class_name(self):
        assert error_message_for(RuntimeError()) == "RuntimeError"
