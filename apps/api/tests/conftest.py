"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite file. Every test gets freshly created
tables, so rows committed by the code under test never leak between tests.
The LLM and OCR collaborators are replaced by in-process fakes.
"""
import os
import sys
import tempfile
from typing import Dict, List, Optional

# Settings are read at import time; configure the environment first.
_TMP_DIR = tempfile.mkdtemp(prefix="coaching-jobs-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-at-least-32-characters-long"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["UPLOADS_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["LOG_FORMAT"] = "text"
os.environ["OPENAI_API_KEY"] = ""

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest  # noqa: E402

from core.database import Base, SessionLocal, engine  # noqa: E402
from models import (  # noqa: E402
    Client,
    ExtractionStatus,
    InBodyScan,
    Questionnaire,
    Recommendation,
    Trainer,
    Workout,
    WorkoutStatus,
)
from services.job_processor import (  # noqa: E402
    JobProcessor,
    RecommendationJobHandler,
    ScanExtractionJobHandler,
    WeekGenerationJobHandler,
)
from tests.job_test_helpers import FakeExtractor, FakePlanGenerator  # noqa: E402


# ===================================================================
# Database
# ===================================================================

@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test; the session is closed and tables dropped afterwards."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def generator():
    return FakePlanGenerator()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def scan_bytes():
    return {}


@pytest.fixture
def processor(db_session, generator, extractor, scan_bytes):
    """JobProcessor wired to the fakes. Scan images are read from `scan_bytes` by path."""
    handlers = [
        RecommendationJobHandler(generator),
        WeekGenerationJobHandler(generator),
        ScanExtractionJobHandler(extractor, read_bytes=lambda path: scan_bytes[path]),
    ]
    return JobProcessor(db_session, handlers={h.kind: h for h in handlers})


# ===================================================================
# Domain rows
# ===================================================================

@pytest.fixture
def trainer(db_session):
    trainer = Trainer(email="coach@example.com", display_name="Coach Carter")
    db_session.add(trainer)
    db_session.commit()
    db_session.refresh(trainer)
    return trainer


@pytest.fixture
def sample_client(db_session, trainer):
    client = Client(first_name="Jamie", last_name="Rivera", email="jamie@example.com", created_by=trainer.id)
    db_session.add(client)
    db_session.commit()
    db_session.refresh(client)
    return client


@pytest.fixture
def questionnaire(db_session, sample_client):
    q = Questionnaire(
        client_id=sample_client.id,
        responses={"goals": ["build strength"], "experience": "beginner", "days_per_week": 3},
        notes="Old knee injury, avoid deep lunges",
    )
    db_session.add(q)
    db_session.commit()
    db_session.refresh(q)
    return q


@pytest.fixture
def completed_scan(db_session, sample_client, trainer):
    scan = InBodyScan(
        client_id=sample_client.id,
        uploaded_by=trainer.id,
        file_path="/uploads/inbody-scans/1/scan.png",
        file_name="scan.png",
        mime_type="image/png",
        extraction_status=ExtractionStatus.COMPLETED,
        weight_lbs=181.0,
        smm_lbs=80.0,
        body_fat_mass_lbs=31.0,
        bmi=24.6,
        percent_body_fat=17.1,
    )
    db_session.add(scan)
    db_session.commit()
    db_session.refresh(scan)
    return scan


@pytest.fixture
def make_recommendation(db_session, sample_client, questionnaire):
    """
    Build a plan with workouts already in place.

    weeks maps week number -> list of workout statuses, one workout per status.
    current_week defaults to the highest week given.
    """

    def _make(weeks: Dict[int, List[str]], current_week: Optional[int] = None) -> Recommendation:
        rec = Recommendation(
            client_id=sample_client.id,
            questionnaire_id=questionnaire.id,
            status="active",
            current_week=current_week or max(weeks or {1: []}),
            client_type="general_fitness",
            sessions_per_week=3,
            session_length_minutes=60,
            training_style="full_body",
            plan_structure={"weeks": []},
        )
        db_session.add(rec)
        db_session.flush()
        for week_number, statuses in weeks.items():
            for session_number, status in enumerate(statuses, start=1):
                db_session.add(
                    Workout(
                        recommendation_id=rec.id,
                        week_number=week_number,
                        session_number=session_number,
                        workout_name=f"W{week_number}S{session_number}",
                        workout_data={"exercises": []},
                        status=status,
                    )
                )
        db_session.commit()
        db_session.refresh(rec)
        return rec

    return _make


@pytest.fixture
def all_done():
    return [WorkoutStatus.COMPLETED, WorkoutStatus.COMPLETED, WorkoutStatus.SKIPPED]


# ===================================================================
# API
# ===================================================================

@pytest.fixture
def api_client(db_session, trainer):
    """TestClient authenticated as `trainer`."""
    from fastapi.testclient import TestClient
    from core.auth import get_current_user
    from main import app

    app.dependency_overrides[get_current_user] = lambda: trainer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def anon_client(db_session):
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
