"""
InBody Scan Tests

Organization:
    1. Upload: stores the file, creates the scan + extraction job, enqueues it
    2. Extraction: worker fills in the numbers; status endpoint reflects it
    3. Verification: trainer corrections
    4. Parsing the model's answer
"""

import os
from datetime import date
from unittest.mock import MagicMock

import pytest

from core.config import settings
from core.exceptions import GenerationFailure, ValidationError
from models import ExtractionStatus, InBodyScan, JobKind, JobStatus
from services.inbody_extraction import parse_extraction
from services.inbody_scans import create_scan_from_upload, latest_scan_for_client, verify_scan
from services.job_processor import JobProcessor, ScanExtractionJobHandler
from services.job_store import JobStore
from services.llm_json import coerce_float, coerce_int, extract_json_object

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def enqueue(monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr("routers.inbody_scans.enqueue_job", mock)
    return mock


def _upload(api_client, client_id, filename="scan.png", data=PNG_BYTES, content_type="image/png"):
    return api_client.post(
        "/v1/inbody-scans/upload",
        data={"client_id": str(client_id)},
        files={"file": (filename, data, content_type)},
    )


# ===================================================================
# 1. UPLOAD
# ===================================================================

class TestUpload:

    def test_upload_creates_scan_and_job(self, db_session, api_client, sample_client, trainer, enqueue):
        response = _upload(api_client, sample_client.id)

        assert response.status_code == 202
        body = response.json()
        assert body["extraction_status"] == ExtractionStatus.PENDING

        scan = db_session.get(InBodyScan, body["scan_id"])
        assert scan.uploaded_by == trainer.id
        assert scan.mime_type == "image/png"
        assert scan.file_size_bytes == len(PNG_BYTES)
        assert scan.file_path.startswith(os.path.join(settings.UPLOADS_DIR, "inbody-scans", str(sample_client.id)))
        with open(scan.file_path, "rb") as f:
            assert f.read() == PNG_BYTES

        job = JobStore(db_session).get(body["job_id"])
        assert job.kind == JobKind.SCAN_EXTRACTION
        assert job.owner_id == scan.id
        assert job.status == JobStatus.PENDING
        enqueue.assert_called_once_with(job.id)

    def test_jpeg_detected_from_extension(self, db_session, api_client, sample_client, enqueue):
        response = _upload(api_client, sample_client.id, filename="scan.JPG", content_type="application/octet-stream")

        assert response.status_code == 202
        assert db_session.get(InBodyScan, response.json()["scan_id"]).mime_type == "image/jpeg"

    def test_rejects_other_file_types(self, api_client, sample_client, enqueue):
        response = _upload(api_client, sample_client.id, filename="scan.pdf", content_type="application/pdf")

        assert response.status_code == 400
        enqueue.assert_not_called()

    def test_rejects_empty_file(self, api_client, sample_client, enqueue):
        assert _upload(api_client, sample_client.id, data=b"").status_code == 400

    def test_rejects_large_file(self, api_client, sample_client, enqueue, monkeypatch):
        monkeypatch.setattr(settings, "SCAN_MAX_FILE_BYTES", 10)

        response = _upload(api_client, sample_client.id)

        assert response.status_code == 413
        enqueue.assert_not_called()

    def test_job_creation_failure_leaves_no_orphan_scan(self, db_session, sample_client, monkeypatch):
        def broken_create(self, *args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(JobStore, "create", broken_create)
        scan_dir = os.path.join(settings.UPLOADS_DIR, "inbody-scans", str(sample_client.id))
        before = set(os.listdir(scan_dir)) if os.path.isdir(scan_dir) else set()

        with pytest.raises(RuntimeError):
            create_scan_from_upload(db_session, sample_client.id, "orphan.png", PNG_BYTES, "image/png")

        assert db_session.query(InBodyScan).count() == 0
        assert set(os.listdir(scan_dir)) == before

    def test_unknown_client(self, db_session, api_client, enqueue):
        response = _upload(api_client, 9999)

        assert response.status_code == 404
        assert db_session.query(InBodyScan).count() == 0


# ===================================================================
# 2. EXTRACTION
# ===================================================================

class TestExtraction:

    def test_upload_then_extract_then_status(self, db_session, api_client, sample_client, extractor, enqueue):
        body = _upload(api_client, sample_client.id).json()

        status = api_client.get(f"/v1/inbody-scans/{body['scan_id']}/status").json()
        assert status["extraction_status"] == ExtractionStatus.PENDING
        assert status["job"]["status"] == JobStatus.PENDING

        # Real file storage: the worker reads what the API wrote.
        processor = JobProcessor(db_session, handlers={JobKind.SCAN_EXTRACTION: ScanExtractionJobHandler(extractor)})
        assert processor.process(body["job_id"]) == JobStatus.COMPLETED
        assert extractor.calls == [PNG_BYTES]

        status = api_client.get(f"/v1/inbody-scans/{body['scan_id']}/status").json()
        assert status["extraction_status"] == ExtractionStatus.COMPLETED
        assert status["job"]["status"] == JobStatus.COMPLETED
        assert status["error_message"] is None

        scan = api_client.get(f"/v1/inbody-scans/{body['scan_id']}").json()
        assert scan["weight_lbs"] == 180.2
        assert scan["smm_lbs"] == 82.4

    def test_failed_extraction_reported(self, db_session, api_client, sample_client, extractor, enqueue):
        extractor.fail_with = GenerationFailure("No valid data extracted from image")
        body = _upload(api_client, sample_client.id).json()

        processor = JobProcessor(db_session, handlers={JobKind.SCAN_EXTRACTION: ScanExtractionJobHandler(extractor)})
        assert processor.process(body["job_id"]) == JobStatus.FAILED

        status = api_client.get(f"/v1/inbody-scans/{body['scan_id']}/status").json()
        assert status["extraction_status"] == ExtractionStatus.FAILED
        assert status["error_message"] == "No valid data extracted from image"

    def test_cancelled_extraction_reported(self, api_client, sample_client, enqueue):
        body = _upload(api_client, sample_client.id).json()

        response = api_client.post(f"/v1/jobs/{body['job_id']}/cancel", json={"reason": "Blurry photo"})
        assert response.status_code == 200

        status = api_client.get(f"/v1/inbody-scans/{body['scan_id']}/status").json()
        assert status["extraction_status"] == ExtractionStatus.FAILED
        assert status["job"]["status"] == JobStatus.CANCELLED
        assert status["error_message"] == "Blurry photo"

    def test_status_of_missing_scan(self, api_client):
        assert api_client.get("/v1/inbody-scans/404/status").status_code == 404


# ===================================================================
# 3. VERIFICATION
# ===================================================================

class TestVerification:

    def test_verify_applies_corrections(self, api_client, completed_scan, trainer):
        response = api_client.put(
            f"/v1/inbody-scans/{completed_scan.id}/verify",
            json={"weight_lbs": 179.5, "scan_date": "2026-03-14"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["extraction_status"] == ExtractionStatus.VERIFIED
        assert body["weight_lbs"] == 179.5
        assert body["smm_lbs"] == 80.0  # untouched
        assert body["scan_date"] == "2026-03-14"
        assert body["verified_by"] == trainer.id
        assert body["verified_at"] is not None

    def test_cannot_verify_pending_scan(self, db_session, sample_client):
        scan = InBodyScan(client_id=sample_client.id, file_path="/tmp/x.png", extraction_status=ExtractionStatus.PENDING)
        db_session.add(scan)
        db_session.commit()

        with pytest.raises(ValidationError):
            verify_scan(db_session, scan.id, {"weight_lbs": 170.0})

    def test_verified_scan_preferred_for_plans(self, db_session, sample_client, completed_scan):
        newer = InBodyScan(
            client_id=sample_client.id,
            file_path="/tmp/newer.png",
            extraction_status=ExtractionStatus.COMPLETED,
            weight_lbs=175.0,
        )
        db_session.add(newer)
        db_session.commit()
        assert latest_scan_for_client(db_session, sample_client.id).id == newer.id

        verify_scan(db_session, completed_scan.id, {}, trainer_id=None)
        assert latest_scan_for_client(db_session, sample_client.id).id == completed_scan.id


# ===================================================================
# 4. PARSING
# ===================================================================

class TestParsing:

    def test_fenced_json(self):
        text = '```json\n{"weight_lbs": 181.4, "bmi": "24.1"}\n```'
        assert extract_json_object(text) == {"weight_lbs": 181.4, "bmi": "24.1"}

    def test_json_with_chatter(self):
        text = 'Here is the data: {"weight_lbs": 181.4} Let me know!'
        assert extract_json_object(text) == {"weight_lbs": 181.4}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]"])
    def test_unusable_output(self, text):
        with pytest.raises(GenerationFailure):
            extract_json_object(text)

    def test_parse_extraction_coerces_values(self):
        data = parse_extraction(
            {
                "weight_lbs": "181.4",
                "smm_lbs": 80,
                "body_fat_mass_lbs": None,
                "bmi": "n/a",
                "percent_body_fat": 17.2,
                "scan_date": "2026-02-01",
                "segment_analysis": {"trunk": {"muscle_mass_lbs": "55.1", "fat_mass_lbs": 10, "percent_fat": None}},
            }
        )

        assert data.weight_lbs == 181.4
        assert data.smm_lbs == 80.0
        assert data.body_fat_mass_lbs is None
        assert data.bmi is None
        assert data.scan_date == date(2026, 2, 1)
        assert data.segment_analysis == {"trunk": {"muscle_mass_lbs": 55.1, "fat_mass_lbs": 10.0, "percent_fat": None}}

    def test_parse_extraction_requires_some_numbers(self):
        with pytest.raises(GenerationFailure, match="No valid data extracted from image"):
            parse_extraction({"weight_lbs": None, "scan_date": "2026-02-01"})

    @pytest.mark.parametrize("value, expected", [(True, None), ("", None), ("3.5", 3.5), (2, 2.0), ([], None)])
    def test_coerce_float(self, value, expected):
        assert coerce_float(value) == expected

    @pytest.mark.parametrize("value", ["inf", "-inf", "nan", "1e400", float("inf"), float("nan"), 10 ** 400])
    def test_non_finite_numbers_count_as_missing(self, value):
        assert coerce_float(value) is None
        assert coerce_int(value) is None

    def test_coerce_int_rounds(self):
        assert coerce_int("3.6") == 4
        assert coerce_int(2) == 2
