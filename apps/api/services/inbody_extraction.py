"""
InBody scan extraction (OCR collaborator).

Sends the scan image to an OpenAI vision model and parses the body-composition
numbers out of its JSON answer. All weights are pounds.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

from openai import OpenAI

from core.config import settings
from core.exceptions import GenerationFailure
from services.llm_json import coerce_float, extract_json_object

logger = logging.getLogger(__name__)

SEGMENTS = ("right_arm", "left_arm", "trunk", "right_leg", "left_leg")
SEGMENT_FIELDS = ("muscle_mass_lbs", "fat_mass_lbs", "percent_fat")

EXTRACTION_PROMPT = """Extract the following data from this InBody scan image.

- weight_lbs: body weight in pounds
- smm_lbs: skeletal muscle mass in pounds
- body_fat_mass_lbs: body fat mass in pounds
- bmi: body mass index
- percent_body_fat: percent body fat (PBF)
- scan_date: date printed on the scan as YYYY-MM-DD, or null
- segment_analysis: for right_arm, left_arm, trunk, right_leg, left_leg give
  muscle_mass_lbs, fat_mass_lbs, percent_fat

If the scan shows kilograms, convert to pounds (multiply by 2.20462).
Use null for anything you cannot find. Numbers must be numeric, not strings.

Return ONLY a JSON object with exactly these keys."""


@dataclass
class ExtractedScanData:
    weight_lbs: Optional[float] = None
    smm_lbs: Optional[float] = None
    body_fat_mass_lbs: Optional[float] = None
    bmi: Optional[float] = None
    percent_body_fat: Optional[float] = None
    scan_date: Optional[date] = None
    segment_analysis: Dict[str, Dict[str, Optional[float]]] = field(default_factory=dict)
    raw_response: Optional[str] = None

    def has_core_values(self) -> bool:
        return any(
            v is not None
            for v in (self.weight_lbs, self.smm_lbs, self.body_fat_mass_lbs, self.bmi, self.percent_body_fat)
        )


def _parse_scan_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def parse_extraction(data: Dict[str, Any], raw_response: Optional[str] = None) -> ExtractedScanData:
    segments: Dict[str, Dict[str, Optional[float]]] = {}
    raw_segments = data.get("segment_analysis")
    if isinstance(raw_segments, dict):
        for segment in SEGMENTS:
            values = raw_segments.get(segment)
            if isinstance(values, dict):
                segments[segment] = {k: coerce_float(values.get(k)) for k in SEGMENT_FIELDS}

    extracted = ExtractedScanData(
        weight_lbs=coerce_float(data.get("weight_lbs")),
        smm_lbs=coerce_float(data.get("smm_lbs")),
        body_fat_mass_lbs=coerce_float(data.get("body_fat_mass_lbs")),
        bmi=coerce_float(data.get("bmi")),
        percent_body_fat=coerce_float(data.get("percent_body_fat")),
        scan_date=_parse_scan_date(data.get("scan_date")),
        segment_analysis=segments,
        raw_response=raw_response,
    )
    if not extracted.has_core_values():
        raise GenerationFailure("No valid data extracted from image")
    return extracted


class InBodyExtractor:
    """OpenAI vision-backed extraction of InBody scan numbers."""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.OPENAI_VISION_MODEL

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise GenerationFailure(
                    "OPENAI_API_KEY not configured. Please configure it to use InBody extraction."
                )
            self._client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_S)
        return self._client

    def extract_scan_data(self, image_bytes: bytes, mime_type: str = "image/png") -> ExtractedScanData:
        if not image_bytes:
            raise GenerationFailure("Scan image is empty")

        encoded = base64.b64encode(image_bytes).decode("ascii")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You are an expert at extracting structured data from InBody scan images. "
                            "You MUST respond with ONLY valid JSON."
                        ),
                    },
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                        ],
                    },
                ],
                max_completion_tokens=2000,
            )
        except GenerationFailure:
            raise
        except Exception as e:
            logger.error(f"OpenAI scan extraction request failed: {e}")
            raise GenerationFailure(f"Failed to extract InBody data: {e}")

        if not response.choices:
            raise GenerationFailure("Failed to extract InBody data: No response from OpenAI")
        content = response.choices[0].message.content
        return parse_extraction(extract_json_object(content), raw_response=content)
