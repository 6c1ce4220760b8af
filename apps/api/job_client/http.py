from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests


class NetworkError(Exception):
    """Transport failure or 5xx. Worth retrying on the next tick."""


class ApiError(Exception):
    """4xx from the API. Retrying the same request will not help."""

    def __init__(self, status_code: int, detail: Any):
        self.status_code = status_code
        self.detail = detail
        if isinstance(detail, dict):
            message = detail.get("message") or str(detail)
        else:
            message = str(detail)
        super().__init__(f"HTTP {status_code}: {message}")


@dataclass
class JobsApiClient:
    base_url: str
    bearer_token: Optional[str] = None
    timeout_seconds: int = 30
    session: requests.Session = field(default_factory=requests.Session)

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        if extra:
            headers.update(extra)
        return headers

    def _url(self, path: str) -> str:
        base = self.base_url.rstrip("/")
        p = path.lstrip("/")
        return f"{base}/{p}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = self.session.request(
                method,
                self._url(path),
                headers=self._headers(kwargs.pop("headers", None)),
                timeout=self.timeout_seconds,
                **kwargs,
            )
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e
        return self._handle_response(resp)

    @staticmethod
    def _handle_response(resp: requests.Response) -> Any:
        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        if resp.status_code >= 500:
            raise NetworkError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        if resp.status_code >= 400:
            detail = data.get("detail", data) if isinstance(data, dict) else data
            raise ApiError(resp.status_code, detail)
        return data

    # Generation

    def start_recommendation(self, questionnaire_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/v1/recommendations/generate/questionnaire/{questionnaire_id}/start")

    def start_recommendation_for_client(self, client_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/v1/recommendations/generate/client/{client_id}/start")

    def start_week_generation(self, recommendation_id: int, week_number: int) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/v1/recommendations/{recommendation_id}/generate-week",
            json={"week_number": week_number},
        )

    def get_week_status(self, recommendation_id: int, week_number: int) -> Dict[str, Any]:
        return self._request("GET", f"/v1/recommendations/{recommendation_id}/week/{week_number}/status")

    # Jobs

    def get_job(self, job_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/v1/jobs/{job_id}")

    def get_latest_job(self, kind: str, owner_id: int, week_number: Optional[int] = None) -> Optional[Dict[str, Any]]:
        params: Dict[str, Any] = {"kind": kind, "owner_id": owner_id}
        if week_number is not None:
            params["week_number"] = week_number
        return self._request("GET", "/v1/jobs/latest", params=params)

    def cancel_job(self, job_id: int, reason: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", f"/v1/jobs/{job_id}/cancel", json={"reason": reason})

    # Scans

    def upload_scan(self, client_id: int, filename: str, data: bytes, mime_type: str = "image/png") -> Dict[str, Any]:
        return self._request(
            "POST",
            "/v1/inbody-scans/upload",
            data={"client_id": str(client_id)},
            files={"file": (filename, data, mime_type)},
        )

    def get_scan_status(self, scan_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/v1/inbody-scans/{scan_id}/status")
