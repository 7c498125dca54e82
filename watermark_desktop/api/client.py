"""Blocking HTTP client for the export service.

Every call may block on the network and is meant to run on a worker thread;
callers on the GUI thread go through an executor (see ``jobs.tracker``).
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests
from pydantic import ValidationError

from watermark_desktop.errors import ApiError, JobExpired
from watermark_desktop.logger import get_logger

from .models import ExportJob, ExportRequest, HealthResponse, LastSettings, Template

_logger = get_logger("api")

_JSON_HEADERS = {"Accept": "application/json"}
_HTTP_NOT_FOUND = 404


class ApiClient:
    def __init__(self, base_url: str, timeout: float = 30.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(_JSON_HEADERS)

    def close(self) -> None:
        self._session.close()

    # ═══════════════════════════════════════════════════════════════════════
    # Export jobs
    # ═══════════════════════════════════════════════════════════════════════

    def submit_export(self, files: Iterable[str | Path], request: ExportRequest) -> ExportJob:
        """Upload files with their export configuration as one multipart request.

        Returns:
            The initial job snapshot (usually QUEUED).
        """
        paths = [Path(f) for f in files]
        with contextlib.ExitStack() as stack:
            parts: list[tuple[str, tuple[Any, ...]]] = [
                ("config", (None, request.to_json(), "application/json")),
            ]
            for p in paths:
                fh = stack.enter_context(open(p, "rb"))
                parts.append(("files", (p.name, fh)))
            data = self._request("POST", "/api/export", files=parts)
        job = self._parse(ExportJob, data)
        _logger.info("export submitted: id=%s files=%d", job.id, len(paths))
        return job

    def list_jobs(self) -> list[ExportJob]:
        data = self._request("GET", "/api/export")
        if not isinstance(data, list):
            raise ApiError(None, "unexpected job list payload")
        return [self._parse(ExportJob, item) for item in data]

    def job_status(self, job_id: str) -> ExportJob:
        """Fetch one job snapshot.

        Raises:
            JobExpired: the service answered 404 (job evicted or unknown).
        """
        try:
            data = self._request("GET", f"/api/export/{quote(job_id, safe='')}/status")
        except ApiError as e:
            if e.status_code == _HTTP_NOT_FOUND:
                raise JobExpired(job_id) from e
            raise
        return self._parse(ExportJob, data)

    def cancel_job(self, job_id: str) -> ExportJob:
        data = self._request("POST", f"/api/export/{quote(job_id, safe='')}/cancel")
        return self._parse(ExportJob, data)

    # ═══════════════════════════════════════════════════════════════════════
    # Supporting endpoints
    # ═══════════════════════════════════════════════════════════════════════

    def health(self) -> HealthResponse:
        return self._parse(HealthResponse, self._request("GET", "/api/health"))

    def list_fonts(self) -> list[str]:
        data = self._request("GET", "/api/fonts")
        return [str(name) for name in data or []]

    def list_templates(self) -> list[Template]:
        return [self._parse(Template, item) for item in self._request("GET", "/api/templates") or []]

    def get_template(self, template_id: str) -> Template:
        return self._parse(Template, self._request("GET", f"/api/templates/{quote(template_id, safe='')}"))

    def save_template(self, name: str, request: ExportRequest) -> Template:
        body = {"name": name, **request.to_wire()}
        return self._parse(Template, self._request("POST", "/api/templates", json=body))

    def delete_template(self, template_id: str) -> None:
        self._request("DELETE", f"/api/templates/{quote(template_id, safe='')}")

    def get_last_settings(self) -> LastSettings | None:
        try:
            data = self._request("GET", "/api/settings/last")
        except ApiError as e:
            if e.status_code == _HTTP_NOT_FOUND:
                return None
            raise
        return self._parse(LastSettings, data) if data else None

    def save_last_settings(self, request: ExportRequest) -> LastSettings:
        return self._parse(LastSettings, self._request("POST", "/api/settings/last", json=request.to_wire()))

    def delete_last_settings(self) -> None:
        self._request("DELETE", "/api/settings/last")

    # ---- internals ----

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            _logger.debug("%s %s failed: %s", method, path, e)
            raise ApiError(None, str(e)) from e

        if not response.ok:
            message = (response.text or "").strip() or response.reason or f"HTTP {response.status_code}"
            _logger.debug("%s %s -> %s: %s", method, path, response.status_code, message)
            raise ApiError(response.status_code, message)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(response.status_code, f"invalid JSON from {path}") from e

    @staticmethod
    def _parse(model: Any, data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ApiError(None, f"unexpected {model.__name__} payload: {e.error_count()} error(s)") from e
