"""Minimal JSON-over-HTTP transport for the GitHub REST API."""

from __future__ import annotations

import http.client
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..errors import StatusServiceError
from ..logging import get_logger

logger = get_logger("github.http")

API_VERSION = "2022-11-28"
USER_AGENT = "shipcheck"


@dataclass
class ApiRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None
    timeout: float = 30.0


@dataclass
class ApiResponse:
    status: int
    body: bytes = b""

    def json(self) -> Any:
        if not self.body:
            return {}
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StatusServiceError("response body is not valid JSON", status=self.status) from exc


Transport = Callable[[ApiRequest], ApiResponse]


def send(transport: Transport, request: ApiRequest) -> ApiResponse:
    """Send ``request``, log its timing, and raise on error statuses."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": API_VERSION,
        "User-Agent": USER_AGENT,
    }
    headers.update(request.headers)
    request.headers = headers

    started = time.monotonic()
    response = transport(request)
    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info("%s %s -> %d (%d ms)", request.method, request.url, response.status, elapsed_ms)

    if response.status >= 400:
        raise error_from_response(response)
    return response


def error_from_response(response: ApiResponse) -> StatusServiceError:
    """Decode GitHub's ``{message, errors}`` error body, keeping both parts."""
    try:
        payload = json.loads(response.body.decode("utf-8")) if response.body else {}
    except (UnicodeDecodeError, json.JSONDecodeError):
        text = response.body.decode("utf-8", errors="ignore").strip()
        return StatusServiceError(text or "request failed", status=response.status)

    if not isinstance(payload, dict):
        return StatusServiceError("request failed", status=response.status)
    message = str(payload.get("message") or "request failed")
    errors = payload.get("errors") or []
    if not isinstance(errors, list):
        errors = [errors]
    return StatusServiceError(message, [_render_error(error) for error in errors], status=response.status)


def urllib_transport(request: ApiRequest) -> ApiResponse:
    data = None
    headers = dict(request.headers)
    if request.payload is not None:
        data = json.dumps(request.payload).encode("utf-8")
        headers["Content-Type"] = "application/json"

    http_request = Request(request.url, data=data, headers=headers, method=request.method)
    try:
        with urlopen(http_request, timeout=request.timeout) as response:  # type: ignore[arg-type]
            return ApiResponse(status=response.status, body=response.read())
    except HTTPError as exc:
        return ApiResponse(status=exc.code, body=exc.read() or b"")
    except URLError as exc:
        raise StatusServiceError(f"{request.method} {request.url} failed: {exc.reason}") from exc
    except (OSError, http.client.HTTPException) as exc:
        # Timeouts and dropped connections while reading the response.
        raise StatusServiceError(f"{request.method} {request.url} failed: {exc!r}") from exc


def _render_error(error: Any) -> str:
    if isinstance(error, dict):
        if error.get("message"):
            return str(error["message"])
        parts = [f"{key}={value}" for key, value in sorted(error.items())]
        return ", ".join(parts)
    return str(error)


__all__ = ["ApiRequest", "ApiResponse", "Transport", "error_from_response", "send", "urllib_transport"]
