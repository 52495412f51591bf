from __future__ import annotations

import json
from http.client import HTTPConnection, HTTPException, HTTPSConnection
from typing import Any
from urllib.parse import quote, urlparse

from ..errors import PermanentRemoteError, RemoteConflictError, TransientRemoteError

TRANSIENT_STATUSES = {408, 425, 429}
CONFLICT_STATUSES = {409, 412}


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def path_segment(value: str) -> str:
    return quote(value, safe="")


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: dict[str, Any] | None = None,
    timeout_s: float = 10.0,
) -> tuple[int, dict[str, Any] | None]:
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    if parsed.scheme == "https":
        conn = HTTPSConnection(parsed.hostname, parsed.port or 443, timeout=timeout_s)
    else:
        conn = HTTPConnection(parsed.hostname, parsed.port or 80, timeout=timeout_s)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    payload = None
    body_bytes = None
    if body is not None:
        body_bytes = json.dumps(body, ensure_ascii=False).encode("utf-8")
    request_headers = {"Accept": "application/json"}
    if body_bytes is not None:
        request_headers["Content-Type"] = "application/json"
        request_headers["Content-Length"] = str(len(body_bytes))
    if headers:
        request_headers.update(headers)
    status: int | None = None
    try:
        conn.request(method, path, body=body_bytes, headers=request_headers)
        resp = conn.getresponse()
        status = int(resp.status)
        raw = resp.read()
        if raw:
            try:
                payload = json.loads(raw.decode("utf-8"))
            except json.JSONDecodeError:
                snippet = raw[:240].decode("utf-8", errors="replace").strip()
                payload = {
                    "error": f"non_json_response: {snippet}" if snippet else "non_json_response"
                }
    finally:
        conn.close()
    assert status is not None
    if payload is None:
        return status, None
    if isinstance(payload, dict):
        return status, payload
    return status, {"error": f"unexpected_json_type: {type(payload).__name__}"}


def error_detail(payload: dict[str, Any] | None) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    reason = payload.get("reason")
    if isinstance(error, str) and isinstance(reason, str):
        return f"{error}:{reason}"
    if isinstance(error, str):
        return error
    return None


def raise_for_status(status: int, payload: dict[str, Any] | None, *, action: str) -> None:
    """Map a non-success HTTP status onto the remote error taxonomy."""

    if 200 <= status < 300:
        return
    detail = error_detail(payload)
    suffix = f" ({status}: {detail})" if detail else f" ({status})"
    message = f"{action} failed{suffix}"
    if status in CONFLICT_STATUSES:
        version = payload.get("version") if isinstance(payload, dict) else None
        raise RemoteConflictError(
            message, remote_version=int(version) if isinstance(version, int) else None
        )
    if status in TRANSIENT_STATUSES or status >= 500:
        raise TransientRemoteError(message)
    raise PermanentRemoteError(message)


def call_json(
    method: str,
    url: str,
    *,
    action: str,
    body: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_s: float = 10.0,
    allow_not_found: bool = False,
) -> dict[str, Any] | None:
    """``request_json`` with transport failures classified as transient.

    Returns ``None`` for a 404 when ``allow_not_found`` is set.
    """

    try:
        status, payload = request_json(
            method, url, headers=headers, body=body, timeout_s=timeout_s
        )
    except (OSError, HTTPException) as exc:
        raise TransientRemoteError(f"{action} failed: {exc}") from exc
    if status == 404 and allow_not_found:
        return None
    raise_for_status(status, payload, action=action)
    return payload or {}
