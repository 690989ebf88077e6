from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any

MAX_BODY_BYTES = 10 * 1024 * 1024


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict[str, Any],
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def send_error_response(
    handler: BaseHTTPRequestHandler, status: int, error: str, message: str | None = None
) -> None:
    payload: dict[str, Any] = {"error": error}
    if message:
        payload["message"] = message
    send_json_response(handler, payload, status=status)


def read_json_value(handler: BaseHTTPRequestHandler) -> Any:
    """Decode the request body; raises ValueError when it is missing or not JSON."""
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError as exc:
        raise ValueError("invalid Content-Length") from exc
    if length > MAX_BODY_BYTES:
        raise ValueError("request body too large")
    raw = handler.rfile.read(length).decode("utf-8") if length > 0 else ""
    if not raw.strip():
        raise ValueError("request body is required")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid json body") from exc


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    payload = read_json_value(handler)
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")
    return payload
