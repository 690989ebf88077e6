from __future__ import annotations

import logging
import os
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from .config import RecollectConfig
from .http_utils import read_json_body, read_json_value, send_error_response, send_json_response
from .memory_types import validate_memory_type
from .retrieval import HybridWeights
from .service import MemoryService, ServiceNotReady
from .store import MemoryInput, SearchFilters, normalize_importance, parse_update_payload

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 50
MAX_RECENT_LIMIT = 100
SHUTDOWN_GRACE_S = 0.1

_MEMORY_PATH_RE = re.compile(r"^/memories/([^/]+)$")


def _clamp(value: Any, default: int, low: int, high: int, *, key: str) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer") from exc
    return max(low, min(high, number))


def _parse_types(value: Any) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        items = [part for part in value.split(",") if part.strip()]
    elif isinstance(value, list):
        items = value
    else:
        raise ValueError("types must be a list or comma-separated string")
    return tuple(validate_memory_type(item if isinstance(item, str) else "") for item in items)


def _parse_memory_id(raw: str) -> int:
    try:
        memory_id = int(raw)
    except ValueError as exc:
        raise ValueError("Invalid memory ID") from exc
    if memory_id <= 0:
        raise ValueError("Invalid memory ID")
    return memory_id


def parse_search_request(
    payload: dict[str, Any], default_weights: HybridWeights
) -> tuple[str, int, SearchFilters, HybridWeights]:
    query = payload.get("query")
    if not isinstance(query, str) or not query.strip():
        raise ValueError("query is required")
    limit = _clamp(payload.get("limit"), 10, 1, MAX_SEARCH_LIMIT, key="limit")
    min_importance = payload.get("minImportance", payload.get("min_importance"))
    include_private = payload.get("includePrivate", payload.get("include_private", False))
    if not isinstance(include_private, bool):
        raise ValueError("includePrivate must be a boolean")
    filters = SearchFilters(
        types=_parse_types(payload.get("types")),
        min_importance=None if min_importance is None else normalize_importance(min_importance),
        include_private=include_private,
    )
    weights = HybridWeights.from_payload(
        payload.get("hybridWeight", payload.get("hybrid_weight")), default_weights
    )
    return query, limit, filters, weights


class MemoryHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], service: MemoryService) -> None:
        super().__init__(address, MemoryRequestHandler)
        self.service = service
        self.sweeper: MaintenanceSweeper | None = None

    def stop(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()
        try:
            self.service.close()
        finally:
            self.shutdown()


class MemoryRequestHandler(BaseHTTPRequestHandler):
    server: MemoryHTTPServer

    @property
    def service(self) -> MemoryService:
        return self.server.service

    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None:
        send_json_response(self, payload, status=status)

    def _not_found(self, message: str = "not found") -> None:
        send_error_response(self, 404, message)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        if os.environ.get("RECOLLECT_HTTP_LOG") == "1":
            logger.info("%s - %s", self.address_string(), format % args)

    def _dispatch(self, method: str) -> None:
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/") or "/"
        query = parse_qs(parsed.query)
        try:
            if path == "/health" and method == "GET":
                self._send_json(self.service.health())
                return
            handled = getattr(self, f"_handle_{method.lower()}")(path, query)
            if not handled:
                self._not_found()
        except ServiceNotReady as exc:
            send_error_response(self, 503, "service unavailable", str(exc))
        except ValueError as exc:
            send_error_response(self, 400, str(exc))
        except Exception:
            logger.exception("request failed: %s %s", method, parsed.path)
            send_error_response(self, 500, "internal error")

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch("POST")

    def do_PATCH(self) -> None:  # noqa: N802
        self._dispatch("PATCH")

    def do_DELETE(self) -> None:  # noqa: N802
        self._dispatch("DELETE")

    def _handle_get(self, path: str, query: dict[str, list[str]]) -> bool:
        if path == "/stats":
            self._send_json(self.service.stats())
            return True
        if path in {"/recent", "/memories/recent"}:
            limit = _clamp(query.get("limit", [None])[0], 10, 1, MAX_RECENT_LIMIT, key="limit")
            types = _parse_types(query.get("types", [""])[0])
            memories = self.service.recent(limit, types=types)
            self._send_json(
                {"memories": [memory.to_dict() for memory in memories], "count": len(memories)}
            )
            return True
        match = _MEMORY_PATH_RE.match(path)
        if match:
            memory = self.service.get(_parse_memory_id(match.group(1)))
            if memory is None:
                self._not_found("Memory not found")
            else:
                self._send_json(memory.to_dict())
            return True
        return False

    def _handle_post(self, path: str, query: dict[str, list[str]]) -> bool:
        if path == "/memories":
            memory = self.service.create(MemoryInput.from_payload(read_json_body(self)))
            self._send_json(memory.to_dict(), status=201)
            return True
        if path == "/memories/batch":
            payload = read_json_value(self)
            if isinstance(payload, dict):
                payload = payload.get("memories")
            if not isinstance(payload, list):
                raise ValueError("Expected array of memory inputs")
            items = []
            for index, entry in enumerate(payload):
                if not isinstance(entry, dict):
                    raise ValueError(f"memories[{index}] must be an object")
                items.append(MemoryInput.from_payload(entry))
            memories = self.service.create_batch(items)
            self._send_json(
                {"memories": [memory.to_dict() for memory in memories], "count": len(memories)},
                status=201,
            )
            return True
        if path == "/search":
            self.service.ensure_ready()
            search_query, limit, filters, weights = parse_search_request(
                read_json_body(self), self.service.weights
            )
            results = self.service.search(
                search_query, limit=limit, filters=filters, weights=weights
            )
            self._send_json(
                {"results": [result.to_dict() for result in results], "count": len(results)}
            )
            return True
        if path == "/distill":
            send_error_response(
                self,
                501,
                "Not Implemented",
                "Distillation over HTTP is reserved; send distilled memories to /memories.",
            )
            return True
        if path == "/shutdown":
            self._send_json({"status": "shutting_down"})
            timer = threading.Timer(SHUTDOWN_GRACE_S, self.server.stop)
            timer.daemon = True
            timer.start()
            return True
        return False

    def _handle_patch(self, path: str, query: dict[str, list[str]]) -> bool:
        match = _MEMORY_PATH_RE.match(path)
        if not match:
            return False
        memory_id = _parse_memory_id(match.group(1))
        changes = parse_update_payload(read_json_body(self))
        memory = self.service.update(memory_id, changes)
        if memory is None:
            self._not_found("Memory not found")
        else:
            self._send_json(memory.to_dict())
        return True

    def _handle_delete(self, path: str, query: dict[str, list[str]]) -> bool:
        match = _MEMORY_PATH_RE.match(path)
        if not match:
            return False
        memory_id = _parse_memory_id(match.group(1))
        if not self.service.delete(memory_id):
            self._not_found("Memory not found")
        else:
            self._send_json({"deleted": True, "id": memory_id})
        return True


class MaintenanceSweeper:
    """Runs the privacy maintenance pass on a fixed interval."""

    def __init__(self, service: MemoryService, interval_s: float) -> None:
        self.service = service
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def enabled(self) -> bool:
        return self.interval_s > 0

    def tick(self) -> None:
        try:
            self.service.run_maintenance()
        except ServiceNotReady:
            return
        except Exception as exc:
            # Keep serving; the next tick retries.
            logger.exception("maintenance pass failed", exc_info=exc)

    def start(self) -> None:
        if not self.enabled() or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="recollect-maintenance", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.tick()


def create_server(
    service: MemoryService, host: str = "127.0.0.1", port: int = 37777
) -> MemoryHTTPServer:
    return MemoryHTTPServer((host, port), service)


def serve(config: RecollectConfig, *, service: MemoryService | None = None) -> None:
    """Initialize the service and block serving HTTP until shutdown."""
    service = service or MemoryService(config)
    service.initialize()
    server = create_server(service, config.host, config.port)
    sweeper = MaintenanceSweeper(service, config.maintenance_interval_s)
    server.sweeper = sweeper
    sweeper.tick()
    sweeper.start()
    logger.info("listening on http://%s:%s", config.host, server.server_address[1])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("interrupted; shutting down")
    finally:
        sweeper.stop()
        server.server_close()
        service.close()
