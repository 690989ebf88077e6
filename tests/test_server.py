from __future__ import annotations

import http.client
import json
import threading
from collections.abc import Iterator
from typing import Any

import pytest

from recollect.retrieval import HybridWeights
from recollect.server import (
    MaintenanceSweeper,
    MemoryHTTPServer,
    create_server,
    parse_search_request,
)
from recollect.service import MemoryService


@pytest.fixture
def server(service: MemoryService) -> Iterator[MemoryHTTPServer]:
    server = create_server(service, "127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def _request(
    server: MemoryHTTPServer, method: str, path: str, body: Any = None
) -> tuple[int, dict[str, Any]]:
    port = server.server_address[1]
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    headers = {}
    payload = None
    if body is not None:
        payload = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
    conn.request(method, path, body=payload, headers=headers)
    response = conn.getresponse()
    data = json.loads(response.read().decode("utf-8"))
    conn.close()
    return response.status, data


def test_health(server: MemoryHTTPServer) -> None:
    status, data = _request(server, "GET", "/health")
    assert status == 200
    assert data["status"] == "ok"
    assert data["initialized"] is True
    assert data["vectors"] is False
    assert data["version"]


def test_create_get_update_delete(server: MemoryHTTPServer) -> None:
    status, created = _request(
        server,
        "POST",
        "/memories",
        {
            "type": "decision",
            "title": "Use SQLite",
            "content": 'api_key="abc123" chosen for local storage',
            "importance": 0.8,
            "sourceFiles": ["/src/db.py"],
            "session_id": "s1",
        },
    )
    assert status == 201
    assert created["importance"] == 8
    assert "abc123" not in created["content"]
    assert created["sourceFiles"] == ["/src/db.py"]
    assert created["sessionId"] == "s1"
    memory_id = created["id"]

    status, fetched = _request(server, "GET", f"/memories/{memory_id}")
    assert status == 200
    assert fetched["accessCount"] == 1

    status, updated = _request(server, "PATCH", f"/memories/{memory_id}", {"title": "Use Postgres"})
    assert status == 200
    assert updated["title"] == "Use Postgres"

    status, deleted = _request(server, "DELETE", f"/memories/{memory_id}")
    assert status == 200
    assert deleted == {"deleted": True, "id": memory_id}

    status, missing = _request(server, "GET", f"/memories/{memory_id}")
    assert status == 404
    assert "error" in missing


def test_fractional_importance_scales_once_over_http(server: MemoryHTTPServer) -> None:
    status, created = _request(
        server, "POST", "/memories", {"title": "Tiny", "content": "hint", "importance": 0.05}
    )
    assert status == 201
    assert created["importance"] == pytest.approx(0.5)

    status, updated = _request(
        server, "PATCH", f"/memories/{created['id']}", {"importance": 0.07}
    )
    assert status == 200
    assert updated["importance"] == pytest.approx(0.7)

    status, batch = _request(
        server, "POST", "/memories/batch", [{"title": "B", "content": "c", "importance": 0.05}]
    )
    assert status == 201
    assert batch["memories"][0]["importance"] == pytest.approx(0.5)


def test_validation_errors(server: MemoryHTTPServer) -> None:
    status, data = _request(server, "POST", "/memories", {"title": "t"})
    assert status == 400
    assert data["error"] == "content is required"

    status, data = _request(server, "POST", "/memories", b"{not json")
    assert status == 400

    status, data = _request(
        server, "POST", "/memories", {"title": "t", "content": "c", "type": "summary"}
    )
    assert status == 400
    assert "session_summary" in data["error"]

    status, data = _request(server, "GET", "/memories/abc")
    assert status == 400
    assert data["error"] == "Invalid memory ID"

    status, data = _request(server, "PATCH", "/memories/1", {"importance": 42})
    assert status == 400
    assert "between 0 and 10" in data["error"]


def test_unknown_routes(server: MemoryHTTPServer) -> None:
    assert _request(server, "GET", "/nope")[0] == 404
    assert _request(server, "DELETE", "/memories")[0] == 404
    status, data = _request(server, "DELETE", "/memories/999")
    assert status == 404


def test_batch_and_search(server: MemoryHTTPServer) -> None:
    status, data = _request(
        server,
        "POST",
        "/memories/batch",
        [
            {"title": "Queue retries", "content": "exponential backoff"},
            {"title": "Queue metrics", "content": "count retries", "type": "observation"},
        ],
    )
    assert status == 201
    assert data["count"] == 2

    status, data = _request(
        server, "POST", "/memories/batch", {"memories": [{"title": "Wrapped", "content": "ok"}]}
    )
    assert status == 201
    assert data["count"] == 1

    status, data = _request(server, "POST", "/memories/batch", {"memories": "nope"})
    assert status == 400

    status, data = _request(server, "POST", "/search", {"query": "retries", "limit": 1})
    assert status == 200
    assert data["count"] == 1
    assert data["results"][0]["matchType"] == "fts"

    status, data = _request(
        server, "POST", "/search", {"query": "queue", "types": ["observation"]}
    )
    assert [r["memory"]["title"] for r in data["results"]] == ["Queue metrics"]

    status, data = _request(server, "POST", "/search", {"limit": 5})
    assert status == 400


def test_recent_and_stats(server: MemoryHTTPServer) -> None:
    for title in ("First", "Second", "Third"):
        _request(server, "POST", "/memories", {"title": title, "content": "body"})

    status, data = _request(server, "GET", "/recent?limit=2")
    assert status == 200
    assert [m["title"] for m in data["memories"]] == ["Third", "Second"]

    status, data = _request(server, "GET", "/memories/recent?types=note")
    assert data["count"] == 3

    status, data = _request(server, "GET", "/stats")
    assert data["memories"] == 3
    assert data["vectors"] == 0
    assert data["vectorsAvailable"] is False
    assert data["byType"] == {"note": 3}


def test_distill_is_not_implemented(server: MemoryHTTPServer) -> None:
    status, data = _request(server, "POST", "/distill", {"type": "tool_use"})
    assert status == 501
    assert data["error"] == "Not Implemented"


def test_closed_service_returns_503(server: MemoryHTTPServer, service: MemoryService) -> None:
    service.close()
    status, data = _request(server, "GET", "/stats")
    assert status == 503
    status, data = _request(server, "GET", "/health")
    assert status == 200
    assert data["initialized"] is False


def test_parse_search_request_clamps_limit() -> None:
    default = HybridWeights()
    query, limit, filters, weights = parse_search_request(
        {"query": "q", "limit": 500, "minImportance": 0.7, "hybridWeight": {"fts": 1}}, default
    )
    assert query == "q"
    assert limit == 50
    assert filters.min_importance == pytest.approx(7.0)
    assert weights == HybridWeights(fts=1.0, vector=0.6)
    assert parse_search_request({"query": "q", "limit": 0}, default)[1] == 1
    with pytest.raises(ValueError):
        parse_search_request({"query": "q", "includePrivate": "yes"}, default)


def test_sweeper_runs_maintenance() -> None:
    calls: list[int] = []

    class CountingService:
        def run_maintenance(self) -> None:
            calls.append(1)
            raise RuntimeError("disk full")

    sweeper = MaintenanceSweeper(CountingService(), interval_s=0)  # type: ignore[arg-type]
    assert sweeper.enabled() is False
    sweeper.tick()
    assert calls == [1]
    sweeper.start()
    sweeper.stop()


def test_shutdown_closes_service(service: MemoryService) -> None:
    server = create_server(service, "127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    status, data = _request(server, "POST", "/shutdown", {})

    assert status == 200
    assert data == {"status": "shutting_down"}
    thread.join(timeout=5)
    assert not thread.is_alive()
    server.server_close()
    assert service.health()["initialized"] is False
