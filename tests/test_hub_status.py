import re

import httpx
import pytest

from projecthub.hub.status import READY_MARKER, LogBuffer, ReadinessMarkers, StatusTracker


def _tracker(handler, **kwargs) -> StatusTracker:
    return StatusTracker("http://control.test", transport=httpx.MockTransport(handler), **kwargs)


# ─── Client side ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_is_ready_reads_ready_flag():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/project-status/demo"
        return httpx.Response(200, json={"projectId": "demo", "readyToRun": True})

    assert await _tracker(handler).is_ready("demo") is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"readyToRun": True}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["readyToRun"]),
        httpx.Response(200, json={"readyToRun": "yes"}),
    ],
)
async def test_is_ready_degrades_to_false(response):
    async def handler(request: httpx.Request) -> httpx.Response:
        return response

    assert await _tracker(handler).is_ready("demo") is False


@pytest.mark.asyncio
async def test_is_ready_transport_error_is_false():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert await _tracker(handler).is_ready("demo") is False


@pytest.mark.asyncio
async def test_ready_map_uses_single_batched_query():
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        assert request.url.path == "/project-status"
        assert request.url.params["ids"] == "a,b,c"
        return httpx.Response(200, json={"statuses": {"a": True, "b": False}})

    result = await _tracker(handler).ready_map(["a", "b", "c"])

    assert result == {"a": True, "b": False, "c": False}
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_ready_map_falls_back_to_per_project_queries():
    paths: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/project-status":
            return httpx.Response(404)
        if request.url.path == "/project-status/b":
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"readyToRun": request.url.path.endswith("/a")})

    result = await _tracker(handler, concurrency=2).ready_map(["a", "b", "c"])

    assert result == {"a": True, "b": False, "c": False}
    assert sorted(paths) == [
        "/project-status",
        "/project-status/a",
        "/project-status/b",
        "/project-status/c",
    ]


@pytest.mark.asyncio
async def test_ready_map_empty_makes_no_request():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await _tracker(handler).ready_map([]) == {}


# ─── Log ring ────────────────────────────────────────────────────────────


def test_log_buffer_keeps_last_50_timestamped_lines():
    log = LogBuffer()
    for i in range(60):
        log.add(f"line {i}")

    lines = log.lines()
    assert len(lines) == 50
    assert lines[0].endswith("line 10")
    assert lines[-1].endswith("line 59")
    assert re.match(r"^\[\d{2}:\d{2}:\d{2}\] line 59$", lines[-1])


def test_log_buffer_is_callable_as_sink():
    log = LogBuffer(maxlen=2)
    log("a")
    log("b")
    log("c")
    assert [line.split("] ", 1)[1] for line in log.lines()] == ["b", "c"]
    log.clear()
    assert len(log) == 0


# ─── Markers ─────────────────────────────────────────────────────────────


def test_readiness_markers_round_trip(tmp_path):
    markers = ReadinessMarkers(tmp_path)
    assert markers.is_ready("demo") is False

    markers.mark_ready("demo")
    assert (tmp_path / "demo" / READY_MARKER).is_file()
    assert markers.is_ready("demo") is True

    markers.clear("demo")
    assert markers.is_ready("demo") is False
    markers.clear("demo")


def test_readiness_markers_invalid_id_is_never_ready(tmp_path):
    assert ReadinessMarkers(tmp_path).is_ready("../outside") is False
