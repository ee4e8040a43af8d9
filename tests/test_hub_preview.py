import sys
from unittest.mock import patch

import pytest

from projecthub.errors import RunFailed
from projecthub.hub.preview import PreviewRunner
from projecthub.hub.processes import is_pid_alive, read_pid
from projecthub.hub.status import ReadinessMarkers

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX sh")


def _runner(tmp_path, script: str = "sleep 30", **kwargs) -> PreviewRunner:
    return PreviewRunner(
        tmp_path,
        ["sh", "-c", script + " # {host}:{port}"],
        port=3001,
        startup_timeout=kwargs.pop("startup_timeout", 5.0),
        **kwargs,
    )


def _make_ready(tmp_path, project_id: str) -> None:
    (tmp_path / project_id).mkdir(parents=True, exist_ok=True)
    ReadinessMarkers(tmp_path).mark_ready(project_id)


@pytest.mark.asyncio
async def test_start_requires_ready_project(tmp_path):
    with pytest.raises(RunFailed, match="not installed"):
        await _runner(tmp_path).start("demo")


@pytest.mark.asyncio
async def test_start_and_stop_preview(tmp_path):
    _make_ready(tmp_path, "demo")
    runner = _runner(tmp_path)

    with patch("projecthub.hub.preview.is_port_listening", side_effect=[False, True]):
        result = await runner.start("demo")

    pid_path = tmp_path / "demo" / ".projecthub-preview.pid"
    assert result["status"] == "ok"
    assert result["url"] == "http://localhost:3001/"
    assert read_pid(pid_path) == result["pid"]
    assert runner.is_running("demo") is True
    assert runner.active_project == "demo"

    stopped = await runner.stop("demo")

    assert stopped["status"] == "ok"
    assert not pid_path.exists()
    assert is_pid_alive(result["pid"]) is False
    assert runner.is_running("demo") is False


@pytest.mark.asyncio
async def test_start_twice_reports_already_running(tmp_path):
    _make_ready(tmp_path, "demo")
    runner = _runner(tmp_path)

    with patch("projecthub.hub.preview.is_port_listening", side_effect=[False, True]):
        await runner.start("demo")
    try:
        again = await runner.start("demo")
        assert again["status"] == "already_running"
    finally:
        await runner.stop_all()


@pytest.mark.asyncio
async def test_starting_another_project_stops_the_first(tmp_path):
    _make_ready(tmp_path, "a")
    _make_ready(tmp_path, "b")
    runner = _runner(tmp_path)

    with patch("projecthub.hub.preview.is_port_listening", side_effect=[False, True, False, True]):
        first = await runner.start("a")
        await runner.start("b")

    try:
        assert runner.active_project == "b"
        assert runner.is_running("a") is False
        assert is_pid_alive(first["pid"]) is False
    finally:
        await runner.stop_all()


@pytest.mark.asyncio
async def test_process_exiting_before_listening_raises(tmp_path):
    _make_ready(tmp_path, "demo")
    runner = _runner(tmp_path, script="echo 'vite: command not found'; exit 127")

    with patch("projecthub.hub.preview.is_port_listening", return_value=False):
        with pytest.raises(RunFailed, match="exited with code 127"):
            await runner.start("demo")

    assert "command not found" in runner.log_path("demo").read_text(encoding="utf-8")
    assert runner.is_running("demo") is False


@pytest.mark.asyncio
async def test_startup_timeout_stops_process(tmp_path):
    _make_ready(tmp_path, "demo")
    runner = _runner(tmp_path, startup_timeout=0.5)

    with patch("projecthub.hub.preview.is_port_listening", return_value=False):
        with pytest.raises(RunFailed, match="did not start listening"):
            await runner.start("demo")

    assert runner.is_running("demo") is False
    assert not (tmp_path / "demo" / ".projecthub-preview.pid").exists()


@pytest.mark.asyncio
async def test_busy_port_is_refused(tmp_path):
    _make_ready(tmp_path, "demo")
    runner = _runner(tmp_path)

    with patch("projecthub.hub.preview.is_port_listening", return_value=True):
        with pytest.raises(RunFailed, match="already in use"):
            await runner.start("demo")


def test_command_placeholders_are_substituted(tmp_path):
    runner = PreviewRunner(
        tmp_path, ["npm", "run", "dev", "--", "--host", "{host}", "--port", "{port}"], port=5173
    )
    assert runner._resolved_command()[-4:] == ["--host", "localhost", "--port", "5173"]
