import httpx
import pytest

from projecthub.config import Settings
from projecthub.errors import ArchiveNotFound, CatalogUnavailable, NetworkError
from projecthub.hub.store import ArchiveStoreClient


def _store(handler) -> ArchiveStoreClient:
    return ArchiveStoreClient(
        "http://store.test/",
        headers={"ngrok-skip-browser-warning": "true"},
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_list_projects_parses_catalog_in_order():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/projects/"
        assert request.headers["ngrok-skip-browser-warning"] == "true"
        return httpx.Response(
            200,
            json=[
                {"id": "demo", "files": ["demo.zip"]},
                {"id": "blank", "files": []},
            ],
        )

    projects = await _store(handler).list_projects()

    assert [p.id for p in projects] == ["demo", "blank"]
    assert projects[0].archive_name == "demo.zip"
    assert projects[1].archive_name == "project.zip"
    assert all(p.ready_to_run is False for p in projects)


@pytest.mark.asyncio
async def test_list_projects_non_success_raises_catalog_unavailable():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(CatalogUnavailable, match="500"):
        await _store(handler).list_projects()


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"projects": []}, [{"files": []}], ["demo"], [{"id": "x", "files": "a"}]])
async def test_list_projects_malformed_body_raises_catalog_unavailable(body):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(CatalogUnavailable):
        await _store(handler).list_projects()


@pytest.mark.asyncio
async def test_list_projects_transport_error_raises_catalog_unavailable():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CatalogUnavailable):
        await _store(handler).list_projects()


@pytest.mark.asyncio
async def test_fetch_archive_returns_bytes(demo_zip):
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        assert request.headers["ngrok-skip-browser-warning"] == "true"
        return httpx.Response(200, content=demo_zip)

    data = await _store(handler).fetch_archive("demo", "demo.zip")

    assert data == demo_zip
    assert seen == ["/projects/demo/download/demo.zip"]


@pytest.mark.asyncio
async def test_fetch_archive_404_raises_archive_not_found():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "missing"})

    with pytest.raises(ArchiveNotFound, match="404"):
        await _store(handler).fetch_archive("demo", "gone.zip")


@pytest.mark.asyncio
async def test_fetch_archive_transport_error_raises_network_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError):
        await _store(handler).fetch_archive("demo", "demo.zip")


def test_archive_url_quotes_segments():
    store = ArchiveStoreClient("http://store.test/")
    assert (
        store.archive_url("my project", "v1 build.zip")
        == "http://store.test/projects/my%20project/download/v1%20build.zip"
    )


def test_from_settings_uses_store_configuration():
    settings = Settings(
        store_url="https://example.ngrok-free.dev",
        store_headers={"x-token": "t"},
        request_timeout=7.0,
    )
    store = ArchiveStoreClient.from_settings(settings)

    assert store.base_url == "https://example.ngrok-free.dev"
    assert store.headers == {"x-token": "t"}
    assert store.timeout == 7.0
