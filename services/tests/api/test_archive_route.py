"""Tests for the streamed archive endpoint, wired to a GitHub provider on a mock transport."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from scmgate.api.app import create_application
from scmgate.api.dependencies import get_resolver
from scmgate.config import RepositoryConfig
from scmgate.repositories import ConfiguredRepositoryResolver
from scmgate.scm import get_registry
from scmgate.scm.github import GitHubProvider
from scmgate.scm.registry import ProviderRegistry, ProviderType


class ClosingStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def _make_app(handler, repositories: list[RepositoryConfig]):
    provider = GitHubProvider(archive_chunk_size=4, transport=httpx.MockTransport(handler))
    registry = ProviderRegistry({ProviderType.GITHUB: provider})
    resolver = ConfiguredRepositoryResolver(repositories)

    app = create_application()
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_resolver] = lambda: resolver
    return app, provider


@pytest.fixture
def repositories() -> list[RepositoryConfig]:
    return [
        RepositoryConfig(id="r1", provider="github", path="acme/widgets", token="t", default_branch="main"),
        RepositoryConfig(id="svn", provider="subversion", path="acme/legacy", default_branch="trunk"),
    ]


class TestArchiveRoute:
    async def test_streams_zip(self, repositories) -> None:
        body = ClosingStream([b"PK\x03\x04", b"abcd"])
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, headers={"Content-Type": "application/zip"}, stream=body)

        app, provider = _make_app(handler, repositories)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/repositories/r1/archive")

        assert response.status_code == 200
        assert response.content == b"PK\x03\x04abcd"
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["content-disposition"] == 'attachment; filename="r1-default.zip"'
        assert seen[0].url.path == "/repos/acme/widgets/zipball/main"
        assert body.closed is True
        await provider.close()

    async def test_explicit_branch_and_upstream_filename(self, repositories) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={"Content-Disposition": "attachment; filename=acme-widgets-abc.zip"},
                stream=ClosingStream([b"zip!"]),
            )

        app, provider = _make_app(handler, repositories)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/repositories/r1/archive", params={"branch": "release/1.0"})

        assert response.headers["content-disposition"] == "attachment; filename=acme-widgets-abc.zip"
        await provider.close()

    @pytest.mark.parametrize(
        ("upstream", "expected"),
        [(404, 404), (403, 403), (401, 403), (500, 502), (400, 403)],
    )
    async def test_upstream_errors(self, repositories, upstream: int, expected: int) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(upstream, json={"message": "nope"})

        app, provider = _make_app(handler, repositories)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/repositories/r1/archive")

        assert response.status_code == expected
        await provider.close()

    async def test_connection_failure_is_bad_gateway(self, repositories) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        app, provider = _make_app(handler, repositories)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/repositories/r1/archive")

        assert response.status_code == 502
        await provider.close()

    async def test_unknown_repository(self, repositories) -> None:
        app, provider = _make_app(lambda r: httpx.Response(200), repositories)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/repositories/nope/archive")

        assert response.status_code == 404
        await provider.close()

    async def test_unsupported_provider(self, repositories) -> None:
        app, provider = _make_app(lambda r: httpx.Response(200), repositories)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/repositories/svn/archive")

        assert response.status_code == 400
        assert "subversion" in response.json()["detail"]
        await provider.close()
