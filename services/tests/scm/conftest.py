"""
Shared fixtures for SCM provider tests.

Providers are driven through httpx.MockTransport. Handlers receive every
request the provider sends, so tests can assert on call order and counts.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from scmgate.scm.protocol import BranchRef, ScmContext


class TrackingStream(httpx.AsyncByteStream):
    """Response body that records how far it was read and whether it was closed."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.served = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.served += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class Recorder:
    """MockTransport handler that serves routed responses and records requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []

    def on(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: object = None,
        headers: dict[str, str] | None = None,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        """Route a method and path to a fresh response per request."""
        if handler is None:

            def handler(_request: httpx.Request) -> httpx.Response:
                return httpx.Response(status, json=json, headers=headers)

        self._routes.append((method, path, handler))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # Match on the encoded path so GitLab project ids (acme%2Fwidgets) stay distinct
        raw_path = request.url.raw_path.decode("ascii").split("?", 1)[0]
        for method, path, handler in self._routes:
            if request.method == method and raw_path == path:
                return handler(request)
        return httpx.Response(599, json={"message": f"unrouted {request.method} {raw_path}"})

    def calls(self, method: str | None = None) -> list[httpx.Request]:
        return [r for r in self.requests if method is None or r.method == method]

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def ctx() -> ScmContext:
    return ScmContext(repository="acme/widgets", auth_token="ghp_test", api_url=None)


@pytest.fixture
def main() -> BranchRef:
    return BranchRef(name="main")


@pytest.fixture
def make_stream() -> type[TrackingStream]:
    return TrackingStream
