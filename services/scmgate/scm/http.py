"""
Shared HTTP plumbing for provider adapters.

One status classifier for every provider call, plus the request wrapper that
turns transport failures into ProviderConnectionError. Adapters never
retry; the classified error tells the caller whether a retry is sensible.
"""

from __future__ import annotations

from typing import Any

import httpx

from scmgate.config import settings
from scmgate.scm.protocol import (
    AccessOrNotFoundError,
    NotFoundError,
    ProviderConnectionError,
    ProviderResponseError,
    ProviderServerError,
    UnexpectedRedirectError,
)


def build_client(
    base_url: str = "",
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the long-lived client a provider owns.

    Redirects are never followed implicitly; the archive download opts in
    per request.
    """
    default_headers = {"User-Agent": settings.http.user_agent}
    if headers:
        default_headers.update(headers)
    return httpx.AsyncClient(
        base_url=base_url,
        headers=default_headers,
        timeout=settings.http.timeout_seconds,
        follow_redirects=False,
        transport=transport,
    )


def _error_text(resp: httpx.Response) -> str:
    """Best-effort provider error message from a JSON or text body."""
    try:
        body = resp.json()
    except (ValueError, httpx.ResponseNotRead):
        try:
            return resp.text.strip()[:200]
        except httpx.ResponseNotRead:
            return ""
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or "")
    return ""


def raise_for_status(resp: httpx.Response, what: str) -> None:
    """Classify a response into the SCM error taxonomy.

    Args:
        resp: Provider response (body must be read for a detailed message).
        what: Short description of the call for the error message.

    Raises:
        UnexpectedRedirectError: 3xx.
        NotFoundError: 404.
        AccessOrNotFoundError: any other 4xx.
        ProviderServerError: 5xx.
    """
    code = resp.status_code
    if code < 300:
        return

    detail = _error_text(resp)
    suffix = f": {detail}" if detail else ""

    if code < 400:
        raise UnexpectedRedirectError(
            f"Unexpected redirect ({code}) from {what}",
            status_code=code,
            location=resp.headers.get("location"),
        )
    if code == 404:
        raise NotFoundError(f"Not found: {what}{suffix}")
    if code < 500:
        raise AccessOrNotFoundError(f"{what} rejected with HTTP {code}{suffix}", status_code=code)
    raise ProviderServerError(f"{what} failed with HTTP {code}{suffix}", status_code=code)


async def request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    what: str,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request and classify the response."""
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.RequestError as e:
        raise ProviderConnectionError(f"{what} failed: {e}") from e
    raise_for_status(resp, what)
    return resp


def json_body(resp: httpx.Response, what: str) -> Any:
    """Parse a successful response body as JSON.

    Raises:
        ProviderResponseError: If the body is empty or not JSON (a proxy
            error page answering 200, for instance).
    """
    try:
        return resp.json()
    except ValueError as e:
        raise ProviderResponseError(
            f"{what} returned a non-JSON body (HTTP {resp.status_code})",
            status_code=resp.status_code,
        ) from e


def require(data: Any, what: str, *keys: str) -> Any:
    """Walk nested keys of a JSON object, failing with ProviderResponseError on a gap."""
    value = data
    for key in keys:
        if not isinstance(value, dict) or value.get(key) is None:
            raise ProviderResponseError(f"{what} response is missing '{'.'.join(keys)}'")
        value = value[key]
    return value
