from __future__ import annotations

from typing import Any, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from job_relay.models import RawPost, SourceEntity

DEFAULT_FEED = "reddit"


class FetchError(RuntimeError):
    def __init__(self, url: str, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class SourceAdapter(Protocol):
    feed: str

    def resolve(self, target: str) -> SourceEntity: ...

    def fetch(self, entity: SourceEntity, limit: int) -> list[RawPost]: ...

    def close(self) -> None: ...


def split_target(target: str, default_feed: str = DEFAULT_FEED) -> tuple[str, str]:
    """``"facebook:123"`` -> ``("facebook", "123")``; bare names use ``default_feed``."""
    raw = target.strip()
    feed, sep, name = raw.partition(":")
    if sep and feed.isalpha() and feed.lower() not in {"http", "https"}:
        return feed.lower(), name.strip()
    return default_feed, raw


def build_client(
    *,
    timeout_seconds: float,
    user_agent: str,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        timeout=timeout_seconds,
        headers={"User-Agent": user_agent},
        follow_redirects=True,
        transport=transport,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(1),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
def _get(client: httpx.Client, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
    return client.get(url, params=params)


def get_response(client: httpx.Client, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
    try:
        response = _get(client, url, params)
    except httpx.HTTPError as exc:
        raise FetchError(url, None, f"{url}: {exc}") from exc
    if not response.is_success:
        raise FetchError(url, response.status_code, f"{url}: HTTP {response.status_code}")
    return response


def get_json(client: httpx.Client, url: str, params: dict[str, Any] | None = None) -> Any:
    response = get_response(client, url, params)
    try:
        return response.json()
    except ValueError as exc:
        raise FetchError(url, response.status_code, f"{url}: invalid JSON") from exc
