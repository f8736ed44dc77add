from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

import httpx

from job_relay.models import JobRecord

JobHandler = Callable[[dict[str, Any]], None]


class DeliveryError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class Deliverer(Protocol):
    def deliver(self, record: JobRecord) -> None: ...


class HttpDeliverer:
    """POSTs one record per call; a single attempt, no retries."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "job-relay/0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_url:
            raise ValueError("Missing job API URL")
        self.api_url = api_url
        self._client = httpx.Client(
            timeout=timeout_seconds,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            transport=transport,
        )

    def deliver(self, record: JobRecord) -> None:
        try:
            response = self._client.post(self.api_url, json=record.to_payload())
        except httpx.HTTPError as exc:
            raise DeliveryError(f"job API transport error: {exc}") from exc

        if not response.is_success:
            raise DeliveryError(
                f"job API error {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

    def close(self) -> None:
        self._client.close()


class CallbackDeliverer:
    """Hands the serialized record to an in-process handler."""

    def __init__(self, handler: JobHandler) -> None:
        self.handler = handler

    def deliver(self, record: JobRecord) -> None:
        try:
            self.handler(record.to_payload())
        except Exception as exc:
            raise DeliveryError(f"job handler failed: {exc}") from exc

    def close(self) -> None:
        return None
