from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

Timestamp = Union[datetime, str, int, float, None]


@dataclass(frozen=True)
class PermalinkParts:
    feed: str
    handle: str | None = None
    entity_id: str | None = None
    sequence_number: int | None = None
    path: str = ""


@dataclass(frozen=True)
class RawPost:
    source_entity_id: str
    sequence_number: int
    text: str
    timestamp: Timestamp = None
    permalink_parts: PermalinkParts | None = None
    link_url: str | None = None


@dataclass(frozen=True)
class SourceEntity:
    """A resolved target; ``id`` doubles as the cursor key."""

    id: str
    feed: str
    handle: str | None = None
    title: str | None = None

    @property
    def label(self) -> str:
        name = self.handle or self.title or self.id.split(":", 1)[-1]
        return f"{self.feed}/{name}"


@dataclass(frozen=True)
class Rejected:
    reason: str = ""


@dataclass(frozen=True)
class Accepted:
    title: str
    body: str
    phone: str | None = None


ClassificationResult = Union[Rejected, Accepted]


@dataclass(frozen=True)
class JobRecord:
    title: str
    body: str
    source_label: str
    permalink: str
    url: str
    phone: str | None = None
    created_at: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "sourceLabel": self.source_label,
            "permalink": self.permalink,
            "url": self.url,
        }
        if self.phone:
            payload["phone"] = self.phone
        if self.created_at:
            payload["createdAt"] = self.created_at
        return payload


@dataclass
class TargetResult:
    target: str
    entity_id: str | None = None
    cursor_before: int = 0
    cursor_after: int = 0
    fetched: int = 0
    new: int = 0
    blank: int = 0
    stale: int = 0
    rejected: int = 0
    delivered: int = 0
    failed_deliveries: int = 0
    error: str | None = None


@dataclass
class CycleResult:
    started_at_utc: str
    targets: list[TargetResult] = field(default_factory=list)
    skipped_targets: list[str] = field(default_factory=list)
    persist_error: str | None = None

    @property
    def delivered(self) -> int:
        return sum(result.delivered for result in self.targets)

    @property
    def failed_deliveries(self) -> int:
        return sum(result.failed_deliveries for result in self.targets)

    @property
    def failed_target_count(self) -> int:
        return sum(1 for result in self.targets if result.error)

    @property
    def success_target_count(self) -> int:
        return len(self.targets) - self.failed_target_count

    @property
    def ok(self) -> bool:
        return self.persist_error is None
