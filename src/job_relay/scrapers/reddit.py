from __future__ import annotations

import re

import httpx

from job_relay.models import PermalinkParts, RawPost, SourceEntity
from job_relay.scrapers.base import build_client, get_json

FEED = "reddit"
LISTING_URL = "https://www.reddit.com/r/{subreddit}/new.json"


def normalize_subreddit(raw: str) -> str:
    trimmed = raw.strip().rstrip("/")
    match = re.search(r"(?:^|/)r/([^/?#]+)", trimmed, re.IGNORECASE)
    return match.group(1) if match else trimmed


def _sequence_number(post_id: str) -> int | None:
    # Reddit ids are base36 and grow with submission order.
    try:
        return int(post_id, 36)
    except (TypeError, ValueError):
        return None


class RedditAdapter:
    feed = FEED

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "job-relay/0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = build_client(timeout_seconds=timeout_seconds, user_agent=user_agent, transport=transport)

    def resolve(self, target: str) -> SourceEntity:
        subreddit = normalize_subreddit(target)
        if not subreddit:
            raise ValueError(f"empty subreddit target: {target!r}")
        return SourceEntity(id=f"{FEED}:{subreddit.lower()}", feed=FEED, handle=subreddit)

    def fetch(self, entity: SourceEntity, limit: int) -> list[RawPost]:
        url = LISTING_URL.format(subreddit=entity.handle)
        data = get_json(self._client, url, params={"limit": limit})
        listing = data.get("data") if isinstance(data, dict) else None
        children = (listing or {}).get("children") or []

        posts: list[RawPost] = []
        for child in children:
            item = child.get("data") if isinstance(child, dict) else None
            if not item:
                continue
            sequence_number = _sequence_number(item.get("id", ""))
            if sequence_number is None:
                continue

            title = (item.get("title") or "").strip()
            body = (item.get("selftext") or "").strip()
            text = "\n".join(part for part in (title, body) if part)
            permalink_path = item.get("permalink") or ""
            posts.append(
                RawPost(
                    source_entity_id=entity.id,
                    sequence_number=sequence_number,
                    text=text,
                    timestamp=item.get("created_utc"),
                    permalink_parts=PermalinkParts(
                        feed=FEED,
                        handle=item.get("subreddit") or entity.handle,
                        sequence_number=sequence_number,
                        path=permalink_path,
                    ),
                    link_url=item.get("url_overridden_by_dest") or None,
                )
            )
        return posts

    def close(self) -> None:
        self._client.close()
