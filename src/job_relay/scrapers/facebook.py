from __future__ import annotations

import httpx

from job_relay.models import PermalinkParts, RawPost, SourceEntity
from job_relay.scrapers.base import build_client, get_json

FEED = "facebook"
GRAPH_URL = "https://graph.facebook.com/{version}/{page_id}/posts"
POST_FIELDS = "id,message,created_time,permalink_url"


def _sequence_number(post_id: str) -> int | None:
    # Graph post ids look like "<page_id>_<post_id>".
    _, _, suffix = str(post_id).rpartition("_")
    return int(suffix) if suffix.isdigit() else None


class FacebookAdapter:
    feed = FEED

    def __init__(
        self,
        access_token: str,
        *,
        api_version: str = "v18.0",
        timeout_seconds: float = 20.0,
        user_agent: str = "job-relay/0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("Missing FACEBOOK_ACCESS_TOKEN")
        self.access_token = access_token
        self.api_version = api_version
        self._client = build_client(timeout_seconds=timeout_seconds, user_agent=user_agent, transport=transport)

    def resolve(self, target: str) -> SourceEntity:
        page_id = target.strip().strip("/")
        if not page_id:
            raise ValueError(f"empty facebook page target: {target!r}")
        return SourceEntity(id=f"{FEED}:{page_id}", feed=FEED, handle=page_id)

    def fetch(self, entity: SourceEntity, limit: int) -> list[RawPost]:
        url = GRAPH_URL.format(version=self.api_version, page_id=entity.handle)
        params = {"fields": POST_FIELDS, "limit": limit, "access_token": self.access_token}
        data = get_json(self._client, url, params=params)
        items = (data.get("data") or []) if isinstance(data, dict) else []

        posts: list[RawPost] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            post_id = str(item.get("id") or "")
            sequence_number = _sequence_number(post_id)
            if sequence_number is None:
                continue
            posts.append(
                RawPost(
                    source_entity_id=entity.id,
                    sequence_number=sequence_number,
                    text=item.get("message") or "",
                    timestamp=item.get("created_time"),
                    permalink_parts=PermalinkParts(
                        feed=FEED,
                        handle=entity.handle,
                        entity_id=entity.handle,
                        sequence_number=sequence_number,
                        path=item.get("permalink_url") or post_id,
                    ),
                )
            )
        return posts

    def close(self) -> None:
        self._client.close()
