from __future__ import annotations

from job_relay.models import Accepted, JobRecord, PermalinkParts, RawPost, SourceEntity
from job_relay.recency import to_iso


def build_permalink(parts: PermalinkParts | None) -> str:
    if parts is None:
        return ""

    if parts.feed == "telegram":
        if parts.handle:
            return f"https://t.me/{parts.handle}/{parts.sequence_number}"
        entity_id = parts.entity_id or ""
        if entity_id.startswith("-100"):
            return f"https://t.me/c/{entity_id[4:]}/{parts.sequence_number}"
        return ""

    if parts.feed == "reddit":
        return f"https://www.reddit.com{parts.path}" if parts.path else ""

    if parts.feed == "facebook":
        if parts.path.startswith(("http://", "https://")):
            return parts.path
        return f"https://facebook.com/{parts.path}" if parts.path else ""

    return parts.path


def build_job_record(result: Accepted, post: RawPost, entity: SourceEntity) -> JobRecord:
    permalink = build_permalink(post.permalink_parts)
    return JobRecord(
        title=result.title,
        body=result.body,
        source_label=entity.label,
        permalink=permalink,
        url=post.link_url or permalink,
        phone=result.phone,
        created_at=to_iso(post.timestamp),
    )
