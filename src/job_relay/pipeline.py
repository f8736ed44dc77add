from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from job_relay.classifier import DEFAULT_OPTIONS, DEFAULT_RULES, ClassifierOptions, PatternRules, classify
from job_relay.delivery import Deliverer, DeliveryError
from job_relay.logging_utils import log_event
from job_relay.models import Accepted, CycleResult, RawPost, SourceEntity, TargetResult
from job_relay.recency import is_recent
from job_relay.records import build_job_record
from job_relay.scrapers.base import DEFAULT_FEED, SourceAdapter, split_target
from job_relay.storage import CursorState, CursorStore

LOGGER = logging.getLogger("job_relay.pipeline")


def select_new_posts(posts: Sequence[RawPost], last_seen: int) -> list[RawPost]:
    fresh = [post for post in posts if post.sequence_number > last_seen]
    return sorted(fresh, key=lambda post: post.sequence_number)


def _deliver_post(
    post: RawPost,
    result: Accepted,
    entity: SourceEntity,
    deliverer: Deliverer,
    stats: TargetResult,
) -> None:
    record = build_job_record(result, post, entity)
    try:
        deliverer.deliver(record)
    except DeliveryError as exc:
        stats.failed_deliveries += 1
        log_event(
            LOGGER,
            logging.WARNING,
            "delivery_failed",
            target=stats.target,
            sequence_number=post.sequence_number,
            status_code=exc.status_code,
            error=str(exc),
        )
        return
    except Exception as exc:
        stats.failed_deliveries += 1
        log_event(
            LOGGER,
            logging.ERROR,
            "delivery_crashed",
            target=stats.target,
            sequence_number=post.sequence_number,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return

    stats.delivered += 1
    log_event(
        LOGGER,
        logging.INFO,
        "job_delivered",
        source_label=record.source_label,
        sequence_number=post.sequence_number,
        title=record.title,
    )


def process_target(
    target: str,
    *,
    adapters: Mapping[str, SourceAdapter],
    cursors: CursorState,
    deliverer: Deliverer,
    limit: int,
    max_age_hours: float,
    rules: PatternRules,
    options: ClassifierOptions,
    now_utc: datetime,
    default_feed: str = DEFAULT_FEED,
) -> TargetResult:
    """Run one target through fetch -> filter -> classify -> deliver, advancing ``cursors`` on success."""
    stats = TargetResult(target=target)
    feed, name = split_target(target, default_feed)

    try:
        adapter = adapters[feed]
    except KeyError:
        stats.error = f"no adapter configured for feed {feed!r}"
        log_event(LOGGER, logging.ERROR, "target_unknown_feed", target=target, feed=feed)
        return stats

    try:
        entity = adapter.resolve(name)
        stats.entity_id = entity.id
        last_seen = cursors.get(entity.id, 0)
        stats.cursor_before = stats.cursor_after = last_seen
        raw_posts = adapter.fetch(entity, limit)
    except Exception as exc:
        stats.error = f"{type(exc).__name__}: {exc}"
        log_event(LOGGER, logging.WARNING, "target_fetch_failed", target=target, error=stats.error)
        return stats

    stats.fetched = len(raw_posts)
    new_posts = select_new_posts(raw_posts, last_seen)
    stats.new = len(new_posts)

    high_watermark = last_seen
    for post in new_posts:
        high_watermark = max(high_watermark, post.sequence_number)
        if not (post.text or "").strip():
            stats.blank += 1
            continue
        if not is_recent(post.timestamp, max_age_hours, now_utc=now_utc):
            stats.stale += 1
            continue
        result = classify(post.text, rules, options)
        if not isinstance(result, Accepted):
            stats.rejected += 1
            log_event(
                LOGGER,
                logging.DEBUG,
                "post_rejected",
                entity_id=entity.id,
                sequence_number=post.sequence_number,
                reason=result.reason,
            )
            continue
        _deliver_post(post, result, entity, deliverer, stats)

    cursors[entity.id] = stats.cursor_after = max(last_seen, high_watermark)
    log_event(
        LOGGER,
        logging.INFO,
        "target_done",
        target=target,
        entity_id=entity.id,
        fetched=stats.fetched,
        new=stats.new,
        rejected=stats.rejected,
        stale=stats.stale,
        delivered=stats.delivered,
        failed_deliveries=stats.failed_deliveries,
        cursor=stats.cursor_after,
    )
    return stats


def run_cycle(
    targets: Sequence[str],
    *,
    adapters: Mapping[str, SourceAdapter],
    store: CursorStore,
    deliverer: Deliverer,
    limit: int = 50,
    max_age_hours: float = 0.0,
    rules: PatternRules = DEFAULT_RULES,
    options: ClassifierOptions = DEFAULT_OPTIONS,
    stop_event: threading.Event | None = None,
    now_utc: datetime | None = None,
) -> CycleResult:
    run_at_utc = now_utc or datetime.now(timezone.utc)
    result = CycleResult(started_at_utc=run_at_utc.replace(microsecond=0).isoformat())
    log_event(LOGGER, logging.INFO, "cycle_start", targets=len(targets), run_at=result.started_at_utc)

    cursors = store.load()

    for index, target in enumerate(targets):
        if stop_event is not None and stop_event.is_set():
            result.skipped_targets.extend(targets[index:])
            log_event(LOGGER, logging.INFO, "cycle_stopping", skipped=len(result.skipped_targets))
            break
        result.targets.append(
            process_target(
                target,
                adapters=adapters,
                cursors=cursors,
                deliverer=deliverer,
                limit=limit,
                max_age_hours=max_age_hours,
                rules=rules,
                options=options,
                now_utc=run_at_utc,
            )
        )

    try:
        store.save(cursors)
    except Exception as exc:
        result.persist_error = f"{type(exc).__name__}: {exc}"
        log_event(LOGGER, logging.ERROR, "cursor_save_failed", error=result.persist_error)
    else:
        log_event(LOGGER, logging.INFO, "cursor_saved", entities=len(cursors))

    log_event(
        LOGGER,
        logging.INFO,
        "cycle_done",
        delivered=result.delivered,
        failed_deliveries=result.failed_deliveries,
        failed_targets=result.failed_target_count,
        persisted=result.ok,
    )
    return result
