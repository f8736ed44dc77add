from __future__ import annotations

import argparse
import threading

from job_relay.config import (
    RUN_REQUIRED_ENVS,
    Settings,
    assert_required_envs,
    load_pattern_rules,
    load_settings,
    mask_secret,
    missing_envs,
)
from job_relay.delivery import CallbackDeliverer, HttpDeliverer, JobHandler
from job_relay.logging_utils import configure_logging
from job_relay.models import CycleResult
from job_relay.pipeline import run_cycle
from job_relay.scheduler import Poller, install_signal_handlers
from job_relay.scrapers.base import SourceAdapter, split_target
from job_relay.scrapers.board import BoardAdapter
from job_relay.scrapers.facebook import FacebookAdapter
from job_relay.scrapers.reddit import RedditAdapter
from job_relay.scrapers.telegram import TelegramAdapter
from job_relay.storage import SqliteCursorStore, open_cursor_store


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="job-relay")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Poll feeds, classify posts and deliver job records")
    run_parser.add_argument("--once", action="store_true", default=False, help="Run a single cycle and exit")
    subparsers.add_parser("healthcheck", help="Validate config, cursor store and pattern overrides")

    return parser


def build_adapters(settings: Settings) -> dict[str, SourceAdapter]:
    common = {"timeout_seconds": settings.request_timeout_seconds, "user_agent": settings.user_agent}
    adapters: dict[str, SourceAdapter] = {
        "reddit": RedditAdapter(**common),
        "board": BoardAdapter(**common),
    }
    feeds = {split_target(target)[0] for target in settings.targets}
    if "facebook" in feeds:
        adapters["facebook"] = FacebookAdapter(
            settings.facebook_access_token,
            api_version=settings.facebook_api_version,
            **common,
        )
    if "telegram" in feeds:
        adapters["telegram"] = TelegramAdapter(
            settings.telegram_api_id,
            settings.telegram_api_hash,
            settings.telegram_session,
        )
    return adapters


def build_deliverer(settings: Settings, handler: JobHandler | None = None) -> HttpDeliverer | CallbackDeliverer:
    """In-process handoff when a handler is given, otherwise POST to JOB_API_URL."""
    if handler is not None:
        return CallbackDeliverer(handler)
    return HttpDeliverer(
        settings.job_api_url,
        timeout_seconds=settings.request_timeout_seconds,
        user_agent=settings.user_agent,
    )


def _print_summary(result: CycleResult) -> None:
    print(
        "run summary:",
        f"targets={len(result.targets)}",
        f"failed_targets={result.failed_target_count}",
        f"delivered={result.delivered}",
        f"failed_deliveries={result.failed_deliveries}",
        f"skipped_targets={len(result.skipped_targets)}",
        f"cursor_saved={result.ok}",
    )


def _cmd_run(args: argparse.Namespace) -> int:
    settings = load_settings()
    assert_required_envs(RUN_REQUIRED_ENVS)
    configure_logging(settings.log_level)

    rules = load_pattern_rules(settings)
    store = open_cursor_store(settings.cursor_backend, settings.cursor_path)
    adapters = build_adapters(settings)
    deliverer = build_deliverer(settings)

    def _record(result: CycleResult) -> None:
        _print_summary(result)
        if isinstance(store, SqliteCursorStore):
            store.log_run(
                result.started_at_utc,
                delivered=result.delivered,
                failed_deliveries=result.failed_deliveries,
                error_count=result.failed_target_count + (0 if result.ok else 1),
            )

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    def _cycle(stop: threading.Event) -> CycleResult:
        return run_cycle(
            settings.targets,
            adapters=adapters,
            store=store,
            deliverer=deliverer,
            limit=settings.limit,
            max_age_hours=settings.max_age_hours,
            rules=rules,
            options=settings.classifier_options(),
            stop_event=stop,
        )

    poller = Poller(
        _cycle,
        interval_seconds=settings.poll_interval_seconds,
        run_once=args.once or settings.run_once,
        stop_event=stop_event,
        on_result=_record,
    )

    try:
        result = poller.run()
    finally:
        deliverer.close()
        for adapter in adapters.values():
            adapter.close()
        if isinstance(store, SqliteCursorStore):
            store.close()

    if result is None or not result.ok:
        return 1
    if result.failed_target_count > 0 and result.success_target_count == 0:
        return 1
    return 0


def _cmd_healthcheck() -> int:
    settings = load_settings()
    missing = missing_envs(RUN_REQUIRED_ENVS)
    if missing:
        print("missing required env vars:", ", ".join(missing))
        return 1

    try:
        load_pattern_rules(settings)
    except ValueError as exc:
        print(f"pattern overrides invalid: {exc}")
        return 1

    feeds = {split_target(target)[0] for target in settings.targets}
    unknown = sorted(feeds - {"reddit", "board", "facebook", "telegram"})
    if unknown:
        print("unknown feeds in FEED_TARGETS:", ", ".join(unknown))
        return 1
    if "facebook" in feeds:
        if not settings.facebook_access_token:
            print("facebook targets configured but FACEBOOK_ACCESS_TOKEN is missing")
            return 1
        print(f"facebook token: {mask_secret(settings.facebook_access_token)}")
    if "telegram" in feeds:
        if not (settings.telegram_api_id and settings.telegram_api_hash and settings.telegram_session):
            print("telegram targets configured but TELEGRAM_API_ID, TELEGRAM_API_HASH or TELEGRAM_SESSION is missing")
            return 1
        print(f"telegram session: {mask_secret(settings.telegram_session)}")

    try:
        store = open_cursor_store(settings.cursor_backend, settings.cursor_path)
        cursors = store.load()
        if isinstance(store, SqliteCursorStore):
            store.close()
    except Exception as exc:
        print(f"cursor store check failed: {exc}")
        return 1

    print(f"cursor store ready: {settings.cursor_path} ({len(cursors)} entities)")
    print(f"targets: {', '.join(settings.targets)}")
    print("healthcheck passed")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            return _cmd_run(args)
        if args.command == "healthcheck":
            return _cmd_healthcheck()
    except ValueError as exc:
        print(exc)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
