from __future__ import annotations

from datetime import datetime, timedelta, timezone

from job_relay.models import Timestamp


def parse_timestamp(value: Timestamp) -> datetime | None:
    """Best-effort conversion to an aware UTC datetime; ``None`` when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        else:
            raw = value.strip()
            if not raw:
                return None
            if raw.endswith(("Z", "z")):
                raw = raw[:-1] + "+00:00"
            parsed = datetime.fromisoformat(raw)
    except (ValueError, OverflowError, OSError, AttributeError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso(value: Timestamp) -> str | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.isoformat().replace("+00:00", "Z")


def is_recent(
    timestamp: Timestamp,
    max_age_hours: float | None,
    *,
    now_utc: datetime | None = None,
) -> bool:
    if not max_age_hours:
        return True

    parsed = parse_timestamp(timestamp)
    if parsed is None:
        # Missing or unparsable timestamps pass.
        return True

    now = now_utc or datetime.now(timezone.utc)
    return now - parsed <= timedelta(hours=max_age_hours)
