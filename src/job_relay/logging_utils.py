from __future__ import annotations

import json
import logging
import sys
from typing import Any


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log a single-line JSON event."""

    payload: dict[str, Any] = {"event": event, **fields}
    try:
        msg = json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        safe_payload = {
            k: (v if isinstance(v, (str, int, float, bool)) or v is None else str(v)) for k, v in payload.items()
        }
        msg = json.dumps(safe_payload, ensure_ascii=False, sort_keys=True)
    logger.log(level, msg)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root = logging.getLogger("job_relay")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False
