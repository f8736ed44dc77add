from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Mapping, Protocol

from job_relay.logging_utils import log_event

LOGGER = logging.getLogger("job_relay.storage")

CursorState = dict[str, int]


class CursorPersistError(RuntimeError):
    pass


class CursorStore(Protocol):
    def load(self) -> CursorState: ...

    def save(self, state: Mapping[str, int]) -> None: ...


def _clean_state(raw: Any) -> CursorState:
    if not isinstance(raw, dict):
        return {}
    state: CursorState = {}
    for key, value in raw.items():
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            state[str(key)] = value
        elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
            state[str(key)] = int(value)
    return state


class JsonCursorStore:
    """Flat ``{entity_id: last_seen}`` JSON file, rewritten via temp file + rename."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> CursorState:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            log_event(LOGGER, logging.WARNING, "cursor_load_failed", path=str(self.path), error=str(exc))
            return {}
        return _clean_state(raw)

    def save(self, state: Mapping[str, int]) -> None:
        payload = json.dumps(dict(sorted(state.items())), indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CursorPersistError(f"cannot write cursor file {self.path}: {exc}") from exc


class SqliteCursorStore(AbstractContextManager["SqliteCursorStore"]):
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as exc:
            raise ValueError(f"cannot open cursor database {self.db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        try:
            self._init_schema()
        except sqlite3.DatabaseError as exc:
            # load() falls back to an empty state and save() reports the failure.
            log_event(LOGGER, logging.WARNING, "cursor_schema_failed", path=str(self.db_path), error=str(exc))

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cursors (
                    entity_id TEXT PRIMARY KEY,
                    last_seen INTEGER NOT NULL
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_logs (
                    run_at TEXT PRIMARY KEY,
                    delivered_count INTEGER NOT NULL,
                    failed_delivery_count INTEGER NOT NULL,
                    error_count INTEGER NOT NULL
                )
                """
            )

    def load(self) -> CursorState:
        try:
            rows = self.conn.execute("SELECT entity_id, last_seen FROM cursors").fetchall()
        except sqlite3.Error as exc:
            log_event(LOGGER, logging.WARNING, "cursor_load_failed", path=str(self.db_path), error=str(exc))
            return {}
        return _clean_state({row["entity_id"]: row["last_seen"] for row in rows})

    def save(self, state: Mapping[str, int]) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM cursors")
                self.conn.executemany(
                    "INSERT INTO cursors (entity_id, last_seen) VALUES (?, ?)",
                    [(key, int(value)) for key, value in state.items()],
                )
        except sqlite3.Error as exc:
            raise CursorPersistError(f"cannot write cursors to {self.db_path}: {exc}") from exc

    def log_run(self, run_at_utc: str, delivered: int, failed_deliveries: int, error_count: int) -> None:
        with self.conn:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO run_logs (run_at, delivered_count, failed_delivery_count, error_count)
                VALUES (?, ?, ?, ?)
                """,
                (run_at_utc, delivered, failed_deliveries, error_count),
            )

    def count_runs(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS c FROM run_logs").fetchone()
        return int(row["c"]) if row else 0

    def close(self) -> None:
        self.conn.close()

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


def open_cursor_store(backend: str, path: Path | str) -> JsonCursorStore | SqliteCursorStore:
    if backend == "sqlite":
        return SqliteCursorStore(path)
    if backend == "json":
        return JsonCursorStore(path)
    raise ValueError(f"unknown cursor backend: {backend}")
