from __future__ import annotations

import logging
import math
import signal
import threading
import time
from collections.abc import Callable

from job_relay.logging_utils import log_event
from job_relay.models import CycleResult

LOGGER = logging.getLogger("job_relay.scheduler")

CycleRunner = Callable[[threading.Event], CycleResult]
ResultHook = Callable[[CycleResult], None]


class Poller:
    """Runs one cycle at a time on a fixed interval; overrun ticks are dropped."""

    def __init__(
        self,
        run_cycle: CycleRunner,
        *,
        interval_seconds: float,
        run_once: bool = False,
        stop_event: threading.Event | None = None,
        on_result: ResultHook | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._run_cycle = run_cycle
        self.interval_seconds = interval_seconds
        self.run_once = run_once
        self.stop_event = stop_event or threading.Event()
        self._on_result = on_result
        self._clock = clock
        self._running = threading.Lock()
        self.cycles_run = 0

    def tick(self) -> CycleResult | None:
        if not self._running.acquire(blocking=False):
            log_event(LOGGER, logging.WARNING, "tick_skipped", reason="cycle still running")
            return None
        try:
            result = self._run_cycle(self.stop_event)
        except Exception as exc:
            log_event(LOGGER, logging.ERROR, "cycle_crashed", error_type=type(exc).__name__, error=str(exc))
            return None
        finally:
            self._running.release()

        self.cycles_run += 1
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception as exc:
                log_event(LOGGER, logging.WARNING, "result_hook_failed", error=str(exc))
        return result

    def run(self) -> CycleResult | None:
        last_result: CycleResult | None = None
        next_tick = self._clock()

        while not self.stop_event.is_set():
            result = self.tick()
            if result is not None:
                last_result = result
            if self.run_once:
                break

            next_tick += self.interval_seconds
            now = self._clock()
            if now > next_tick:
                missed = math.ceil((now - next_tick) / self.interval_seconds)
                next_tick += missed * self.interval_seconds
                log_event(LOGGER, logging.WARNING, "ticks_skipped", count=missed)
            self.stop_event.wait(max(0.0, next_tick - now))

        return last_result


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum, _frame) -> None:
        log_event(LOGGER, logging.INFO, "shutdown_requested", signal=signal.Signals(signum).name)
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _handle)
