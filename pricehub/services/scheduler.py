from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable

from pricehub.errors import SchedulerActionError
from pricehub.schemas.scrape import ScheduleState, ScrapeErrorRecord
from pricehub.services.timeutil import now_ms


class CollectionScheduler:
    """Self-rescheduling collection job.

    Idle -> Scheduled (timer armed) -> Running -> Idle, re-armed only while
    enabled. There is at most one live timer; replacing it bumps the
    generation so a late callback from the old timer is ignored. A tick that
    lands while a run is in progress is dropped, not queued.
    """

    def __init__(
        self,
        action: Callable[[], Any],
        *,
        interval_ms: int = 300_000,
        enabled: bool = True,
        max_errors: int = 50,
        timer_factory: Callable[..., Any] = threading.Timer,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.action = action
        self._interval_ms = int(interval_ms)
        self._enabled = enabled
        self._timer_factory = timer_factory
        self._clock_ms = clock_ms
        self._lock = threading.Lock()
        self._timer: Any = None
        self._generation = 0
        self._active = False
        self._is_running = False
        self._last_run_at: int | None = None
        self._next_run_at: int | None = None
        self._total_runs = 0
        self._skipped_ticks = 0
        self._errors: deque[ScrapeErrorRecord] = deque(maxlen=max_errors)

    def _arm_locked(self) -> None:
        self._cancel_locked()
        self._generation += 1
        generation = self._generation
        timer = self._timer_factory(self._interval_ms / 1000.0, self._on_timer, args=(generation,))
        timer.daemon = True
        self._timer = timer
        self._next_run_at = self._clock_ms() + self._interval_ms
        timer.start()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._next_run_at = None

    def start(self) -> None:
        with self._lock:
            self._active = True
            if self._enabled and self._timer is None:
                self._arm_locked()
                print(f"[SCRAPE][scheduled] interval_ms={self._interval_ms}", flush=True)

    def stop(self) -> None:
        with self._lock:
            self._active = False
            self._cancel_locked()
            self._generation += 1

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._enabled = bool(enabled)
            if self._enabled:
                self._active = True
                if self._timer is None:
                    self._arm_locked()
            else:
                self._cancel_locked()
                self._generation += 1
        print(f"[SCRAPE][set_enabled] enabled={int(bool(enabled))}", flush=True)

    def set_interval(self, interval_ms: int) -> None:
        if int(interval_ms) <= 0:
            raise ValueError("interval must be a positive number of milliseconds")
        with self._lock:
            self._interval_ms = int(interval_ms)
            self._cancel_locked()
            self._generation += 1
            if self._enabled:
                self._active = True
                self._arm_locked()
        print(f"[SCRAPE][set_interval] interval_ms={int(interval_ms)}", flush=True)

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            self._next_run_at = None
        self.run_once()

    def run_once(self) -> bool:
        """Execute the action now unless a run is already in progress."""
        with self._lock:
            if self._is_running:
                self._skipped_ticks += 1
                print("[SCRAPE][tick_skipped] reason=run_in_progress", flush=True)
                return False
            self._is_running = True
            self._last_run_at = self._clock_ms()

        try:
            result = self.action()
            print(f"[SCRAPE][run_ok] result={result}", flush=True)
        except Exception as exc:
            error = SchedulerActionError(f"{type(exc).__name__}: {exc}")
            print(f"[SCRAPE][run_error] error={error}", flush=True)
            with self._lock:
                self._errors.append(ScrapeErrorRecord(timestamp=self._clock_ms(), message=str(error)))
        finally:
            with self._lock:
                self._is_running = False
                self._total_runs += 1
                if self._enabled and self._active and self._timer is None:
                    self._arm_locked()
        return True

    def trigger(self) -> bool:
        return self.run_once()

    def status(self) -> ScheduleState:
        with self._lock:
            return ScheduleState(
                enabled=self._enabled,
                interval_ms=self._interval_ms,
                last_run_at=self._last_run_at,
                next_run_at=self._next_run_at,
                is_running=self._is_running,
                total_runs=self._total_runs,
                skipped_ticks=self._skipped_ticks,
                recent_errors=list(self._errors),
            )
