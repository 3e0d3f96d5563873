"""Admission control for outbound registry requests.

A controller owns a bounded permit pool that a background timer resets to full
capacity once per rate-limit window. Callers take a permit before sending and
hand it back afterwards; the refill schedule is independent of those releases.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

import structlog

from crpt_api.errors import AcquireTimeoutError, ConfigurationError, InterruptedWait

logger = structlog.get_logger(__name__)

# Upper bound on how long a cancellable waiter sleeps between token checks.
_CANCEL_POLL_S = 0.05


class WindowUnit(StrEnum):
    """Time unit a request ceiling applies to."""

    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> float:
        return _UNIT_SECONDS[self]


_UNIT_SECONDS: dict[WindowUnit, float] = {
    WindowUnit.SECOND: 1.0,
    WindowUnit.MINUTE: 60.0,
    WindowUnit.HOUR: 3600.0,
    WindowUnit.DAY: 86400.0,
}


def parse_window_unit(raw: WindowUnit | str) -> WindowUnit:
    """Resolve a window unit from its name; accepts plural forms like ``minutes``."""
    if isinstance(raw, WindowUnit):
        return raw
    value = str(raw).strip().lower()
    if value.endswith("s") and value[:-1] in {unit.value for unit in WindowUnit}:
        value = value[:-1]
    try:
        return WindowUnit(value)
    except ValueError as exc:
        allowed = ",".join(unit.value for unit in WindowUnit)
        raise ConfigurationError(f"unknown window unit {raw!r}; expected one of {allowed}") from exc


@dataclass(frozen=True)
class RateLimitConfig:
    """Ceiling of ``max_requests_per_window`` requests per ``window_unit``."""

    window_unit: WindowUnit
    max_requests_per_window: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "window_unit", parse_window_unit(self.window_unit))
        limit = self.max_requests_per_window
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ConfigurationError(f"request limit must be an integer, got {limit!r}")
        if limit <= 0:
            raise ConfigurationError(f"request limit must be positive, got {limit}")

    @property
    def window_seconds(self) -> float:
        return self.window_unit.seconds

    @property
    def refill_interval_seconds(self) -> float:
        """One full refill per window."""
        return self.window_seconds


class Timer(Protocol):
    """Recurring scheduler driving pool refills."""

    def start(self, callback: Callable[[], object], interval: float) -> None: ...

    def cancel(self) -> None: ...


class CancellationToken:
    """Thread-safe flag used to abandon a blocked ``acquire`` cooperatively."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


class RefillTimer:
    """Runs a callback every ``interval`` seconds on one daemon thread.

    The delay is measured from the end of the previous callback, so two
    consecutive ticks are always at least ``interval`` apart.
    """

    def __init__(self, *, name: str = "crpt-refill") -> None:
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop.is_set()

    def start(self, callback: Callable[[], object], interval: float) -> None:
        if interval <= 0:
            raise ConfigurationError(f"timer interval must be positive, got {interval}")
        if self._thread is not None:
            raise RuntimeError("refill timer already started")
        self._thread = threading.Thread(
            target=self._run,
            args=(callback, interval),
            daemon=True,
            name=self._name,
        )
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _run(self, callback: Callable[[], object], interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                callback()
            except Exception:
                logger.exception("refill_tick_failed", timer=self._name)


class AdmissionController:
    """Bounded permit pool refilled to capacity once per window.

    ``acquire`` blocks while the pool is empty, ``release`` returns a permit
    without ever growing the pool past its capacity, and ``refill`` (driven by
    the timer) resets the pool to full when a whole interval has elapsed since
    the previous refill. All three run under one lock owned by this instance.
    Waiters are not served in arrival order.

    Because every permit goes back to the pool when its request finishes, the
    ceiling bounds requests in flight: callers that acquire and release one
    after another are never throttled. The refill only matters while all
    permits are held at once.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
        timer: Timer | None = None,
    ) -> None:
        self.config = config
        self._capacity = config.max_requests_per_window
        self._interval = config.refill_interval_seconds
        self._clock = clock
        self._cond = threading.Condition(threading.Lock())
        self._permits = self._capacity
        self._last_refill = clock()
        self._stopped = False
        self._log = logger.bind(
            limit=self._capacity,
            window=config.window_unit.value,
        )
        self._timer = timer if timer is not None else RefillTimer()
        self._timer.start(self.refill, self._interval)
        self._log.debug("admission_controller_started", interval_s=self._interval)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        """Number of permits that could be taken right now."""
        with self._cond:
            return self._permits

    @property
    def stopped(self) -> bool:
        with self._cond:
            return self._stopped

    def acquire(
        self,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> float:
        """Take one permit, blocking until one exists.

        Args:
            timeout: Optional bound in seconds on the wait; ``None`` waits indefinitely.
            cancel: Optional token; cancelling it makes a blocked call give up.

        Returns:
            Seconds spent waiting for the permit.

        Raises:
            InterruptedWait: ``cancel`` was triggered before a permit was taken.
            AcquireTimeoutError: ``timeout`` elapsed with the pool still empty.
        """
        started = time.monotonic()
        deadline = None if timeout is None else started + max(0.0, timeout)
        with self._cond:
            while True:
                if cancel is not None and cancel.is_cancelled():
                    raise InterruptedWait("permit wait cancelled")
                if self._permits > 0:
                    break
                wait_for: float | None = None
                if deadline is not None:
                    wait_for = deadline - time.monotonic()
                    if wait_for <= 0:
                        raise AcquireTimeoutError(f"no permit available within {timeout}s")
                if cancel is not None:
                    wait_for = _CANCEL_POLL_S if wait_for is None else min(wait_for, _CANCEL_POLL_S)
                self._cond.wait(wait_for)
            self._permits -= 1
        waited = time.monotonic() - started
        if waited > 0.001:
            self._log.debug("permit_acquired_after_wait", waited_s=round(waited, 3))
        return waited

    def release(self) -> None:
        """Return one permit; a full pool stays full."""
        with self._cond:
            if self._permits < self._capacity:
                self._permits += 1
                self._cond.notify()

    @contextmanager
    def permit(
        self,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> Iterator[float]:
        """Hold one permit for the duration of the block."""
        waited = self.acquire(timeout=timeout, cancel=cancel)
        try:
            yield waited
        finally:
            self.release()

    def refill(self) -> bool:
        """Reset the pool to capacity if a full interval passed since the last refill."""
        with self._cond:
            now = self._clock()
            if now - self._last_refill < self._interval:
                return False
            self._last_refill = now
            self._permits = self._capacity
            self._cond.notify_all()
        self._log.debug("permit_pool_refilled")
        return True

    def stop(self) -> None:
        """Stop the refill timer.

        Blocked ``acquire`` calls are left waiting; they proceed only if permits
        are released or give up through their own timeout or token.
        """
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
        self._timer.cancel()
        self._log.info("admission_controller_stopped")

    def __enter__(self) -> AdmissionController:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
