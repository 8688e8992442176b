"""Readiness prober: poll a target until a predicate holds or time runs out.

A timeout is an outcome, not an exception. The caller decides whether a
TIMED_OUT result aborts the deployment or lets it continue degraded.
Fetch errors count as "not ready yet" and are retried; only when an error
budget is configured do persistent errors become fatal.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from stackdeploy.errors import ProbeError, ProbeTimedOut
from stackdeploy.observability.logging import get_logger
from stackdeploy.observability.metrics import probe_duration_seconds

_log = get_logger("prober")

Predicate = Callable[[Any], bool]


class ProbeOutcome(StrEnum):
    """Terminal outcome of a readiness wait."""

    READY = "ready"
    TIMED_OUT = "timed_out"


class ProbeTarget(ABC):
    """Something whose status can be fetched as a snapshot."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used in logs and errors."""

    @abstractmethod
    async def fetch(self) -> Any:
        """Return the current status snapshot. May raise on transient errors."""


@dataclass(frozen=True)
class ReadinessCheck:
    """What a resource kind considers "usable by dependents"."""

    target: ProbeTarget
    predicate: Predicate
    timeout: float


@dataclass(frozen=True)
class ProbeResult:
    """Result of ``wait_ready``."""

    outcome: ProbeOutcome
    attempts: int
    elapsed: float
    last_snapshot: Any = None
    last_error: Exception | None = None
    target: str = ""
    timeout: float = 0.0

    @property
    def ready(self) -> bool:
        return self.outcome is ProbeOutcome.READY

    def raise_for_timeout(self) -> None:
        """Raise ProbeTimedOut if the wait did not succeed."""
        if not self.ready:
            raise ProbeTimedOut(self.target, self.timeout, self.attempts)


class ReadinessProber:
    """Polls targets at a fixed cadence.

    Args:
        error_budget: Consecutive fetch errors tolerated before raising
                      ProbeError. ``None`` never hard-fails before timeout.
        clock:        Monotonic clock in seconds.
        sleep:        Coroutine used between polls.
    """

    def __init__(
        self,
        error_budget: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if error_budget is not None and error_budget < 0:
            raise ValueError("error_budget must be >= 0")
        self._error_budget = error_budget
        self._clock = clock
        self._sleep = sleep

    async def wait_ready(
        self,
        target: ProbeTarget,
        success_predicate: Predicate,
        timeout: float,
        poll_interval: float,
    ) -> ProbeResult:
        """Poll *target* until *success_predicate* holds or *timeout* elapses."""
        if timeout <= 0 or poll_interval <= 0:
            raise ValueError("timeout and poll_interval must be positive")
        if poll_interval >= timeout:
            raise ValueError("poll_interval must be shorter than timeout")

        started = self._clock()
        attempts = 0
        consecutive_errors = 0
        last_snapshot: Any = None
        last_error: Exception | None = None

        while True:
            attempts += 1
            try:
                snapshot = await target.fetch()
                last_snapshot = snapshot
                satisfied = bool(success_predicate(snapshot))
            except Exception as exc:
                consecutive_errors += 1
                last_error = exc
                _log.debug(
                    "probe_fetch_error",
                    target=target.name,
                    attempt=attempts,
                    error=str(exc),
                )
                if self._error_budget is not None and consecutive_errors > self._error_budget:
                    raise ProbeError(target.name, consecutive_errors, exc) from exc
                satisfied = False
            else:
                consecutive_errors = 0

            elapsed = self._clock() - started
            if satisfied:
                return self._finish(ProbeOutcome.READY, target, attempts, elapsed, timeout, last_snapshot, last_error)

            remaining = timeout - elapsed
            if remaining <= 0:
                return self._finish(
                    ProbeOutcome.TIMED_OUT, target, attempts, elapsed, timeout, last_snapshot, last_error
                )
            await self._sleep(min(poll_interval, remaining))

    def _finish(
        self,
        outcome: ProbeOutcome,
        target: ProbeTarget,
        attempts: int,
        elapsed: float,
        timeout: float,
        last_snapshot: Any,
        last_error: Exception | None,
    ) -> ProbeResult:
        probe_duration_seconds.labels(outcome=outcome.value).observe(elapsed)
        if outcome is ProbeOutcome.READY:
            _log.info("probe_ready", target=target.name, attempts=attempts, elapsed=round(elapsed, 3))
        else:
            _log.warning(
                "probe_timed_out",
                target=target.name,
                attempts=attempts,
                timeout=timeout,
                last_error=str(last_error) if last_error else None,
            )
        return ProbeResult(
            outcome=outcome,
            attempts=attempts,
            elapsed=elapsed,
            last_snapshot=last_snapshot,
            last_error=last_error,
            target=target.name,
            timeout=timeout,
        )


async def wait_ready(
    target: ProbeTarget,
    success_predicate: Predicate,
    timeout: float,
    poll_interval: float,
    error_budget: int | None = None,
) -> ProbeResult:
    """Convenience wrapper around a default ReadinessProber."""
    prober = ReadinessProber(error_budget=error_budget)
    return await prober.wait_ready(target, success_predicate, timeout, poll_interval)
