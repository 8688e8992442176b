"""Tests for the ReadinessProber and the concrete probe targets.

A FakeClock drives time: the prober only advances it by sleeping, so every
scenario runs instantly and deterministically.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from stackdeploy.errors import ProbeError, ProbeTimedOut
from stackdeploy.prober.readiness import ProbeOutcome, ProbeTarget, ReadinessProber, wait_ready
from stackdeploy.prober.targets import (
    CompositeTarget,
    HttpStatusTarget,
    NamespaceTarget,
    ReleasePodsTarget,
    all_of,
    namespace_active,
    pods_ready,
    status_up,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _ScriptedTarget(ProbeTarget):
    """Returns the snapshot scripted for the current clock time."""

    def __init__(self, clock, ready_at: float | None = None, fail_until: float = -1.0) -> None:
        self._clock = clock
        self._ready_at = ready_at
        self._fail_until = fail_until
        self.fetches: list[float] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def fetch(self) -> dict:
        now = self._clock.time()
        self.fetches.append(now)
        if now <= self._fail_until:
            raise ConnectionError("connection refused")
        return {"ready": self._ready_at is not None and now >= self._ready_at}


def _is_ready(snapshot: dict) -> bool:
    return snapshot["ready"]


# ---------------------------------------------------------------------------
# wait_ready
# ---------------------------------------------------------------------------


class TestWaitReady:
    async def test_returns_as_soon_as_predicate_holds(self, clock, prober) -> None:
        target = _ScriptedTarget(clock, ready_at=3.0)

        result = await prober.wait_ready(target, _is_ready, timeout=5.0, poll_interval=1.0)

        assert result.outcome is ProbeOutcome.READY
        assert result.ready
        assert result.elapsed == 3.0
        assert result.attempts == 4
        assert target.fetches == [0.0, 1.0, 2.0, 3.0]

    async def test_ready_on_first_poll_does_not_sleep(self, clock, prober) -> None:
        result = await prober.wait_ready(_ScriptedTarget(clock, ready_at=0.0), _is_ready, 5.0, 1.0)

        assert result.ready
        assert result.attempts == 1
        assert clock.sleeps == []

    async def test_timeout_is_an_outcome_not_an_exception(self, clock, prober) -> None:
        target = _ScriptedTarget(clock, ready_at=None)

        result = await prober.wait_ready(target, _is_ready, timeout=5.0, poll_interval=2.0)

        assert result.outcome is ProbeOutcome.TIMED_OUT
        assert not result.ready
        assert result.elapsed == 5.0
        assert result.last_snapshot == {"ready": False}
        # last sleep is clipped to the remaining budget
        assert clock.sleeps == [2.0, 2.0, 1.0]

    async def test_raise_for_timeout(self, clock, prober) -> None:
        result = await prober.wait_ready(_ScriptedTarget(clock), _is_ready, 3.0, 1.0)

        with pytest.raises(ProbeTimedOut) as exc_info:
            result.raise_for_timeout()

        assert exc_info.value.target == "scripted"
        assert exc_info.value.timeout == 3.0
        assert exc_info.value.attempts == result.attempts

    async def test_raise_for_timeout_noop_when_ready(self, clock, prober) -> None:
        result = await prober.wait_ready(_ScriptedTarget(clock, ready_at=0.0), _is_ready, 3.0, 1.0)
        result.raise_for_timeout()

    @pytest.mark.parametrize(
        ("timeout", "poll_interval"),
        [(0.0, 1.0), (5.0, 0.0), (-1.0, 1.0), (5.0, 5.0), (5.0, 10.0)],
    )
    async def test_invalid_durations_rejected(self, clock, prober, timeout, poll_interval) -> None:
        with pytest.raises(ValueError):
            await prober.wait_ready(_ScriptedTarget(clock), _is_ready, timeout, poll_interval)


class TestFetchErrors:
    async def test_transient_errors_count_as_not_ready(self, clock, prober) -> None:
        target = _ScriptedTarget(clock, ready_at=3.0, fail_until=2.0)

        result = await prober.wait_ready(target, _is_ready, timeout=5.0, poll_interval=1.0)

        assert result.ready
        assert isinstance(result.last_error, ConnectionError)

    async def test_predicate_errors_count_as_not_ready(self, clock, prober) -> None:
        def _broken(snapshot: dict) -> bool:
            raise KeyError("status")

        result = await prober.wait_ready(_ScriptedTarget(clock), _broken, timeout=2.0, poll_interval=1.0)

        assert result.outcome is ProbeOutcome.TIMED_OUT
        assert isinstance(result.last_error, KeyError)

    async def test_persistent_errors_without_budget_time_out(self, clock, prober) -> None:
        result = await prober.wait_ready(
            _ScriptedTarget(clock, fail_until=100.0), _is_ready, timeout=4.0, poll_interval=1.0
        )
        assert result.outcome is ProbeOutcome.TIMED_OUT

    async def test_error_budget_exceeded_raises_probe_error(self, clock) -> None:
        prober = ReadinessProber(error_budget=2, clock=clock.time, sleep=clock.sleep)

        with pytest.raises(ProbeError) as exc_info:
            await prober.wait_ready(_ScriptedTarget(clock, fail_until=100.0), _is_ready, 10.0, 1.0)

        assert exc_info.value.errors == 3
        assert isinstance(exc_info.value.cause, ConnectionError)

    async def test_error_budget_resets_after_success(self, clock) -> None:
        prober = ReadinessProber(error_budget=2, clock=clock.time, sleep=clock.sleep)
        # two errors, then not-ready snapshots until t=4
        target = _ScriptedTarget(clock, ready_at=4.0, fail_until=1.0)

        result = await prober.wait_ready(target, _is_ready, timeout=10.0, poll_interval=1.0)

        assert result.ready

    def test_negative_budget_rejected(self) -> None:
        with pytest.raises(ValueError):
            ReadinessProber(error_budget=-1)

    async def test_module_level_wait_ready(self) -> None:
        target = MagicMock(spec=ProbeTarget)
        target.name = "instant"
        target.fetch = AsyncMock(return_value={"ready": True})

        result = await wait_ready(target, _is_ready, timeout=1.0, poll_interval=0.1)

        assert result.ready
        assert result.target == "instant"


# ---------------------------------------------------------------------------
# Targets and predicates
# ---------------------------------------------------------------------------


def _pod(name: str, ready: bool, phase: str = "Running") -> SimpleNamespace:
    condition = SimpleNamespace(type="Ready", status="True" if ready else "False")
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        status=SimpleNamespace(phase=phase, conditions=[condition]),
    )


class TestKubernetesTargets:
    async def test_namespace_target(self) -> None:
        core_v1 = MagicMock()
        core_v1.read_namespace = AsyncMock(return_value=SimpleNamespace(status=SimpleNamespace(phase="Active")))

        snapshot = await NamespaceTarget(core_v1, "sonarqube").fetch()

        assert snapshot == {"phase": "Active"}
        assert namespace_active(snapshot)
        core_v1.read_namespace.assert_awaited_once_with(name="sonarqube")

    async def test_release_pods_target_selects_by_instance_label(self) -> None:
        core_v1 = MagicMock()
        core_v1.list_namespaced_pod = AsyncMock(
            return_value=SimpleNamespace(items=[_pod("pg-0", True), _pod("pg-1", False, "Pending")])
        )
        target = ReleasePodsTarget(core_v1, "sonarqube", "postgresql")

        snapshot = await target.fetch()

        core_v1.list_namespaced_pod.assert_awaited_once_with(
            namespace="sonarqube", label_selector="app.kubernetes.io/instance=postgresql"
        )
        assert snapshot["pods"] == [
            {"name": "pg-0", "phase": "Running", "ready": True},
            {"name": "pg-1", "phase": "Pending", "ready": False},
        ]
        assert target.name == "HelmRelease/sonarqube/postgresql"

    def test_pods_ready_needs_at_least_one_pod(self) -> None:
        assert not pods_ready({"pods": []})
        assert not pods_ready({"pods": [{"ready": True}, {"ready": False}]})
        assert pods_ready({"pods": [{"ready": True}]})

    async def test_http_status_target(self) -> None:
        response = MagicMock()
        response.json.return_value = {"status": "UP", "version": "10.4"}
        client = MagicMock()
        client.get = AsyncMock(return_value=response)
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=None)

        with patch("httpx.AsyncClient", return_value=client):
            snapshot = await HttpStatusTarget("http://sonarqube.local/api/system/status").fetch()

        assert status_up(snapshot)
        response.raise_for_status.assert_called_once()

    def test_http_status_target_requires_url(self) -> None:
        with pytest.raises(ValueError):
            HttpStatusTarget("")

    async def test_composite_target_and_all_of(self) -> None:
        pods = MagicMock(spec=ProbeTarget)
        pods.name = "pods"
        pods.fetch = AsyncMock(return_value={"pods": [{"ready": True}]})
        http = MagicMock(spec=ProbeTarget)
        http.name = "http"
        http.fetch = AsyncMock(return_value={"status": "STARTING"})
        composite = CompositeTarget(pods, http)
        predicate = all_of({"pods": pods_ready, "http": status_up})

        snapshot = await composite.fetch()

        assert composite.name == "pods+http"
        assert snapshot == {"pods": {"pods": [{"ready": True}]}, "http": {"status": "STARTING"}}
        assert not predicate(snapshot)

        http.fetch.return_value = {"status": "UP"}
        assert predicate(await composite.fetch())
