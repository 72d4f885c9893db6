"""Unit tests for HostRegistry."""

import asyncio

import pytest

from pathmon.fake_probe import ScriptedProbe
from pathmon.models import Failure, FailureReason, Host, MonitorState, Success
from pathmon.registry import HostRegistry
from pathmon.shaper import TrafficShaper


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached in time"
        await asyncio.sleep(0.001)


def make_host(name, **kwargs):
    kwargs.setdefault("interval_ms", 1.0)
    return Host(name=name, address=f"{name}.example", **kwargs)


def make_registry(outcomes=(), **kwargs):
    probe = ScriptedProbe(outcomes)
    registry = HostRegistry(
        probe, shaper_factory=lambda host: TrafficShaper.for_host(host, seed=3), **kwargs
    )
    return registry, probe


class PerHostProbe:
    """Routes each address to its own scripted probe."""

    def __init__(self, scripts):
        self._probes = {address: ScriptedProbe(outcomes) for address, outcomes in scripts.items()}

    async def probe(self, address, timeout_ms, payload_size):
        return await self._probes[address].probe(address, timeout_ms, payload_size)


class TestHostRegistryHosts:
    """Host bookkeeping (no monitoring)."""

    def test_initial_state(self):
        registry, _ = make_registry()
        assert registry.hosts() == []
        assert len(registry) == 0

    def test_add_single_host(self):
        registry, _ = make_registry()
        host = make_host("google")

        assert registry.add(host) is True
        assert registry.hosts() == [host]
        assert "google" in registry
        assert registry.state("google") is MonitorState.IDLE
        assert registry.snapshot("google").sent == 0

    def test_add_duplicate_host_ignored(self):
        registry, _ = make_registry()
        registry.add(make_host("google"))

        assert registry.add(make_host("google", interval_ms=5.0)) is False
        assert len(registry) == 1
        assert registry.host("google").interval_ms == 1.0

    def test_remove_host(self):
        registry, _ = make_registry()
        registry.add(make_host("google"))
        registry.add(make_host("cloudflare"))
        registry.remove("google")

        assert [h.name for h in registry.hosts()] == ["cloudflare"]
        assert "google" not in registry

    def test_remove_nonexistent_host(self):
        registry, _ = make_registry()
        registry.add(make_host("google"))
        registry.remove("nonexistent")  # Should not crash

        assert len(registry) == 1

    def test_reorder(self):
        registry, _ = make_registry()
        for name in ("a", "b", "c"):
            registry.add(make_host(name))

        registry.reorder("c", 0)
        assert [h.name for h in registry.hosts()] == ["c", "a", "b"]

        registry.reorder("c", 99)
        assert [h.name for h in registry.hosts()] == ["a", "b", "c"]

    def test_unknown_host_raises(self):
        registry, _ = make_registry()
        with pytest.raises(KeyError, match="Unknown host"):
            registry.snapshot("missing")
        with pytest.raises(KeyError):
            registry.start("missing")
        with pytest.raises(KeyError):
            registry.reorder("missing", 0)

    def test_invalid_history_size(self):
        with pytest.raises(ValueError, match="history_size must be positive"):
            HostRegistry(ScriptedProbe(), history_size=0)

    def test_signals_exist(self):
        registry, _ = make_registry()
        assert hasattr(registry, "snapshot_ready")
        assert hasattr(registry, "state_changed")
        assert hasattr(registry, "fault_raised")


class TestHostRegistryMonitoring:
    def test_snapshots_published(self):
        registry, probe = make_registry([Success(20.0), Success(22.0)])
        registry.add(make_host("gw"))
        received = []
        registry.snapshot_ready.connect(lambda host_id, snap: received.append((host_id, snap)))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.snapshot("gw").sent == 2)
            await registry.shutdown()

        asyncio.run(scenario())

        assert [host_id for host_id, _ in received] == ["gw", "gw"]
        assert received[-1][1].mean_ms == 21.0
        assert registry.history("gw")[-1].latency_ms == 22.0
        assert registry.state("gw") is MonitorState.STOPPED

    def test_start_is_idempotent(self):
        registry, probe = make_registry()
        registry.add(make_host("gw"))

        async def scenario():
            registry.start("gw")
            registry.start("gw")
            await probe.exhausted.wait()
            await asyncio.sleep(0.02)
            await registry.shutdown()

        asyncio.run(scenario())
        # One monitor means one in-flight probe
        assert len(probe.calls) == 1

    def test_stop_is_idempotent(self):
        registry, _ = make_registry()
        registry.add(make_host("gw"))

        async def scenario():
            registry.stop("gw")
            registry.start("gw")
            registry.stop("gw")
            registry.stop("gw")
            await registry.shutdown()

        asyncio.run(scenario())
        assert registry.state("gw") is MonitorState.STOPPED

    def test_restart_after_stop(self):
        registry, probe = make_registry([Success(10.0), Success(11.0)])
        registry.add(make_host("gw"))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.snapshot("gw").sent == 1)
            registry.stop("gw")
            registry.start("gw")
            await wait_until(lambda: registry.snapshot("gw").sent == 2)
            await registry.shutdown()

        asyncio.run(scenario())
        assert registry.snapshot("gw").count == 2

    def test_start_all_skips_disabled(self):
        registry, probe = make_registry()
        registry.add(make_host("on"))
        registry.add(make_host("off", enabled=False))

        async def scenario():
            registry.start_all()
            await wait_until(lambda: registry.state("on") is MonitorState.PROBING)
            assert registry.state("off") is MonitorState.IDLE
            registry.stop_all()
            await registry.shutdown()

        asyncio.run(scenario())
        assert registry.state("on") is MonitorState.STOPPED

    def test_remove_discards_statistics(self):
        registry, _ = make_registry([Success(10.0)] * 3)
        registry.add(make_host("gw"))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.snapshot("gw").sent == 3)
            registry.remove("gw")
            await asyncio.sleep(0.01)
            registry.add(make_host("gw"))
            assert registry.snapshot("gw").sent == 0
            assert registry.history("gw") == ()

        asyncio.run(scenario())

    def test_hosts_are_independent(self):
        outcomes = [Success(10.0), Failure(FailureReason.TIMEOUT)] * 4
        registry, _ = make_registry(outcomes)
        registry.add(make_host("a"))
        registry.add(make_host("b"))

        async def scenario():
            registry.start_all()
            await wait_until(
                lambda: registry.snapshot("a").sent + registry.snapshot("b").sent == 8
            )
            await registry.shutdown()

        asyncio.run(scenario())

        for name in ("a", "b"):
            assert all(s.host == name for s in registry.history(name))


class TestHostRegistryFaults:
    def test_permission_denied_faults_host(self):
        registry, probe = make_registry([Failure(FailureReason.PERMISSION_DENIED, "not permitted")])
        registry.add(make_host("gw"))
        faults = []
        states = []
        registry.fault_raised.connect(lambda host_id, fault: faults.append((host_id, fault)))
        registry.state_changed.connect(lambda host_id, state: states.append(state))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.state("gw") is MonitorState.FAULTED)
            await asyncio.sleep(0.02)

        asyncio.run(scenario())

        assert faults == [("gw", "not permitted")]
        assert registry.fault("gw") == "not permitted"
        assert states[-1] is MonitorState.FAULTED
        assert len(probe.calls) == 1

    def test_explicit_start_restarts_faulted_host(self):
        registry, probe = make_registry(
            [Failure(FailureReason.PERMISSION_DENIED), Success(10.0)]
        )
        registry.add(make_host("gw"))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.state("gw") is MonitorState.FAULTED)
            registry.start("gw")
            await wait_until(lambda: registry.snapshot("gw").sent == 2)
            assert registry.fault("gw") is None
            await registry.shutdown()

        asyncio.run(scenario())

    def test_fault_does_not_affect_other_hosts(self):
        registry, _ = make_registry()
        registry.probe = PerHostProbe(
            {
                "bad.example": [Failure(FailureReason.PERMISSION_DENIED)],
                "good.example": [Success(5.0)] * 3,
            }
        )
        registry.add(make_host("bad"))
        registry.add(make_host("good"))

        async def scenario():
            registry.start_all()
            await wait_until(lambda: registry.snapshot("good").sent == 3)
            await wait_until(lambda: registry.state("bad") is MonitorState.FAULTED)
            assert registry.state("good") is not MonitorState.FAULTED
            await registry.shutdown()

        asyncio.run(scenario())


class TestHostRegistryReconfigure:
    def test_reconfigure_validates(self):
        registry, _ = make_registry()
        registry.add(make_host("gw"))

        with pytest.raises(ValueError, match="interval_ms must be positive"):
            registry.reconfigure("gw", interval_ms=0)
        assert registry.host("gw").interval_ms == 1.0

    def test_reconfigure_cannot_rename(self):
        registry, _ = make_registry()
        registry.add(make_host("gw"))
        with pytest.raises(ValueError, match="cannot be changed"):
            registry.reconfigure("gw", name="other")

    def test_reconfigure_idle_host_stays_idle(self):
        registry, _ = make_registry()
        registry.add(make_host("gw"))

        host = registry.reconfigure("gw", timeout_ms=250)

        assert host.timeout_ms == 250
        assert registry.host("gw") is host
        assert registry.state("gw") is MonitorState.IDLE

    def test_reconfigure_restarts_and_keeps_statistics(self):
        registry, probe = make_registry([Success(10.0)])
        registry.add(make_host("gw"))

        async def scenario():
            registry.start("gw")
            # Second probe is in flight when the settings change
            await wait_until(lambda: len(probe.calls) == 2)
            registry.reconfigure("gw", address="10.0.0.1")
            await wait_until(lambda: len(probe.calls) == 3)
            assert registry.state("gw") is MonitorState.PROBING
            await registry.shutdown()

        asyncio.run(scenario())

        assert [call[0] for call in probe.calls] == ["gw.example", "gw.example", "10.0.0.1"]
        assert registry.snapshot("gw").sent == 1
        assert registry.history("gw")[0].latency_ms == 10.0

    def test_reconfigure_clears_fault(self):
        registry, probe = make_registry([Failure(FailureReason.PERMISSION_DENIED), Success(1.0)])
        registry.add(make_host("gw"))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.state("gw") is MonitorState.FAULTED)
            registry.reconfigure("gw", address="10.0.0.2")
            await wait_until(lambda: registry.snapshot("gw").sent == 2)
            assert registry.fault("gw") is None
            await registry.shutdown()

        asyncio.run(scenario())



class TestHostRegistryReentrancy:
    """Consumers calling back into the registry from a signal slot."""

    def test_stop_from_snapshot_slot(self):
        registry, probe = make_registry([Success(10.0), Success(11.0)])
        registry.add(make_host("gw"))
        states = []
        registry.state_changed.connect(lambda host_id, state: states.append(state))
        registry.snapshot_ready.connect(lambda host_id, snap: registry.stop(host_id))

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.state("gw") is MonitorState.STOPPED)
            await registry.shutdown()

        asyncio.run(scenario())

        assert states == [
            MonitorState.SCHEDULING,
            MonitorState.PROBING,
            MonitorState.RECORDING,
            MonitorState.STOPPED,
        ]
        assert len(probe.calls) == 1
        assert registry.snapshot("gw").sent == 1

    def test_remove_from_snapshot_slot_on_permission_failure(self):
        registry, _ = make_registry([Failure(FailureReason.PERMISSION_DENIED, "not permitted")])
        registry.add(make_host("gw"))
        faults = []
        registry.fault_raised.connect(lambda host_id, fault: faults.append(fault))
        registry.snapshot_ready.connect(lambda host_id, snap: registry.remove(host_id))

        async def scenario():
            registry.start("gw")
            monitor = registry._entries["gw"].monitor
            await wait_until(lambda: "gw" not in registry)
            # Re-raises anything the loop raised after the removal
            await monitor.join()
            return monitor

        monitor = asyncio.run(scenario())

        assert monitor.state is MonitorState.STOPPED
        assert faults == []

    def test_restart_from_snapshot_slot_keeps_one_loop(self):
        registry, probe = make_registry([Success(10.0), Success(11.0)])
        registry.add(make_host("gw"))
        restarted = []

        def restart_once(host_id, snapshot):
            if not restarted:
                restarted.append(host_id)
                registry.stop(host_id)
                registry.start(host_id)

        registry.snapshot_ready.connect(restart_once)

        async def scenario():
            registry.start("gw")
            await wait_until(lambda: registry.snapshot("gw").sent == 2)
            await wait_until(lambda: len(probe.calls) == 3)
            await asyncio.sleep(0.02)
            await registry.shutdown()

        asyncio.run(scenario())

        assert restarted == ["gw"]
        assert len(probe.calls) == 3
