"""Tests for the console entry point."""

import asyncio

import pytest

import pathmon.__main__ as entry
from pathmon.config import Settings
from pathmon.fake_probe import FakeProbe
from pathmon.models import Host, StatsSnapshot
from pathmon.probe import PingProbe


def fake_settings(**kwargs):
    hosts = [
        Host(name="a", address="192.0.2.1", interval_ms=10.0, timeout_ms=500.0),
        Host(name="b", address="192.0.2.2", interval_ms=10.0, timeout_ms=500.0),
        Host(name="off", address="192.0.2.3", enabled=False),
    ]
    return Settings(hosts=hosts, probe="fake", seed=kwargs.pop("seed", 1), **kwargs)


class TestFormatSnapshot:
    def test_empty_snapshot(self):
        line = entry.format_snapshot("gw", StatsSnapshot())
        assert line == "gw: rtt=-- mean=-- p95=-- jitter=-- mos=-- loss=0.0%"

    def test_populated_snapshot(self):
        snapshot = StatsSnapshot(
            last_rtt_ms=12.34,
            mean_ms=10.0,
            p95_ms=15.06,
            jitter_ms=1.24,
            mos=4.39,
            loss_ratio=0.25,
            is_outlier=True,
        )
        line = entry.format_snapshot("gw", snapshot)
        assert line == "gw: rtt=12.3 mean=10.0 p95=15.1 jitter=1.2 mos=4.39 loss=25.0% OUTLIER"


class TestBuildProbe:
    def test_fake_requested(self):
        assert isinstance(entry.build_probe(fake_settings()), FakeProbe)

    def test_ping_available(self, monkeypatch):
        monkeypatch.setattr(entry.shutil, "which", lambda name: "/bin/ping")
        assert isinstance(entry.build_probe(Settings(probe="ping")), PingProbe)

    def test_falls_back_without_ping(self, monkeypatch, caplog):
        monkeypatch.setattr(entry.shutil, "which", lambda name: None)

        probe = entry.build_probe(Settings(probe="ping"))

        assert isinstance(probe, FakeProbe)
        assert "using simulated data" in caplog.text


class TestRun:
    def test_runs_until_stopped(self):
        async def scenario():
            stop_event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.3, stop_event.set)
            return await entry.run(fake_settings(), stop_event)

        snapshots = asyncio.run(scenario())

        assert set(snapshots) == {"a", "b", "off"}
        assert snapshots["a"].sent > 0
        assert snapshots["b"].sent > 0
        assert snapshots["off"].sent == 0

    def test_history_size_applied(self):
        async def scenario():
            stop_event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.3, stop_event.set)
            return await entry.run(fake_settings(history_size=2), stop_event)

        snapshots = asyncio.run(scenario())
        assert snapshots["a"].window_size <= 2


class TestMain:
    def test_invalid_configuration_exits(self, monkeypatch):
        monkeypatch.setattr(entry, "configure_logging", lambda: None)
        monkeypatch.setenv("PATHMON_PROBE", "carrier-pigeon")

        with pytest.raises(SystemExit) as exc_info:
            entry.main()

        assert exc_info.value.code == 2

    def test_keyboard_interrupt_is_clean(self, monkeypatch):
        monkeypatch.setattr(entry, "configure_logging", lambda: None)
        monkeypatch.setenv("PATHMON_PROBE", "fake")

        async def interrupted(settings):
            raise KeyboardInterrupt

        monkeypatch.setattr(entry, "run", interrupted)

        entry.main()  # Should not raise
