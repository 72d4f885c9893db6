"""Entry point for PathMon: headless console monitor."""

import asyncio
import itertools
import logging
import shutil
import sys

from pathmon.config import Settings, load_settings
from pathmon.fake_probe import FakeProbe
from pathmon.logging_config import configure_logging
from pathmon.models import StatsSnapshot
from pathmon.probe import PingProbe
from pathmon.registry import HostRegistry
from pathmon.shaper import TrafficShaper

logger = logging.getLogger(__name__)


def _ms(value: float | None) -> str:
    return "--" if value is None else f"{value:.1f}"


def format_snapshot(host_id: str, snapshot: StatsSnapshot) -> str:
    """Render a one-line summary of a host's statistics."""
    mos = "--" if snapshot.mos is None else f"{snapshot.mos:.2f}"
    flag = " OUTLIER" if snapshot.is_outlier else ""
    return (
        f"{host_id}: rtt={_ms(snapshot.last_rtt_ms)} mean={_ms(snapshot.mean_ms)} "
        f"p95={_ms(snapshot.p95_ms)} jitter={_ms(snapshot.jitter_ms)} mos={mos} "
        f"loss={snapshot.loss_ratio * 100:.1f}%{flag}"
    )


def build_probe(settings: Settings):
    """Select the probe transport, falling back to the simulated one."""
    if settings.probe == "fake":
        logger.info("Using FakeProbe (PATHMON_PROBE=fake)")
        return FakeProbe(seed=settings.seed)

    if shutil.which("ping") is None:
        logger.warning("Ping command unavailable, using simulated data")
        return FakeProbe(seed=settings.seed)

    logger.info("PingProbe initialized successfully")
    return PingProbe()


async def run(settings: Settings, stop_event: asyncio.Event | None = None):
    """Monitor all configured hosts until stop_event is set."""
    if stop_event is None:
        stop_event = asyncio.Event()

    # Distinct seeds so seeded hosts do not share a delay sequence
    seeds = itertools.count(settings.seed) if settings.seed is not None else None

    def shaper_for(host):
        return TrafficShaper.for_host(host, seed=next(seeds) if seeds is not None else None)

    registry = HostRegistry(
        build_probe(settings),
        history_size=settings.history_size,
        shaper_factory=shaper_for,
    )
    registry.snapshot_ready.connect(lambda host_id, snap: logger.info("%s", format_snapshot(host_id, snap)))
    registry.fault_raised.connect(
        lambda host_id, fault: logger.error("Host %s faulted: %s", host_id, fault)
    )

    for host in settings.hosts:
        registry.add(host)
    registry.start_all()

    try:
        await stop_event.wait()
    finally:
        await registry.shutdown()

    return {h.name: registry.snapshot(h.name) for h in registry.hosts()}


def main():
    """Main entry point for the PathMon application."""
    configure_logging()

    try:
        settings = load_settings()
    except ValueError as e:
        logger.error("Configuration invalid: %s", e)
        sys.exit(2)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
