"""Host registry: ordered hosts with one monitor and statistics engine each."""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable

from PySide6.QtCore import QObject, Signal

from pathmon.models import Host, MonitorState, Sample, StatsSnapshot
from pathmon.monitor import HostMonitor
from pathmon.probe import Probe
from pathmon.shaper import TrafficShaper
from pathmon.stats import DEFAULT_HISTORY_SIZE, StatsEngine

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    host: Host
    engine: StatsEngine
    monitor: HostMonitor | None = None


class HostRegistry(QObject):
    """Owns the monitored hosts and controls their monitors.

    Key features:
    - Ordered host list (order is presentation-only)
    - At most one running monitor per host; start/stop are idempotent
    - Removing a host discards its statistics
    - Snapshot and state changes are published as Qt signals

    All methods must be called from the thread running the asyncio loop.
    """

    # Signals
    snapshot_ready = Signal(str, object)  # (host name, StatsSnapshot)
    state_changed = Signal(str, object)  # (host name, MonitorState)
    fault_raised = Signal(str, str)  # (host name, fault message)

    def __init__(
        self,
        probe: Probe,
        history_size: int = DEFAULT_HISTORY_SIZE,
        shaper_factory: Callable[[Host], TrafficShaper] | None = None,
        parent=None,
    ):
        """Initialize registry.

        Args:
            probe: Transport shared by all host monitors
            history_size: Rolling window capacity of each host's statistics
            shaper_factory: Builds a TrafficShaper for a host
                            (default: TrafficShaper.for_host)
            parent: Qt parent object
        """
        super().__init__(parent)

        if history_size <= 0:
            raise ValueError("history_size must be positive")

        self.probe = probe
        self.history_size = history_size
        self.shaper_factory = shaper_factory or TrafficShaper.for_host

        self._entries: dict[str, _Entry] = {}
        self._order: list[str] = []

    def add(self, host: Host) -> bool:
        """Add a host to the registry.

        Args:
            host: Host to add (a host with an existing name is ignored)

        Returns:
            True if the host was added
        """
        if host.name in self._entries:
            logger.debug("Host already registered: %s", host.name)
            return False

        self._entries[host.name] = _Entry(
            host=host, engine=StatsEngine(host.name, capacity=self.history_size)
        )
        self._order.append(host.name)
        logger.debug("Host added: %s (total: %d)", host.name, len(self._order))
        return True

    def remove(self, host_id: str):
        """Stop a host's monitor and discard the host and its statistics."""
        entry = self._entries.pop(host_id, None)
        if entry is None:
            return

        if entry.monitor is not None:
            entry.monitor.stop()
        self._order.remove(host_id)
        logger.debug("Host removed: %s (remaining: %d)", host_id, len(self._order))

    def reorder(self, host_id: str, index: int):
        """Move a host to a new position in the display order."""
        self._entry(host_id)
        index = max(0, min(index, len(self._order) - 1))
        self._order.remove(host_id)
        self._order.insert(index, host_id)

    def hosts(self) -> list[Host]:
        """Get all hosts in display order."""
        return [self._entries[name].host for name in self._order]

    def host(self, host_id: str) -> Host:
        return self._entry(host_id).host

    def __contains__(self, host_id):
        return host_id in self._entries

    def __len__(self):
        return len(self._order)

    def start(self, host_id: str):
        """Start monitoring a host; restarts a faulted host, no-op if running."""
        entry = self._entry(host_id)
        if entry.monitor is not None and entry.monitor.is_running:
            return

        entry.monitor = HostMonitor(
            entry.host,
            self.probe,
            self.shaper_factory(entry.host),
            entry.engine,
            on_snapshot=self._on_snapshot,
            on_state=self._on_state,
            on_fault=self._on_fault,
        )
        entry.monitor.start()

    def stop(self, host_id: str):
        """Stop monitoring a host; no-op if it is not running."""
        entry = self._entry(host_id)
        if entry.monitor is not None:
            entry.monitor.stop()

    def start_all(self):
        """Start every enabled host."""
        for name in self._order:
            if self._entries[name].host.enabled:
                self.start(name)
        logger.info("Monitoring started: %d hosts", len(self._order))

    def stop_all(self):
        """Stop every host."""
        for name in self._order:
            self.stop(name)

    async def shutdown(self):
        """Stop every host and wait for their loops to finish."""
        monitors = [e.monitor for e in self._entries.values() if e.monitor is not None]
        for monitor in monitors:
            monitor.stop()
        for monitor in monitors:
            await monitor.join()
        logger.info("Monitoring stopped")

    def reconfigure(self, host_id: str, **changes) -> Host:
        """Replace a host's settings, keeping its statistics.

        The new values are validated before anything changes. A running or
        faulted monitor is restarted with the new settings.

        Returns:
            The updated Host
        """
        entry = self._entry(host_id)
        if "name" in changes and changes["name"] != host_id:
            raise ValueError("Host name cannot be changed by reconfigure")

        new_host = dataclasses.replace(entry.host, **changes)
        restart = entry.monitor is not None and (
            entry.monitor.is_running or entry.monitor.state is MonitorState.FAULTED
        )

        if entry.monitor is not None:
            entry.monitor.stop()
            entry.monitor = None
        entry.host = new_host
        logger.debug("Host reconfigured: %s", host_id)

        if restart and new_host.enabled:
            self.start(host_id)
        return new_host

    def snapshot(self, host_id: str) -> StatsSnapshot:
        return self._entry(host_id).engine.current()

    def history(self, host_id: str) -> tuple[Sample, ...]:
        return self._entry(host_id).engine.history()

    def state(self, host_id: str) -> MonitorState:
        monitor = self._entry(host_id).monitor
        return monitor.state if monitor is not None else MonitorState.IDLE

    def fault(self, host_id: str) -> str | None:
        monitor = self._entry(host_id).monitor
        return monitor.fault if monitor is not None else None

    def _entry(self, host_id: str) -> _Entry:
        try:
            return self._entries[host_id]
        except KeyError:
            raise KeyError(f"Unknown host: {host_id}") from None

    def _on_snapshot(self, host_id: str, snapshot: StatsSnapshot):
        self.snapshot_ready.emit(host_id, snapshot)

    def _on_state(self, host_id: str, state: MonitorState):
        self.state_changed.emit(host_id, state)

    def _on_fault(self, host_id: str, fault: str):
        self.fault_raised.emit(host_id, fault)
