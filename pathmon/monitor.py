"""Per-host probing loop running as an asyncio task."""

import asyncio
import logging
from typing import Callable

from pathmon.models import Failure, FailureReason, Host, MonitorState, StatsSnapshot
from pathmon.probe import Probe
from pathmon.shaper import TrafficShaper
from pathmon.stats import StatsEngine

logger = logging.getLogger(__name__)


class HostMonitor:
    """Drives one host through Scheduling -> Probing -> Recording.

    The loop is strictly sequential, so the host's StatsEngine has a single
    writer and needs no locking. Sleeping and waiting for the probe are the
    only suspension points; recording is synchronous.

    Ordinary probe failures are recorded as samples and the loop continues.
    A permission failure moves the monitor to FAULTED and ends the loop
    until it is started again.
    """

    def __init__(
        self,
        host: Host,
        probe: Probe,
        shaper: TrafficShaper,
        engine: StatsEngine,
        on_snapshot: Callable[[str, StatsSnapshot], None] | None = None,
        on_state: Callable[[str, MonitorState], None] | None = None,
        on_fault: Callable[[str, str], None] | None = None,
    ):
        self.host = host
        self.probe = probe
        self.shaper = shaper
        self.engine = engine
        self.on_snapshot = on_snapshot
        self.on_state = on_state
        self.on_fault = on_fault

        self.state = MonitorState.IDLE
        self.fault: str | None = None
        self._task: asyncio.Task | None = None
        self._stopping = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopping

    def start(self):
        """Start the probing loop on the running event loop (idempotent)."""
        if self.is_running:
            return

        self.fault = None
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"pathmon-{self.host.name}"
        )
        logger.info(
            "Monitor started: host=%s, address=%s, interval=%.0fms",
            self.host.name,
            self.host.address,
            self.host.interval_ms,
        )

    def stop(self):
        """Cancel the loop at its current suspension point (idempotent)."""
        if not self.is_running:
            return

        self._stopping = True
        self._task.cancel()
        self._set_state(MonitorState.STOPPED)
        logger.info("Monitor stopped: host=%s", self.host.name)

    async def join(self):
        """Wait for the loop task to finish.

        Cancelling the caller does not cancel the loop. Errors other than the
        loop's own cancellation are re-raised.
        """
        if self._task is None:
            return
        await asyncio.wait({self._task})
        if not self._task.cancelled():
            self._task.result()

    async def _run(self):
        host = self.host
        try:
            while True:
                self._set_state(MonitorState.SCHEDULING)
                delay_ms = self.shaper.next_delay(host.interval_ms)
                payload_size = self.shaper.next_payload_size()
                await asyncio.sleep(delay_ms / 1000.0)

                self._set_state(MonitorState.PROBING)
                try:
                    outcome = await self.probe.probe(host.target, host.timeout_ms, payload_size)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception("Probe raised: host=%s, error=%s", host.name, e)
                    outcome = Failure(FailureReason.OTHER, str(e))

                self._set_state(MonitorState.RECORDING)
                snapshot = self.engine.record(outcome)
                logger.debug(
                    "Recorded: host=%s, ok=%s, rtt=%s, payload=%d",
                    host.name,
                    outcome.ok,
                    snapshot.last_rtt_ms,
                    payload_size,
                )
                if self.on_snapshot is not None:
                    self.on_snapshot(host.name, snapshot)
                    # The callback may have stopped or replaced this loop
                    if self._stopping or asyncio.current_task() is not self._task:
                        return

                if isinstance(outcome, Failure) and outcome.reason is FailureReason.PERMISSION_DENIED:
                    self.fault = outcome.detail or "permission denied"
                    logger.warning("Monitor faulted: host=%s, fault=%s", host.name, self.fault)
                    self._set_state(MonitorState.FAULTED)
                    if self.on_fault is not None:
                        self.on_fault(host.name, self.fault)
                    return
        except asyncio.CancelledError:
            # A replaced loop must not overwrite its successor's state
            if asyncio.current_task() is self._task:
                self._set_state(MonitorState.STOPPED)
            raise

    def _set_state(self, state: MonitorState):
        if state is self.state:
            return
        if self._stopping and state is not MonitorState.STOPPED:
            return
        self.state = state
        if self.on_state is not None:
            self.on_state(self.host.name, state)
