"""Simulated probes for PathMon testing and offline runs."""

import asyncio
import random

from pathmon.models import Failure, FailureReason, ProbeOutcome, Success


class FakeProbe:
    """Generates simulated round trips with jitter, spikes and loss."""

    def __init__(self, seed: int | None = None):
        """Initialize with optional random seed for deterministic behavior."""
        # Isolated random instance, shared by all host tasks on one loop
        self._random = random.Random(seed)

        # Simulation parameters
        self.base_latency = 25.0  # Base latency in ms
        self.latency_variance = 5.0  # Normal variance
        self.spike_probability = 0.05  # 5% chance of latency spike
        self.spike_multiplier = 3.0  # Spike makes latency 3x higher
        self.loss_probability = 0.02  # 2% chance of packet loss
        self.time_scale = 1.0  # Fraction of the simulated RTT actually slept

    def next_outcome(self, timeout_ms: float) -> ProbeOutcome:
        """Draw the next simulated outcome without sleeping."""
        if self._random.random() < self.loss_probability:
            return Failure(FailureReason.TIMEOUT, "simulated loss")

        if self._random.random() < self.spike_probability:
            latency = self.base_latency * self.spike_multiplier + self._random.gauss(
                0, self.latency_variance
            )
        else:
            latency = self.base_latency + self._random.gauss(0, self.latency_variance)

        latency = round(max(0.1, latency), 2)
        if latency > timeout_ms:
            return Failure(FailureReason.TIMEOUT, "simulated late reply")
        return Success(latency)

    async def probe(self, address: str, timeout_ms: float, payload_size: int) -> ProbeOutcome:
        """Simulate one probe, sleeping for the simulated round trip."""
        if not address or not address.strip():
            return Failure(FailureReason.RESOLUTION_FAILED, "empty address")

        outcome = self.next_outcome(timeout_ms)
        elapsed_ms = outcome.rtt_ms if isinstance(outcome, Success) else timeout_ms
        await asyncio.sleep(elapsed_ms * self.time_scale / 1000.0)
        return outcome


class ScriptedProbe:
    """Replays a fixed sequence of outcomes, then blocks until cancelled.

    Useful to drive a monitor through an exact scenario: once the script is
    exhausted, the next call stays in flight forever.
    """

    def __init__(self, outcomes=()):
        self._outcomes = list(outcomes)
        self.calls = []  # (address, timeout_ms, payload_size) per call
        self.exhausted = asyncio.Event()

    async def probe(self, address: str, timeout_ms: float, payload_size: int) -> ProbeOutcome:
        self.calls.append((address, timeout_ms, payload_size))
        if not self._outcomes:
            self.exhausted.set()
            await asyncio.Event().wait()

        outcome = self._outcomes.pop(0)
        if not self._outcomes:
            self.exhausted.set()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome
