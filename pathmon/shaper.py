"""Traffic shaping: randomized probe timing and payload size."""

import math
import random

from pathmon.models import MAX_PAYLOAD_SIZE, MIN_PAYLOAD_SIZE


class TrafficShaper:
    """Randomizes delay and payload size so probes have no fixed signature.

    Every call is an independent uniform draw. Each shaper owns its own
    random generator so hosts never share generator state.
    """

    def __init__(
        self,
        min_size: int = MIN_PAYLOAD_SIZE,
        max_size: int = MIN_PAYLOAD_SIZE,
        spread: float = 0.10,
        seed: int | None = None,
    ):
        """Initialize shaper.

        Args:
            min_size: Smallest payload size in bytes
            max_size: Largest payload size in bytes
            spread: Maximum relative deviation of the delay (0.10 = ±10%)
            seed: Optional random seed for deterministic behavior
        """
        if min_size <= 0 or max_size <= 0:
            raise ValueError("payload sizes must be positive")
        if min_size > max_size:
            raise ValueError("min_size must not exceed max_size")
        if not 0 <= spread < 1:
            raise ValueError("spread must be within [0, 1)")

        self.min_size = min_size
        self.max_size = max_size
        self.spread = spread
        self._random = random.Random(seed)

    @classmethod
    def for_host(cls, host, seed: int | None = None) -> "TrafficShaper":
        """Build a shaper using a host's payload bounds."""
        return cls(min_size=host.min_payload, max_size=host.max_payload, seed=seed)

    def next_delay(self, base_interval_ms: float) -> float:
        """Return the next delay in milliseconds, within ±spread of the base."""
        if not math.isfinite(base_interval_ms) or base_interval_ms <= 0:
            raise ValueError("base_interval_ms must be positive and finite")
        u = self._random.uniform(-self.spread, self.spread)
        low = base_interval_ms * (1.0 - self.spread)
        high = base_interval_ms * (1.0 + self.spread)
        return min(high, max(low, base_interval_ms * (1.0 + u)))

    def next_payload_size(self) -> int:
        """Return the next payload size in bytes, within [min_size, max_size]."""
        return self._random.randint(self.min_size, self.max_size)


def clamp_payload_size(size: int) -> int:
    """Clamp a payload size to what the echo transport accepts."""
    return max(MIN_PAYLOAD_SIZE, min(MAX_PAYLOAD_SIZE, size))
