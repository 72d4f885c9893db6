"""Data models for PathMon hosts, probe outcomes and statistics."""

import ipaddress
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Payload bounds accepted by the echo transport (bytes of ICMP data)
MIN_PAYLOAD_SIZE = 16
MAX_PAYLOAD_SIZE = 1400


class PingMode(Enum):
    """Interval presets, in seconds."""

    VERY_FAST = 1
    FAST = 2
    NOT_FAST = 5
    NORMAL = 10
    NOT_SLOW = 30
    SLOW = 60
    VERY_SLOW = 300

    @property
    def interval_ms(self) -> float:
        return float(self.value * 1000)


class FailureReason(Enum):
    """Why a probe attempt did not produce a round-trip time."""

    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    PERMISSION_DENIED = "permission_denied"
    RESOLUTION_FAILED = "resolution_failed"
    OTHER = "other"


class MonitorState(Enum):
    """Lifecycle state of a host's probing loop."""

    IDLE = "idle"
    SCHEDULING = "scheduling"
    PROBING = "probing"
    RECORDING = "recording"
    STOPPED = "stopped"
    FAULTED = "faulted"


@dataclass(frozen=True)
class Success:
    """A probe that received its reply."""

    rtt_ms: float

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """A probe that produced no round-trip time."""

    reason: FailureReason
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False


ProbeOutcome = Success | Failure


@dataclass
class Host:
    """A monitored host and its probing parameters.

    Values are validated on construction so a bad configuration is rejected
    before any monitoring loop starts.
    """

    name: str
    address: str
    enabled: bool = True
    interval_ms: float = 1000.0
    timeout_ms: float = 1000.0
    min_payload: int = MIN_PAYLOAD_SIZE
    max_payload: int = 64

    def __post_init__(self):
        """Normalize names and reject invalid parameters."""
        self.name = self.name.strip() if self.name else ""
        self.address = self.address.strip() if self.address else ""

        if not self.name:
            raise ValueError("Host name cannot be empty")
        if not self.address:
            raise ValueError("Host address cannot be empty")
        if not math.isfinite(self.interval_ms) or self.interval_ms <= 0:
            raise ValueError("interval_ms must be positive and finite")
        if not math.isfinite(self.timeout_ms) or self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive and finite")
        if self.min_payload > self.max_payload:
            raise ValueError("min_payload must not exceed max_payload")
        if self.min_payload < MIN_PAYLOAD_SIZE or self.max_payload > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"payload sizes must lie within [{MIN_PAYLOAD_SIZE}, {MAX_PAYLOAD_SIZE}]"
            )

    @property
    def target(self) -> str:
        """Address handed to the transport (IPv6 brackets removed)."""
        if self.address.startswith("[") and self.address.endswith("]"):
            return self.address[1:-1]
        return self.address

    @property
    def is_local(self) -> bool:
        """True for private, loopback and link-local literal addresses.

        Hostnames are never considered local since that would need a lookup.
        """
        try:
            ip = ipaddress.ip_address(self.target)
        except ValueError:
            return False

        if ip.version == 4:
            return ip.is_private or ip.is_loopback or ip.is_link_local
        # fc00::/7 unique local addresses
        return ip.is_loopback or ip.is_link_local or (int(ip) >> 121) == 0x7E


@dataclass
class Sample:
    """A single probe result kept in a host's rolling history."""

    ts: datetime
    host: str
    latency_ms: float | None  # None indicates packet loss
    loss: bool
    reason: FailureReason | None = None

    def __post_init__(self):
        """Ensure consistency between latency_ms and loss fields."""
        if self.loss:
            self.latency_ms = None
        elif self.latency_ms is None:
            self.loss = True

        if not self.loss:
            self.reason = None
        elif self.reason is None:
            self.reason = FailureReason.OTHER

    @classmethod
    def from_outcome(cls, host: str, outcome: ProbeOutcome, ts: datetime | None = None):
        """Build a sample from a probe outcome."""
        if ts is None:
            ts = datetime.now()
        if isinstance(outcome, Success):
            return cls(ts=ts, host=host, latency_ms=outcome.rtt_ms, loss=False)
        return cls(ts=ts, host=host, latency_ms=None, loss=True, reason=outcome.reason)


@dataclass(frozen=True)
class StatsSnapshot:
    """Read-only view of a host's statistics after the latest sample.

    Latency aggregates cover the successful samples of the rolling window and
    are None while the window holds none. Lifetime counters (sent, lost,
    availability, outlier_count) survive window eviction.
    """

    count: int = 0
    window_size: int = 0
    last_rtt_ms: float | None = None
    mean_ms: float | None = None
    median_ms: float | None = None
    p95_ms: float | None = None
    stddev_ms: float | None = None
    min_ms: float | None = None
    max_ms: float | None = None
    jitter_ms: float | None = None
    jitter_mean_ms: float | None = None
    jitter_median_ms: float | None = None
    mos: float | None = None
    is_outlier: bool = False
    outlier_count: int = 0
    consecutive_losses: int = 0
    loss_ratio: float = 0.0
    sent: int = 0
    lost: int = 0
    availability: float = 0.0
    streak: int = 0
    streak_success: bool = False
    ts: datetime = field(default_factory=datetime.now)
