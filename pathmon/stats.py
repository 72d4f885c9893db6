"""Rolling latency statistics, RFC 3550 jitter, MOS and outlier detection."""

import logging
import statistics
from collections import deque

from pathmon.models import ProbeOutcome, Sample, StatsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 300

# Outliers need a baseline of at least this many successful samples
MIN_OUTLIER_SAMPLES = 2
OUTLIER_SIGMA = 3.0

# RFC 3550 smoothing gain
JITTER_GAIN = 1.0 / 16.0


def calculate_percentile(values, percentile: float) -> float:
    """Return a linearly interpolated percentile of values.

    Args:
        values: Iterable of numbers (need not be sorted)
        percentile: Percentile in [0, 100]

    Returns:
        Interpolated value, or 0.0 for an empty input
    """
    ordered = sorted(values)
    if not ordered:
        return 0.0

    pos = (percentile / 100.0) * (len(ordered) - 1)
    base = int(pos)
    fraction = pos - base
    if base + 1 < len(ordered):
        return ordered[base] + fraction * (ordered[base + 1] - ordered[base])
    return ordered[base]


def r_factor(rtt_ms: float, jitter_ms: float, loss_pct: float) -> float:
    """Simplified E-model transmission rating, clamped to [0, 100].

    Effective latency is the RTT plus twice the jitter plus 10 ms of codec
    delay. Latency costs 1 point per 40 ms up to 160 ms and 1 point per
    10 ms beyond; each percent of loss costs 2.5 points.
    """
    effective_latency = rtt_ms + jitter_ms * 2.0 + 10.0

    if effective_latency < 160.0:
        r = 94.2 - effective_latency / 40.0
    else:
        r = 94.2 - (effective_latency - 120.0) / 10.0

    r -= loss_pct * 2.5
    return max(0.0, min(100.0, r))


def mos_from_r_factor(r: float) -> float:
    """Map an R-factor to a Mean Opinion Score in [1.0, 4.5].

    The ITU-T G.107 polynomial dips below 1.0 for R under ~6.5, so the
    result is floored at 1.0, which keeps the mapping non-decreasing.
    """
    if r <= 0.0:
        return 1.0
    if r >= 100.0:
        return 4.5
    mos = 1.0 + 0.035 * r + 0.000007 * r * (r - 60.0) * (100.0 - r)
    return max(1.0, min(4.5, mos))


def calculate_mos(rtt_ms: float, jitter_ms: float, loss_pct: float) -> float:
    """Estimate voice-call MOS from RTT, jitter and loss percentage."""
    return mos_from_r_factor(r_factor(rtt_ms, jitter_ms, loss_pct))


class StatsEngine:
    """Per-host statistics over a bounded window of recent samples.

    Single writer: only the host's monitor calls record(). Each call returns
    a fresh immutable StatsSnapshot, so readers never see a partial update.
    """

    def __init__(self, host: str = "", capacity: int = DEFAULT_HISTORY_SIZE):
        """Initialize engine.

        Args:
            host: Host identifier stamped on recorded samples
            capacity: Maximum number of samples in the rolling window
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")

        self.host = host
        self.capacity = capacity
        self.reset()

    def reset(self):
        """Discard all samples and counters."""
        self._window = deque(maxlen=self.capacity)
        self._jitter_history = deque(maxlen=self.capacity)
        self._jitter = None
        self._last_rtt = None
        self._consecutive_losses = 0
        self._outlier_count = 0
        self._sent = 0
        self._lost = 0
        self._streak = 0
        self._streak_success = False
        self._snapshot = StatsSnapshot()

    def current(self) -> StatsSnapshot:
        """Return the latest snapshot."""
        return self._snapshot

    def history(self) -> tuple:
        """Return the rolling window, oldest sample first."""
        return tuple(self._window)

    def record(self, outcome: ProbeOutcome) -> StatsSnapshot:
        """Record one probe outcome and return the updated snapshot."""
        sample = Sample.from_outcome(self.host, outcome)
        self._sent += 1
        is_outlier = False

        if sample.loss:
            self._lost += 1
            self._consecutive_losses += 1
            self._bump_streak(success=False)
        else:
            rtt = sample.latency_ms
            self._consecutive_losses = 0
            self._bump_streak(success=True)

            # Baseline is the window before this sample is inserted
            is_outlier = self._is_outlier(rtt)
            if is_outlier:
                self._outlier_count += 1
                logger.debug("Outlier: host=%s, rtt=%.2fms", self.host, rtt)

            self._update_jitter(rtt)
            self._last_rtt = rtt

        self._window.append(sample)
        self._snapshot = self._build_snapshot(sample, is_outlier)
        return self._snapshot

    def _bump_streak(self, success: bool):
        if self._streak and self._streak_success == success:
            self._streak += 1
        else:
            self._streak = 1
            self._streak_success = success

    def _rtts(self) -> list[float]:
        return [s.latency_ms for s in self._window if not s.loss]

    def _is_outlier(self, rtt: float) -> bool:
        prior = self._rtts()
        if len(prior) < MIN_OUTLIER_SAMPLES:
            return False
        mean = statistics.fmean(prior)
        stddev = statistics.pstdev(prior, mean)
        return abs(rtt - mean) > OUTLIER_SIGMA * stddev

    def _update_jitter(self, rtt: float):
        """Update the RFC 3550 interarrival jitter estimator.

        With a fixed send schedule the transit difference between two
        successive probes, |Δreceive − Δsend|, reduces to the RTT difference.
        """
        if self._last_rtt is None:
            return

        d = abs(rtt - self._last_rtt)
        if self._jitter is None:
            self._jitter = d
        else:
            self._jitter += (d - self._jitter) * JITTER_GAIN
        self._jitter_history.append(self._jitter)

    def _build_snapshot(self, sample: Sample, is_outlier: bool) -> StatsSnapshot:
        rtts = self._rtts()
        window_size = len(self._window)
        window_losses = window_size - len(rtts)
        loss_ratio = window_losses / window_size if window_size else 0.0
        availability = (self._sent - self._lost) / self._sent * 100.0 if self._sent else 0.0

        jitter_mean = jitter_median = None
        if self._jitter_history:
            jitter_mean = statistics.fmean(self._jitter_history)
            jitter_median = statistics.median(self._jitter_history)

        mean = median = p95 = stddev = low = high = None
        if rtts:
            mean = statistics.fmean(rtts)
            median = statistics.median(rtts)
            p95 = calculate_percentile(rtts, 95.0)
            stddev = statistics.pstdev(rtts, mean) if len(rtts) > 1 else 0.0
            low = min(rtts)
            high = max(rtts)

        mos = calculate_mos(
            mean if mean is not None else 0.0,
            self._jitter if self._jitter is not None else 0.0,
            loss_ratio * 100.0,
        )

        return StatsSnapshot(
            count=len(rtts),
            window_size=window_size,
            last_rtt_ms=sample.latency_ms,
            mean_ms=mean,
            median_ms=median,
            p95_ms=p95,
            stddev_ms=stddev,
            min_ms=low,
            max_ms=high,
            jitter_ms=self._jitter,
            jitter_mean_ms=jitter_mean,
            jitter_median_ms=jitter_median,
            mos=mos,
            is_outlier=is_outlier,
            outlier_count=self._outlier_count,
            consecutive_losses=self._consecutive_losses,
            loss_ratio=loss_ratio,
            sent=self._sent,
            lost=self._lost,
            availability=availability,
            streak=self._streak,
            streak_success=self._streak_success,
            ts=sample.ts,
        )
