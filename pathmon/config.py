"""Environment-based configuration for the PathMon entry point."""

import logging
import math
import os
from dataclasses import dataclass, field

from pathmon.models import MIN_PAYLOAD_SIZE, Host, PingMode
from pathmon.stats import DEFAULT_HISTORY_SIZE

logger = logging.getLogger(__name__)

DEFAULT_HOSTS = "Cloudflare=1.1.1.1,Google=8.8.8.8"
PROBE_KINDS = ("ping", "fake")


@dataclass
class Settings:
    """Validated runtime settings."""

    hosts: list[Host] = field(default_factory=list)
    probe: str = "ping"
    history_size: int = DEFAULT_HISTORY_SIZE
    seed: int | None = None


def _number(environ, key: str, default: float) -> float:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if not math.isfinite(value):
        raise ValueError(f"{key} must be a finite number, got {raw!r}")
    return value


def parse_payload(raw: str) -> tuple[int, int]:
    """Parse a payload range such as "16-64" or a single size "32"."""
    raw = raw.strip()
    lo, sep, hi = raw.partition("-")
    try:
        min_size = int(lo)
        max_size = int(hi) if sep else min_size
    except ValueError:
        raise ValueError(f"Invalid payload range: {raw!r}") from None
    return min_size, max_size


def parse_hosts(raw: str, **host_kwargs) -> list[Host]:
    """Parse a comma-separated host list.

    Each item is either "name=address" or a bare address used as its own
    name. Duplicate names are rejected.

    Args:
        raw: Host list, e.g. "Gateway=192.168.1.1,8.8.8.8"
        **host_kwargs: Extra Host fields applied to every host

    Returns:
        List of validated Host objects
    """
    hosts = []
    seen = set()
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, address = item.partition("=")
        if not sep:
            name, address = item, item
        host = Host(name=name, address=address, **host_kwargs)
        if host.name in seen:
            raise ValueError(f"Duplicate host name: {host.name}")
        seen.add(host.name)
        hosts.append(host)
    return hosts


def load_settings(environ=None) -> Settings:
    """Build Settings from environment variables.

    Environment Variables:
        PATHMON_HOSTS: Comma-separated "name=address" items
        PATHMON_MODE: Interval preset (e.g. "normal", "very_fast")
        PATHMON_INTERVAL_MS: Base probe interval, ignored when a mode is set
        PATHMON_TIMEOUT_MS: Probe timeout
        PATHMON_PAYLOAD: Payload size range, "min-max" or a single size
        PATHMON_HISTORY: Rolling window size per host
        PATHMON_PROBE: "ping" (default) or "fake"
        PATHMON_SEED: Random seed for shaping and the fake probe

    Raises:
        ValueError: If any value is invalid
    """
    if environ is None:
        environ = os.environ

    mode_name = environ.get("PATHMON_MODE", "").strip()
    if mode_name:
        try:
            interval_ms = PingMode[mode_name.upper()].interval_ms
        except KeyError:
            valid = ", ".join(m.name.lower() for m in PingMode)
            raise ValueError(f"Unknown PATHMON_MODE {mode_name!r} (valid: {valid})") from None
    else:
        interval_ms = _number(environ, "PATHMON_INTERVAL_MS", 1000.0)

    timeout_ms = _number(environ, "PATHMON_TIMEOUT_MS", 1000.0)
    min_payload, max_payload = parse_payload(environ.get("PATHMON_PAYLOAD", "") or f"{MIN_PAYLOAD_SIZE}-64")

    hosts = parse_hosts(
        environ.get("PATHMON_HOSTS", "") or DEFAULT_HOSTS,
        interval_ms=interval_ms,
        timeout_ms=timeout_ms,
        min_payload=min_payload,
        max_payload=max_payload,
    )

    probe = environ.get("PATHMON_PROBE", "ping").strip().lower() or "ping"
    if probe not in PROBE_KINDS:
        raise ValueError(f"PATHMON_PROBE must be one of {PROBE_KINDS}, got {probe!r}")

    history_size = int(_number(environ, "PATHMON_HISTORY", DEFAULT_HISTORY_SIZE))
    if history_size <= 0:
        raise ValueError("PATHMON_HISTORY must be positive")

    seed_raw = environ.get("PATHMON_SEED", "").strip()
    seed = int(_number(environ, "PATHMON_SEED", 0)) if seed_raw else None

    settings = Settings(hosts=hosts, probe=probe, history_size=history_size, seed=seed)
    logger.debug(
        "Settings loaded: hosts=%d, probe=%s, interval=%.0fms, timeout=%.0fms",
        len(hosts),
        probe,
        interval_ms,
        timeout_ms,
    )
    return settings
