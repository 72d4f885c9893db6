"""Transport probes: one echo request per call, resolved to a ProbeOutcome."""

import asyncio
import logging
import math
import platform
import re
from typing import Protocol

from pathmon.models import Failure, FailureReason, ProbeOutcome, Success
from pathmon.shaper import clamp_payload_size

logger = logging.getLogger(__name__)

# Pattern 1: "time<Nms" (Windows fast response)
_LESS_THAN_PATTERN = re.compile(r"time<(\d+)", re.IGNORECASE)
# Pattern 2: "time=12.3 ms" or "time = 12 ms" (standard format)
_LATENCY_PATTERN = re.compile(r"time\s*[=<]\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)

_PERMISSION_MARKERS = ("operation not permitted", "permission denied", "access denied")
_RESOLUTION_MARKERS = (
    "unknown host",
    "name or service not known",
    "cannot resolve",
    "could not find host",
    "temporary failure in name resolution",
    "nodename nor servname",
    "no address associated with hostname",
)
_UNREACHABLE_MARKERS = ("unreachable",)
_TIMEOUT_MARKERS = ("request timed out", "100% packet loss", "100.0% packet loss")


class Probe(Protocol):
    """Protocol for echo-style transports.

    Implementations suspend only the calling task and never raise for
    transport failures; those are reported as Failure outcomes.
    """

    async def probe(self, address: str, timeout_ms: float, payload_size: int) -> ProbeOutcome:
        """Send one echo request and wait for its reply or the timeout."""
        ...


def parse_ping_latency_ms(output: str) -> float | None:
    """Extract the round-trip time of the first echo reply, in milliseconds.

    The first "time=N ms" field wins (iputils, BSD and Windows print it the
    same way). A Windows "time<Nms" bound yields N/2. Returns None for
    output with no reply line, e.g. timeouts, ICMP errors or localized text.
    """
    if not output:
        return None

    match = _LESS_THAN_PATTERN.search(output)
    if match:
        return float(match.group(1)) / 2.0

    match = _LATENCY_PATTERN.search(output)
    if match:
        try:
            return float(match.group(1))
        except (ValueError, IndexError):
            return None

    return None


def classify_ping_failure(output: str, returncode: int | None) -> FailureReason:
    """Classify a ping run that produced no usable round-trip time.

    Args:
        output: Combined stdout and stderr of the ping command
        returncode: Process exit status

    Returns:
        The most specific FailureReason the output supports
    """
    text = (output or "").lower()

    if any(marker in text for marker in _PERMISSION_MARKERS):
        return FailureReason.PERMISSION_DENIED
    if any(marker in text for marker in _RESOLUTION_MARKERS):
        return FailureReason.RESOLUTION_FAILED
    if any(marker in text for marker in _UNREACHABLE_MARKERS):
        return FailureReason.UNREACHABLE
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return FailureReason.TIMEOUT
    # iputils and BSD ping exit with 1 when no reply arrived
    if returncode == 1:
        return FailureReason.TIMEOUT
    return FailureReason.OTHER


class PingProbe:
    """Probe that runs the OS ping command as an asyncio subprocess.

    Cross-platform implementation supporting Windows, Linux, and macOS. No
    shared socket is held: every probe spawns its own process, so a single
    instance can serve all host tasks concurrently.

    **Localization Limitation:**
    Parsing relies on the English keyword "time" in ping output. On
    non-English systems the reply cannot be parsed and the probe is reported
    as a failure. Setting LANG=C for the process avoids this on Unix.
    """

    # Extra time allowed for process startup on top of the probe timeout
    SPAWN_GRACE_MS = 250.0

    def __init__(self, executable: str = "ping"):
        self.executable = executable
        self.system = platform.system()

        logger.debug("PingProbe initialized: executable=%s, system=%s", executable, self.system)

    async def probe(self, address: str, timeout_ms: float, payload_size: int) -> ProbeOutcome:
        """Send one ping to address and classify the result.

        Args:
            address: Target hostname or IP address
            timeout_ms: Maximum time to wait for the reply
            payload_size: ICMP data size in bytes

        Returns:
            Success with the measured RTT, or Failure with a reason
        """
        if not math.isfinite(timeout_ms) or timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive and finite")
        if not address or not address.strip():
            return Failure(FailureReason.RESOLUTION_FAILED, "empty address")

        cmd = self.build_command(address, timeout_ms, clamp_payload_size(payload_size))
        logger.debug("Executing ping: host=%s, timeout=%.0fms", address, timeout_ms)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except PermissionError as e:
            logger.warning("Ping not permitted: host=%s, error=%s", address, e)
            return Failure(FailureReason.PERMISSION_DENIED, str(e))
        except FileNotFoundError as e:
            logger.warning("Ping command unavailable: %s", e)
            return Failure(FailureReason.OTHER, str(e))
        except OSError as e:
            logger.warning("Ping error: host=%s, error=%s", address, e, exc_info=True)
            return Failure(FailureReason.OTHER, str(e))

        try:
            stdout, _ = await asyncio.wait_for(
                proc.communicate(),
                timeout=(timeout_ms + self.SPAWN_GRACE_MS) / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.debug("Ping timeout: host=%s, timeout=%.0fms", address, timeout_ms)
            return Failure(FailureReason.TIMEOUT, "no reply")
        finally:
            # Also runs when the calling task is cancelled mid-probe
            await self._reap(proc)

        output = stdout.decode(errors="replace") if stdout else ""
        logger.debug("Ping completed: host=%s, returncode=%s", address, proc.returncode)
        return self._outcome(address, output, proc.returncode, timeout_ms)

    def build_command(self, host: str, timeout_ms: float, payload_size: int) -> list[str]:
        """Build platform-specific ping command.

        Args:
            host: Target host to ping
            timeout_ms: Reply timeout in milliseconds
            payload_size: ICMP data size in bytes

        Returns:
            List of command arguments for subprocess
        """
        if self.system == "Windows":
            # Windows: ping -n count -w timeout_ms -l size host
            return [
                self.executable, "-n", "1", "-w", str(int(math.ceil(timeout_ms))),
                "-l", str(payload_size), host,
            ]

        elif self.system == "Linux":
            # Linux: ping -c count -W timeout_seconds -s size host
            timeout_secs = max(1, math.ceil(timeout_ms / 1000.0))
            return [
                self.executable, "-n", "-c", "1", "-W", str(timeout_secs),
                "-s", str(payload_size), host,
            ]

        else:
            # macOS/BSD: -W has different semantics, rely on the asyncio timeout
            return [self.executable, "-n", "-c", "1", "-s", str(payload_size), host]

    def _outcome(self, address: str, output: str, returncode: int | None, timeout_ms: float):
        if returncode == 0:
            latency = parse_ping_latency_ms(output)
            if latency is None:
                logger.debug(
                    "Parse failed: host=%s, output_preview=%s",
                    address,
                    output[:100] if output else "(empty)",
                )
                # Windows ping exits 0 for ICMP errors relayed by a router
                reason = classify_ping_failure(output, returncode)
                if reason is FailureReason.OTHER:
                    return Failure(FailureReason.OTHER, "unparsable ping output")
                return Failure(reason, output.strip()[:200])
            if latency > timeout_ms:
                return Failure(FailureReason.TIMEOUT, f"reply after {latency:.1f}ms")
            return Success(latency)

        reason = classify_ping_failure(output, returncode)
        logger.debug("Ping failed: host=%s, returncode=%s, reason=%s", address, returncode, reason.value)
        return Failure(reason, output.strip()[:200])

    @staticmethod
    async def _reap(proc):
        """Kill the ping process if it is still running and wait for it."""
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await asyncio.shield(proc.wait())
