"""Connectivity probe: short trial ffmpeg run against a source address."""

from __future__ import annotations

import logging
import subprocess
import time

from ffmpeg_command import build_probe_cmd, get_settings
from stream_errors import FailureReason, ProbeFailed, classify_failure, last_lines


log = logging.getLogger(__name__)

_DEFAULT_PROBE_TIMEOUT_SEC = 5.0


def get_probe_timeout() -> float:
    """Get probe timeout in seconds."""
    return float(get_settings().get("probe_timeout_secs", _DEFAULT_PROBE_TIMEOUT_SEC))


def probe(
    source_address: str,
    timeout_sec: float | None = None,
    cmd: list[str] | None = None,
) -> None:
    """Check that the source can be opened and decoded. Raises ProbeFailed.

    Does not touch the HLS output or any running session.
    """
    if not source_address:
        raise ProbeFailed(FailureReason.UNKNOWN, "source address is required")
    timeout = timeout_sec if timeout_sec is not None else get_probe_timeout()
    cmd = cmd or build_probe_cmd(source_address)
    log.info("Probing %s: %s", source_address, " ".join(cmd))

    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            check=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log.warning("Probe of %s timed out after %.1fs", source_address, timeout)
        raise ProbeFailed(FailureReason.TIMEOUT, f"no result within {timeout:g}s") from None
    except OSError as e:
        log.warning("Probe of %s could not run ffmpeg: %s", source_address, e)
        raise ProbeFailed(FailureReason.UNKNOWN, str(e)) from e

    if result.returncode != 0:
        lines = (result.stderr or "").splitlines()
        reason = classify_failure(result.returncode, lines)
        detail = last_lines(lines) or f"exit code {result.returncode}"
        log.warning(
            "Probe of %s failed (%s, exit %d): %s",
            source_address,
            reason.value,
            result.returncode,
            detail,
        )
        raise ProbeFailed(reason, detail)

    log.info("Probe of %s passed in %.1fs", source_address, time.monotonic() - start)
