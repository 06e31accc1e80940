"""FFmpeg live session lifecycle management.

One live session at a time. All phase transitions happen under ``_lock``;
start/stop sequences are additionally serialized by ``_control_lock`` so a
replace (teardown then launch) is never interleaved with another one.
Process events arrive from a per-session monitor thread and are dropped
when they belong to a session that is no longer current.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import collections
import enum
import logging
import pathlib
import subprocess
import threading
import time
import uuid

from ffmpeg_command import build_hls_ffmpeg_cmd
from output_sink import OutputSink
from quality import QualityProfile, resolve
from stream_errors import (
    InvalidSourceAddress,
    LaunchFailed,
    RuntimeFailure,
    classify_failure,
    last_lines,
)


log = logging.getLogger(__name__)

# Timing constants
_STOP_GRACE_SEC = 2.0  # SIGTERM -> SIGKILL
_KILL_WAIT_SEC = 3.0  # extra wait for the kill to be reaped

_STDERR_TAIL_LINES = 50
_STDERR_ERROR_WORDS = ("error", "failed", "invalid", "refused")

BuildCmd = Callable[[str, QualityProfile, pathlib.Path], list[str]]


class Phase(str, enum.Enum):
    IDLE = "Idle"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    FAILED = "Failed"


_ACTIVE_PHASES = frozenset({Phase.STARTING, Phase.RUNNING})


# ===========================================================================
# Session State
# ===========================================================================


@dataclass(slots=True)
class _Session:
    session_id: str
    source_address: str
    profile: QualityProfile
    started_at: float
    process: subprocess.Popen[bytes] | None = None
    kill_timer: threading.Timer | None = None
    exited: threading.Event = field(default_factory=threading.Event)
    stderr_tail: collections.deque[str] = field(
        default_factory=lambda: collections.deque(maxlen=_STDERR_TAIL_LINES)
    )


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Immutable snapshot of session state for lock-free access."""

    phase: Phase
    session_id: str | None = None
    source_address: str | None = None
    profile: QualityProfile | None = None
    started_at: float | None = None
    pid: int | None = None
    last_error: RuntimeFailure | None = None

    @property
    def is_active(self) -> bool:
        return self.phase in _ACTIVE_PHASES


def _signal_process(proc: subprocess.Popen[bytes], force: bool) -> bool:
    """Send SIGTERM (or SIGKILL if force), return True if the signal was sent."""
    try:
        if force:
            proc.kill()
        else:
            proc.terminate()
        return True
    except (ProcessLookupError, OSError):
        return False


# ===========================================================================
# Supervisor
# ===========================================================================


class SessionSupervisor:
    """Owns the single live ffmpeg process and its phase."""

    def __init__(
        self,
        sink: OutputSink,
        grace_sec: float = _STOP_GRACE_SEC,
        build_cmd: BuildCmd | None = None,
    ) -> None:
        self.sink = sink
        self.grace_sec = grace_sec
        self._build_cmd = build_cmd or build_hls_ffmpeg_cmd
        self._lock = threading.Lock()
        self._control_lock = threading.Lock()
        self._phase = Phase.IDLE
        self._session: _Session | None = None
        self._last_error: RuntimeFailure | None = None
        self._snapshot = SessionSnapshot(Phase.IDLE)

    # -- state helpers (caller holds _lock) --------------------------------

    def _publish(self) -> None:
        s = self._session
        proc = s.process if s else None
        self._snapshot = SessionSnapshot(
            phase=self._phase,
            session_id=s.session_id if s else None,
            source_address=s.source_address if s else None,
            profile=s.profile if s else None,
            started_at=s.started_at if s else None,
            pid=proc.pid if proc else None,
            last_error=self._last_error,
        )

    def _transition(self, phase: Phase) -> None:
        old = self._phase
        sid = self._session.session_id if self._session else self._snapshot.session_id
        self._phase = phase
        self._publish()
        sid = sid or "-"
        log.info("Session %s: %s -> %s", sid[:8], old.value, phase.value)

    # -- public API --------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def is_active(self) -> bool:
        return self._snapshot.is_active

    def start(self, source_address: str, quality_tier: str) -> SessionSnapshot:
        """Replace any current session with a new one and launch ffmpeg.

        Returns as soon as the process is spawned; poll status for readiness.
        Raises InvalidSourceAddress, UnknownQualityTier or LaunchFailed.
        """
        if not isinstance(source_address, str) or not source_address.strip():
            raise InvalidSourceAddress("Source address is required")
        profile = resolve(quality_tier)

        with self._control_lock:
            if self._teardown():
                log.info("Stopped previous session before starting %s", source_address)

            try:
                self.sink.reset()
            except OSError as e:
                raise LaunchFailed(f"Cannot prepare {self.sink.directory}: {e}") from e

            cmd = self._build_cmd(source_address, profile, self.sink.directory)
            session = _Session(
                session_id=str(uuid.uuid4()),
                source_address=source_address,
                profile=profile,
                started_at=time.time(),
            )
            with self._lock:
                self._session = session
                self._last_error = None
                self._transition(Phase.STARTING)

            log.info(
                "Starting live session %s (%s): %s",
                session.session_id[:8],
                profile.name,
                " ".join(cmd),
            )
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
            except (OSError, ValueError) as e:
                log.error("Failed to launch ffmpeg for session %s: %s", session.session_id[:8], e)
                with self._lock:
                    self._session = None
                    self._transition(Phase.IDLE)
                raise LaunchFailed(f"Failed to start ffmpeg: {e}") from e

            with self._lock:
                session.process = process
                self._publish()

            threading.Thread(
                target=self._monitor,
                args=(session,),
                name=f"ffmpeg-{session.session_id[:8]}",
                daemon=True,
            ).start()
            log.info("Started ffmpeg pid=%s for session %s", process.pid, session.session_id[:8])
            return self._snapshot

    def stop(self) -> bool:
        """Stop the current session. Returns False if there was nothing to stop."""
        with self._control_lock:
            stopped = self._teardown()
        if not stopped:
            log.info("No active stream to stop")
        return stopped

    def shutdown(self) -> None:
        """Kill the running ffmpeg process for clean shutdown."""
        if self.stop():
            log.info("Shutdown: stopped live session")

    # -- teardown (caller holds _control_lock) -----------------------------

    def _teardown(self) -> bool:
        with self._lock:
            session = self._session
            if session is None or self._phase not in _ACTIVE_PHASES:
                return False
            proc = session.process
            self._transition(Phase.STOPPING)
            if proc is None:
                self._session = None
                self._transition(Phase.IDLE)
                return True
            timer = threading.Timer(self.grace_sec, self._force_kill, args=(session,))
            timer.daemon = True
            session.kill_timer = timer
            timer.start()
            if _signal_process(proc, force=False):
                log.info("Sent SIGTERM to ffmpeg pid=%s", proc.pid)

        if session.exited.wait(self.grace_sec + _KILL_WAIT_SEC):
            return True

        # Exit was never observed; release the handle anyway.
        log.error("ffmpeg pid=%s did not exit after SIGKILL, releasing session", proc.pid)
        with self._lock:
            timer.cancel()
            if self._session is session:
                session.process = None
                self._session = None
                self._transition(Phase.IDLE)
        return True

    def _force_kill(self, session: _Session) -> None:
        with self._lock:
            if self._session is not session or self._phase != Phase.STOPPING:
                return
            proc = session.process
        if proc is None or proc.poll() is not None:
            return
        log.warning(
            "ffmpeg pid=%s ignored SIGTERM for %.1fs, force killing",
            proc.pid,
            self.grace_sec,
        )
        _signal_process(proc, force=True)

    # -- process events (monitor thread) -----------------------------------

    def _monitor(self, session: _Session) -> None:
        proc = session.process
        assert proc is not None and proc.stderr is not None
        self._on_launched(session)
        sid = session.session_id[:8]
        try:
            for raw in proc.stderr:
                text = raw.decode(errors="replace").rstrip()
                if not text:
                    continue
                session.stderr_tail.append(text)
                is_error = any(w in text.lower() for w in _STDERR_ERROR_WORDS)
                log.log(logging.WARNING if is_error else logging.DEBUG, "ffmpeg:%s %s", sid, text)
        except (OSError, ValueError) as e:
            log.debug("stderr reader for session %s stopped: %s", sid, e)
        finally:
            returncode = proc.wait()
            proc.stderr.close()
            self._on_exit(session, returncode)

    def _on_launched(self, session: _Session) -> None:
        with self._lock:
            if self._session is session and self._phase == Phase.STARTING:
                self._transition(Phase.RUNNING)

    def _on_exit(self, session: _Session, returncode: int) -> None:
        with self._lock:
            if session.kill_timer is not None:
                session.kill_timer.cancel()
            try:
                if self._session is not session:
                    log.debug("Ignoring exit of stale session %s", session.session_id[:8])
                    return
                session.process = None
                if self._phase == Phase.STOPPING:
                    log.info(
                        "ffmpeg for session %s stopped (exit %s)",
                        session.session_id[:8],
                        returncode,
                    )
                    self._session = None
                    self._transition(Phase.IDLE)
                elif returncode == 0:
                    log.info("ffmpeg for session %s ended normally", session.session_id[:8])
                    self._session = None
                    self._transition(Phase.IDLE)
                else:
                    reason = classify_failure(returncode, session.stderr_tail)
                    detail = last_lines(session.stderr_tail) or f"exit code {returncode}"
                    self._last_error = RuntimeFailure(reason, detail, returncode)
                    log.warning(
                        "ffmpeg for session %s failed (%s, exit %d): %s",
                        session.session_id[:8],
                        reason.value,
                        returncode,
                        detail,
                    )
                    self._transition(Phase.FAILED)
            finally:
                session.exited.set()


# ===========================================================================
# Status
# ===========================================================================


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    phase: Phase
    is_active: bool
    has_ready_output: bool
    uptime_seconds: int
    source_address: str | None = None
    quality: str | None = None
    last_error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "is_active": self.is_active,
            "has_ready_output": self.has_ready_output,
            "uptime_seconds": self.uptime_seconds,
            "source_address": self.source_address,
            "quality": self.quality,
            "last_error": self.last_error,
        }


def current_status(supervisor: SessionSupervisor) -> StatusSnapshot:
    """Read-only projection of the supervisor state for polling clients."""
    snap = supervisor.snapshot()
    uptime = 0
    if snap.started_at is not None and snap.phase not in (Phase.IDLE, Phase.FAILED):
        uptime = max(0, int(time.time() - snap.started_at))
    return StatusSnapshot(
        phase=snap.phase,
        is_active=snap.is_active,
        has_ready_output=supervisor.sink.has_ready_output(),
        uptime_seconds=uptime,
        source_address=snap.source_address,
        quality=snap.profile.name if snap.profile else None,
        last_error=snap.last_error.to_dict() if snap.last_error else None,
    )
