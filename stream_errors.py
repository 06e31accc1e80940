"""Error taxonomy for stream sessions and engine failure classification."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import enum
import re
import signal


class FailureReason(str, enum.Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connectionRefused"
    PROTOCOL_ERROR = "protocolError"
    UNSUPPORTED_OPTION = "unsupportedOption"
    KILLED = "killed"
    UNKNOWN = "unknown"


class StreamError(Exception):
    """Base class for errors raised by the stream layer."""


class InvalidSourceAddress(StreamError):
    pass


class UnknownQualityTier(StreamError):
    pass


class LaunchFailed(StreamError):
    """The engine process could not be created at all."""


class _ClassifiedError(StreamError):
    def __init__(self, reason: FailureReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason.value, "detail": self.detail}


class ProbeFailed(_ClassifiedError):
    pass


class RuntimeFailure(_ClassifiedError):
    def __init__(
        self,
        reason: FailureReason,
        detail: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(reason, detail)
        self.returncode = returncode

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["returncode"] = self.returncode
        return d


# First match wins.
_STDERR_RULES: list[tuple[re.Pattern[str], FailureReason]] = [
    (
        re.compile(r"unrecognized option|option not found|error splitting the argument", re.I),
        FailureReason.UNSUPPORTED_OPTION,
    ),
    (re.compile(r"connection refused", re.I), FailureReason.CONNECTION_REFUSED),
    (re.compile(r"\btimed? ?out\b", re.I), FailureReason.TIMEOUT),
    (
        re.compile(
            r"protocol not found|invalid data found|method \w+ failed|server returned"
            r"|unauthorized|not found|no route to host|name or service not known"
            r"|connection reset|broken pipe|end of file",
            re.I,
        ),
        FailureReason.PROTOCOL_ERROR,
    ),
]


def classify_failure(returncode: int | None, stderr_lines: Iterable[str]) -> FailureReason:
    """Classify an engine failure from its exit status and diagnostic output."""
    text = "\n".join(stderr_lines)
    for pattern, reason in _STDERR_RULES:
        if pattern.search(text):
            return reason
    if returncode is not None and returncode == -signal.SIGKILL:
        return FailureReason.KILLED
    return FailureReason.UNKNOWN


def last_lines(lines: Iterable[str], count: int = 10) -> str:
    """Join the tail of captured stderr for error details."""
    tail = list(lines)[-count:]
    return "\n".join(tail) if tail else ""
