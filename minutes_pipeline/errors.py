"""Error taxonomy for model dispatch and pipeline stages.

Failures coming back from the model API are classified by status code and
message pattern into an ErrorKind, which decides whether the dispatcher
retries and how long it waits first.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from google.api_core.exceptions import GoogleAPIError


class ErrorKind(str, Enum):
    AUDIO_INSUFFICIENT = "AUDIO_INSUFFICIENT"
    SERVICE_OVERLOAD = "SERVICE_OVERLOAD"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    AUTH_FAILED = "AUTH_FAILED"
    INVALID_FORMAT = "INVALID_FORMAT"
    RESPONSE_PARSE_FAILURE = "RESPONSE_PARSE_FAILURE"
    AUDIO_COMPRESSION_FAILURE = "AUDIO_COMPRESSION_FAILURE"
    PROCESSING = "PROCESSING"
    UNKNOWN = "UNKNOWN"


class PipelineError(Exception):
    """A classified failure, optionally annotated with retry bookkeeping."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        attempts: int = 0,
        elapsed_seconds: float = 0.0,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds

    @property
    def retryable(self) -> bool:
        return describe_error(self.kind).retryable

    def __str__(self) -> str:
        text = f"[{self.kind.value}] {self.message}"
        if self.attempts:
            text += f" (attempts={self.attempts}, elapsed={self.elapsed_seconds:.1f}s)"
        return text


class DispatchCancelled(Exception):
    """Raised when shutdown interrupts a dispatch retry loop."""


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    retryable: bool
    troubleshooting: list[str] = field(default_factory=list)


_CATALOGUE: dict[ErrorKind, ErrorInfo] = {
    ErrorKind.AUDIO_INSUFFICIENT: ErrorInfo(
        "Audio is too short or contains too little speech to process",
        retryable=False,
        troubleshooting=["Check the recording length", "Confirm the microphone was not muted"],
    ),
    ErrorKind.SERVICE_OVERLOAD: ErrorInfo(
        "The model service is temporarily overloaded",
        retryable=True,
        troubleshooting=["Retry later", "Spread processing outside peak hours"],
    ),
    ErrorKind.QUOTA_EXCEEDED: ErrorInfo(
        "API quota or rate limit exceeded",
        retryable=True,
        troubleshooting=["Check the API usage dashboard", "Lower MAX_CONCURRENCY"],
    ),
    ErrorKind.INTERNAL_ERROR: ErrorInfo(
        "The model service returned an internal error",
        retryable=True,
        troubleshooting=["Retry later"],
    ),
    ErrorKind.AUTH_FAILED: ErrorInfo(
        "Authentication with the model service failed",
        retryable=True,
        troubleshooting=["Verify GEMINI_API_KEY", "Check the key's project permissions"],
    ),
    ErrorKind.INVALID_FORMAT: ErrorInfo(
        "The model service rejected the request as malformed",
        retryable=True,
        troubleshooting=["Check the audio MIME type", "Check the payload size limit"],
    ),
    ErrorKind.RESPONSE_PARSE_FAILURE: ErrorInfo(
        "The model response could not be interpreted",
        retryable=True,
        troubleshooting=["Inspect the raw response in debug logs"],
    ),
    ErrorKind.AUDIO_COMPRESSION_FAILURE: ErrorInfo(
        "The audio payload could not be reduced to the size limit",
        retryable=True,
        troubleshooting=["Check the source file is not corrupted", "Enable chunking"],
    ),
    ErrorKind.PROCESSING: ErrorInfo(
        "The model call failed during processing",
        retryable=True,
        troubleshooting=["Retry later"],
    ),
    ErrorKind.UNKNOWN: ErrorInfo(
        "An unexpected error occurred",
        retryable=True,
        troubleshooting=["Inspect the logs for the full traceback"],
    ),
}


def describe_error(kind: ErrorKind) -> ErrorInfo:
    """Return the operator-facing catalogue entry for an error kind."""
    return _CATALOGUE[kind]


# Checked in order; the first group with a matching fragment wins.
_MESSAGE_PATTERNS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.AUDIO_INSUFFICIENT, ("too short", "minimum 10 seconds", "no speech detected")),
    (ErrorKind.SERVICE_OVERLOAD, ("503", "service unavailable", "overloaded")),
    (ErrorKind.QUOTA_EXCEEDED, ("429", "too many requests", "resource has been exhausted", "quota")),
    (ErrorKind.INTERNAL_ERROR, ("500 internal", "internal server error")),
    (ErrorKind.AUTH_FAILED, ("401", "403", "permission_denied", "unauthenticated", "api key not valid")),
    (ErrorKind.INVALID_FORMAT, ("400", "bad request", "invalid_argument")),
    (ErrorKind.RESPONSE_PARSE_FAILURE, ("json", "parse")),
    (ErrorKind.AUDIO_COMPRESSION_FAILURE, ("audio", "buffer")),
]

_STATUS_KINDS = {
    503: ErrorKind.SERVICE_OVERLOAD,
    429: ErrorKind.QUOTA_EXCEEDED,
    500: ErrorKind.INTERNAL_ERROR,
    401: ErrorKind.AUTH_FAILED,
    403: ErrorKind.AUTH_FAILED,
    400: ErrorKind.INVALID_FORMAT,
}

_RETRY_DELAY_PATTERNS = [
    re.compile(r'retryDelay"?\s*:\s*"?(\d+(?:\.\d+)?)s', re.IGNORECASE),
    re.compile(r"retry_delay\s*\{\s*seconds:\s*(\d+)"),
    re.compile(r"retry in (\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
]


def _status_code(exc: BaseException) -> Optional[int]:
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a failure from the model call onto an ErrorKind."""
    if isinstance(exc, PipelineError):
        return exc.kind

    message = str(exc).lower()
    for kind, fragments in _MESSAGE_PATTERNS[:1]:
        if any(f in message for f in fragments):
            return kind

    status = _status_code(exc)
    if status in _STATUS_KINDS:
        return _STATUS_KINDS[status]

    for kind, fragments in _MESSAGE_PATTERNS[1:]:
        if any(f in message for f in fragments):
            return kind

    if isinstance(exc, GoogleAPIError):
        return ErrorKind.PROCESSING
    return ErrorKind.UNKNOWN


def suggested_retry_delay(exc: BaseException) -> Optional[float]:
    """Extract a server-suggested retry delay in seconds, if the error carries one."""
    text = str(exc)
    for pattern in _RETRY_DELAY_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1))
    return None
