from __future__ import annotations

"""Error taxonomy for harvest failures.

Codes appear in structured logs, per-incident telemetry and the run ledger so
a skipped incident can be explained after the fact.
"""

from typing import Optional


class ErrorCode:
    TRANSIENT_UI = "transient_ui"
    AUTH_FAILURE = "auth_failure"
    CORRELATION_TIMEOUT = "correlation_timeout"
    BAD_PAYLOAD = "bad_payload"
    MISSING_UI_ELEMENT = "missing_ui_element"
    STORAGE_WRITE_FAILED = "storage_write_failed"
    CONFIG = "config_invalid"
    INTERNAL = "internal_error"


class HarvestError(Exception):
    error_code: str = ErrorCode.INTERNAL

    def __init__(self, message: str, *, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code


class TransientUIError(HarvestError):
    """Selector or navigation timed out."""

    error_code = ErrorCode.TRANSIENT_UI


class AuthFailure(HarvestError):
    """Login did not reach an authenticated state."""

    error_code = ErrorCode.AUTH_FAILURE


class CorrelationTimeout(HarvestError):
    """No network response matched a predicate within its budget."""

    error_code = ErrorCode.CORRELATION_TIMEOUT

    def __init__(self, message: str, *, predicate: object = None) -> None:
        super().__init__(message)
        self.predicate = predicate


class ResponseDecodeError(HarvestError):
    error_code = ErrorCode.BAD_PAYLOAD


class MissingUIElement(HarvestError):
    """An expected control is absent from the page."""

    error_code = ErrorCode.MISSING_UI_ELEMENT


class StorageWriteError(HarvestError):
    error_code = ErrorCode.STORAGE_WRITE_FAILED

    def __init__(self, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


def error_code_for(exc: BaseException) -> str:
    """Return the taxonomy code for ``exc`` (``internal_error`` if unknown)."""

    return getattr(exc, "error_code", None) or ErrorCode.INTERNAL


__all__ = [
    "ErrorCode",
    "HarvestError",
    "TransientUIError",
    "AuthFailure",
    "CorrelationTimeout",
    "ResponseDecodeError",
    "MissingUIElement",
    "StorageWriteError",
    "error_code_for",
]
