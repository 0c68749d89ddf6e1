"""Typed error hierarchy shared by every construo component."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    FETCH_FAILED = "FETCH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TEMPLATE_MISSING = "TEMPLATE_MISSING"
    TEMPLATE_INVALID = "TEMPLATE_INVALID"


class ConstruoError(Exception):
    """Base error carrying a machine-readable code.

    ``recoverable`` tells callers whether retrying the same operation later
    may succeed (network hiccups) or not (bad input, missing template).
    """

    def __init__(self, code: ErrorCode, message: str, *, recoverable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }


class GatewayError(ConstruoError):
    """Structured failure from the remote data store."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        recoverable: bool = False,
        status_code: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(code, message, recoverable=recoverable)
        self.status_code = status_code
        self.details = details


class TemplateMissingError(ConstruoError):
    def __init__(self) -> None:
        super().__init__(
            ErrorCode.TEMPLATE_MISSING,
            "No certificate template found! "
            "Please customize and save a template in the Builder first.",
            recoverable=False,
        )
