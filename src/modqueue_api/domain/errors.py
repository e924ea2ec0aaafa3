from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


@dataclass(frozen=True)
class AppError(Exception):
    code: str
    message: str
    status_code: int = 400
    details: dict[str, Any] | None = None


class ErrorKind(StrEnum):
    validation = "validation_error"
    self_report = "self_report"
    duplicate_report = "duplicate_report"
    admin_protected = "admin_protected"
    rate_limit_exceeded = "rate_limit_exceeded"
    not_found = "not_found"
    already_reversed = "already_reversed"
    action_expired = "action_expired"
    forbidden = "forbidden"
    database_error = "database_error"


ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.validation: 400,
    ErrorKind.self_report: 403,
    ErrorKind.duplicate_report: 409,
    ErrorKind.admin_protected: 403,
    ErrorKind.rate_limit_exceeded: 429,
    ErrorKind.not_found: 404,
    ErrorKind.already_reversed: 409,
    ErrorKind.action_expired: 409,
    ErrorKind.forbidden: 403,
    ErrorKind.database_error: 503,
}

# Retry semantics: "after_fix" needs new input, "after_wait" carries retry_at,
# "retry" means the whole operation may be retried as-is.
ERROR_RETRY_POLICY: dict[ErrorKind, str] = {
    ErrorKind.validation: "after_fix",
    ErrorKind.self_report: "never",
    ErrorKind.duplicate_report: "after_wait",
    ErrorKind.admin_protected: "never",
    ErrorKind.rate_limit_exceeded: "after_wait",
    ErrorKind.not_found: "never",
    ErrorKind.already_reversed: "never",
    ErrorKind.action_expired: "never",
    ErrorKind.forbidden: "never",
    ErrorKind.database_error: "retry",
}


def error_for_kind(
    kind: ErrorKind, message: str, details: dict[str, Any] | None = None
) -> AppError:
    return AppError(
        code=kind.value,
        message=message,
        status_code=ERROR_STATUS_CODES[kind],
        details={**(details or {}), "retry": ERROR_RETRY_POLICY[kind]},
    )


def database_error(operation: str) -> AppError:
    return error_for_kind(
        ErrorKind.database_error,
        "The moderation store is temporarily unavailable. Please try again.",
        {"operation": operation},
    )
