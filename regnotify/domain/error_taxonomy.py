from __future__ import annotations

from typing import Literal

# Canonical error vocabulary persisted in <stage>_last_error columns.
ErrorCode = Literal[
    "provider_unavailable",
    "provider_rate_limited",
    "provider_not_configured",
    "template_missing",
    "recipient_invalid",
    "render_failed",
    "internal_error",
]

RetryClassification = Literal["recoverable", "terminal"]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "provider_unavailable",
    "provider_rate_limited",
    "provider_not_configured",
    "template_missing",
    "recipient_invalid",
    "render_failed",
    "internal_error",
)

# Errors that may succeed on a later attempt within the stage attempt policy.
# Everything else is a configuration or data problem that needs an operator.
RECOVERABLE_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        "provider_unavailable",
        "provider_rate_limited",
        "internal_error",
    }
)


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_error(code: ErrorCode) -> RetryClassification:
    if code in RECOVERABLE_ERROR_CODES:
        return "recoverable"
    return "terminal"


def error_code_for(exc: BaseException) -> ErrorCode:
    code = getattr(exc, "code", None)
    if isinstance(code, str) and is_canonical_error_code(code):
        return code  # type: ignore[return-value]
    return "internal_error"
