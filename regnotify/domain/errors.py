from __future__ import annotations

from regnotify.domain.error_taxonomy import ErrorCode


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class DeliveryError(DomainError):
    """Failure of a single outbound send, carrying its canonical error code."""

    default_code: ErrorCode = "internal_error"

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.code: ErrorCode = code or self.default_code


class ProviderError(DeliveryError):
    default_code: ErrorCode = "provider_unavailable"


class ProviderNotReadyError(ProviderError):
    default_code: ErrorCode = "provider_not_configured"


class TemplateNotFoundError(DeliveryError):
    default_code: ErrorCode = "template_missing"


class RecipientError(DeliveryError):
    default_code: ErrorCode = "recipient_invalid"


class RenderError(DeliveryError):
    default_code: ErrorCode = "render_failed"
