import pytest

from regnotify.domain.error_taxonomy import (
    CANONICAL_ERROR_CODES,
    classify_error,
    error_code_for,
    is_canonical_error_code,
)
from regnotify.domain.errors import (
    DomainValidationError,
    ProviderError,
    ProviderNotReadyError,
    RecipientError,
    RenderError,
    TemplateNotFoundError,
)


@pytest.mark.unit
def test_canonical_error_codes_are_enforced() -> None:
    assert is_canonical_error_code("recipient_invalid") is True
    assert is_canonical_error_code("schema_validation_failed") is False


@pytest.mark.unit
def test_delivery_errors_carry_their_default_code() -> None:
    assert error_code_for(ProviderError("down")) == "provider_unavailable"
    assert error_code_for(ProviderNotReadyError("no session")) == "provider_not_configured"
    assert error_code_for(TemplateNotFoundError("missing")) == "template_missing"
    assert error_code_for(RecipientError("bad number")) == "recipient_invalid"
    assert error_code_for(RenderError("bad image")) == "render_failed"


@pytest.mark.unit
def test_explicit_code_overrides_class_default() -> None:
    assert error_code_for(ProviderError("slow down", code="provider_rate_limited")) == "provider_rate_limited"


@pytest.mark.unit
def test_unexpected_exceptions_map_to_internal_error() -> None:
    assert error_code_for(ValueError("boom")) == "internal_error"
    assert error_code_for(DomainValidationError("not a delivery error")) == "internal_error"


@pytest.mark.unit
def test_retry_classification_distinguishes_terminal_and_recoverable() -> None:
    recoverable = {code for code in CANONICAL_ERROR_CODES if classify_error(code) == "recoverable"}

    assert recoverable == {"provider_unavailable", "provider_rate_limited", "internal_error"}
    assert classify_error("recipient_invalid") == "terminal"
    assert classify_error("template_missing") == "terminal"
