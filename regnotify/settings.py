from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Literal

from regnotify.clients.whatsapp_cloud import DEFAULT_API_BASE
from regnotify.domain.stages import DISPATCH_BATCH_SIZE

ProviderKind = Literal["stub", "cloud"]


@dataclass(frozen=True)
class NotifierSettings:
    database_url: str | None = None
    batch_size: int = DISPATCH_BATCH_SIZE
    country_code: str = "91"
    pass_template_path: str | None = None


@dataclass(frozen=True)
class ProviderSettings:
    kind: ProviderKind = "stub"
    cloud_token: str = ""
    phone_number_id: str = ""
    api_base: str = DEFAULT_API_BASE
    verify_token: str = ""
    request_timeout_seconds: int = 20


def notifier_settings_from_env() -> NotifierSettings:
    return NotifierSettings(
        database_url=os.getenv("DATABASE_URL") or None,
        batch_size=env_int("NOTIFIER_BATCH_SIZE", DISPATCH_BATCH_SIZE),
        country_code=env_str("NOTIFIER_COUNTRY_CODE", "91"),
        pass_template_path=os.getenv("NOTIFIER_PASS_TEMPLATE_PATH") or None,
    )


def provider_settings_from_env() -> ProviderSettings:
    kind = env_str("WHATSAPP_PROVIDER", "stub").lower()
    if kind not in ("stub", "cloud"):
        raise ValueError(f"Unsupported WHATSAPP_PROVIDER '{kind}'. Supported providers: stub, cloud")
    return ProviderSettings(
        kind=kind,  # type: ignore[arg-type]
        cloud_token=env_str("WHATSAPP_CLOUD_TOKEN", ""),
        phone_number_id=env_str("WHATSAPP_PHONE_NUMBER_ID", ""),
        api_base=env_str("WHATSAPP_API_BASE", DEFAULT_API_BASE),
        verify_token=env_str("WHATSAPP_VERIFY_TOKEN", ""),
        request_timeout_seconds=env_int("WHATSAPP_REQUEST_TIMEOUT_SECONDS", 20),
    )


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()
