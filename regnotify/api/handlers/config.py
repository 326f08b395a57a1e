from __future__ import annotations

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import NotifierConfigRequest, NotifierConfigResponse
from regnotify.domain.models import NotifierConfig
from regnotify.domain.recipients import parse_number_list

COMPONENT_ID_GET = "api.get_config"
COMPONENT_ID_SAVE = "api.save_config"


def _response(config: NotifierConfig) -> NotifierConfigResponse:
    return NotifierConfigResponse(
        selected_groups=list(config.selected_groups),
        admin_numbers=list(config.admin_numbers),
        registration_message=config.registration_message,
        pass_template_path=config.pass_template_path,
    )


async def get_config_handler(*, api_deps: ApiDeps) -> NotifierConfigResponse:
    return _response(api_deps.config_store.current)


async def save_config_handler(*, request: NotifierConfigRequest, api_deps: ApiDeps) -> NotifierConfigResponse:
    config = NotifierConfig(
        selected_groups=tuple(dict.fromkeys(item.strip() for item in request.selected_groups if item.strip())),
        admin_numbers=parse_number_list(request.admin_numbers),
        registration_message=request.registration_message.strip(),
        pass_template_path=(request.pass_template_path or "").strip() or None,
    )
    saved = await api_deps.config_store.save(config)
    await api_deps.events.notify("Configuration saved", level="success")
    return _response(saved)
