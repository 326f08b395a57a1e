from __future__ import annotations

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import ListTemplatesResponse, TemplateResponse
from regnotify.domain.models import TemplateType
from regnotify.domain.templates import validate_template

COMPONENT_ID_LIST = "api.list_templates"
COMPONENT_ID_UPDATE = "api.update_template"


async def list_templates_handler(*, api_deps: ApiDeps) -> ListTemplatesResponse:
    items = await api_deps.repository.list_templates()
    return ListTemplatesResponse(
        items=[
            TemplateResponse(
                template_type=item.template_type,
                name=item.name,
                message_text=item.message_text,
                is_active=item.is_active,
                updated_at=item.updated_at,
            )
            for item in items
        ]
    )


async def update_template_handler(
    *,
    template_type: TemplateType,
    message_text: str,
    api_deps: ApiDeps,
) -> None:
    """Validates placeholders before saving; raises KeyError for an unseeded type."""
    validate_template(template_type=template_type, message_text=message_text)
    updated = await api_deps.repository.update_template(template_type=template_type, message_text=message_text)
    if not updated:
        raise KeyError(template_type.value)
