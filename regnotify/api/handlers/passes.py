from __future__ import annotations

import asyncio

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import ManualSendResponse
from regnotify.domain.models import Stage
from regnotify.domain.use_cases.dispatch import send_stage_on_demand

COMPONENT_ID_GENERATE = "api.generate_pass"
COMPONENT_ID_SEND = "api.send_stage"


async def generate_pass_handler(*, registration_no: str, api_deps: ApiDeps) -> bytes:
    return await asyncio.to_thread(
        api_deps.pass_renderer.render,
        registration_no=registration_no,
        template_path=api_deps.config_store.current.pass_template_path,
    )


async def send_stage_handler(
    *,
    stage: Stage,
    registration_no: str,
    mobile: str,
    api_deps: ApiDeps,
) -> ManualSendResponse:
    result = await send_stage_on_demand(
        sender=api_deps.sender,
        repository=api_deps.repository,
        stage=stage,
        registration_no=registration_no.strip(),
        mobile=mobile.strip(),
        config=api_deps.config_store.current,
    )
    if result.outcome == "sent":
        await api_deps.events.notify(f"{stage.value} sent for registration {result.registration_id}", level="success")
    return ManualSendResponse(
        registration_id=result.registration_id,
        stage=stage.value,
        outcome=result.outcome,
        message_id=result.message_id,
    )
