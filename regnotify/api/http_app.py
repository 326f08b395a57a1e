from __future__ import annotations

from contextlib import asynccontextmanager, suppress
import asyncio
from collections.abc import Awaitable, Callable
import logging

from fastapi import Body, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile, WebSocket
from fastapi import WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from regnotify.api.handlers.broadcasts import send_broadcast_handler
from regnotify.api.handlers.config import get_config_handler, save_config_handler
from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.handlers.passes import generate_pass_handler, send_stage_handler
from regnotify.api.handlers.stats import latest_registrations_handler, stats_handler
from regnotify.api.handlers.sync import run_sync_handler
from regnotify.api.handlers.templates import list_templates_handler, update_template_handler
from regnotify.api.handlers.webhook import receive_webhook_handler, verify_webhook_handler
from regnotify.api.schemas import (
    BroadcastResponse,
    ErrorResponse,
    GeneratePassRequest,
    HealthResponse,
    JobMetrics,
    LatestRegistrationsResponse,
    ListTemplatesResponse,
    ManualSendRequest,
    ManualSendResponse,
    NotifierConfigRequest,
    NotifierConfigResponse,
    ReadyResponse,
    StatsResponse,
    StatusResponse,
    SyncResponse,
    UpdateTemplateRequest,
    WebhookAckResponse,
)
from regnotify.domain.errors import (
    DomainInvariantError,
    DomainValidationError,
    ProviderNotReadyError,
    RenderError,
)
from regnotify.domain.models import BroadcastRequest, MediaAttachment, RecipientType, Stage, TemplateType
from regnotify.services.events import EVENT_STATUS
from regnotify.workers.loop import PeriodicJob
from regnotify.workers.runner import (
    JobRuntimeState,
    SchedulerSettings,
    run_job_until_stopped,
    scheduler_settings_from_env,
)

MANUAL_SEND_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def build_app(
    role: str,
    run_id: str,
    jobs: list[PeriodicJob] | None = None,
    scheduler_settings: SchedulerSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    scheduled = list(jobs or [])
    job_states: dict[str, JobRuntimeState] = {}
    job_tasks: dict[str, asyncio.Task[None]] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        del app
        stop_event = asyncio.Event()

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        settings = scheduler_settings or scheduler_settings_from_env()
        for job in scheduled:
            state = JobRuntimeState()
            job_states[job.name] = state
            job_tasks[job.name] = asyncio.create_task(
                run_job_until_stopped(
                    job=job,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=state,
                )
            )

        yield

        stop_event.set()
        if job_tasks:
            await asyncio.gather(*job_tasks.values())

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="regnotify", version="0.1.0", lifespan=lifespan)

    def _deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role)

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        metrics: list[JobMetrics] = []
        for job in scheduled:
            state = job_states.get(job.name) or JobRuntimeState()
            task = job_tasks.get(job.name)
            metrics.append(
                JobMetrics(
                    name=job.name,
                    started=state.started,
                    stopped=state.stopped,
                    running=task is not None and not task.done(),
                    ticks_total=state.ticks_total,
                    items_total=state.items_total,
                    idle_ticks_total=state.idle_ticks_total,
                    errors_total=state.errors_total,
                )
            )
        return ReadyResponse(
            status="ready",
            role=role,
            scheduler_enabled=bool(scheduled),
            scheduler_ready=all(item.started and item.running for item in metrics),
            jobs=metrics,
        )

    @app.get("/status", response_model=StatusResponse, tags=["System"])
    async def status() -> StatusResponse:
        deps = _deps()
        return StatusResponse(
            provider_ready=deps.provider.is_ready(),
            event_subscribers=deps.events.subscriber_count,
        )

    @app.get("/api/config", response_model=NotifierConfigResponse, tags=["Configuration"])
    async def get_config() -> NotifierConfigResponse:
        return await get_config_handler(api_deps=_deps())

    @app.post("/api/config", response_model=NotifierConfigResponse, tags=["Configuration"])
    async def save_config(request: NotifierConfigRequest) -> NotifierConfigResponse:
        return await save_config_handler(request=request, api_deps=_deps())

    @app.get("/api/templates", response_model=ListTemplatesResponse, tags=["Templates"])
    async def list_templates() -> ListTemplatesResponse:
        return await list_templates_handler(api_deps=_deps())

    @app.put(
        "/api/templates/{template_type}",
        status_code=204,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
        tags=["Templates"],
    )
    async def update_template(template_type: TemplateType, request: UpdateTemplateRequest) -> Response:
        try:
            await update_template_handler(
                template_type=template_type,
                message_text=request.message_text,
                api_deps=_deps(),
            )
        except DomainValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="template not found") from exc
        return Response(status_code=204)

    @app.post("/api/sync", response_model=SyncResponse, tags=["Operations"])
    async def run_sync() -> SyncResponse:
        return await run_sync_handler(api_deps=_deps())

    @app.get("/api/stats", response_model=StatsResponse, tags=["Operations"])
    async def stats() -> StatsResponse:
        return await stats_handler(api_deps=_deps())

    @app.get("/api/registrations/latest", response_model=LatestRegistrationsResponse, tags=["Operations"])
    async def latest_registrations(limit: int = Query(default=10, ge=1, le=100)) -> LatestRegistrationsResponse:
        return await latest_registrations_handler(limit=limit, api_deps=_deps())

    @app.post(
        "/api/passes/generate",
        response_class=Response,
        responses={200: {"content": {"image/png": {}}}, 400: {"model": ErrorResponse}},
        tags=["Passes"],
    )
    async def generate_pass(request: GeneratePassRequest) -> Response:
        try:
            image = await generate_pass_handler(registration_no=request.registration_no, api_deps=_deps())
        except RenderError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(content=image, media_type="image/png")

    async def _manual_send(stage: Stage, request: ManualSendRequest) -> ManualSendResponse:
        if not request.registration_no.strip() and not request.mobile.strip():
            raise HTTPException(status_code=400, detail="registration_no or mobile is required")
        try:
            result = await send_stage_handler(
                stage=stage,
                registration_no=request.registration_no,
                mobile=request.mobile,
                api_deps=_deps(),
            )
        except ProviderNotReadyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="registration not found") from exc
        except DomainInvariantError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if result.outcome == "failed":
            raise HTTPException(status_code=502, detail=f"{stage.value} send failed")
        return result

    @app.post(
        "/api/passes/send",
        response_model=ManualSendResponse,
        responses=MANUAL_SEND_ERRORS,
        tags=["Passes"],
    )
    async def send_pass(request: ManualSendRequest) -> ManualSendResponse:
        return await _manual_send(Stage.BARCODE, request)

    @app.post(
        "/api/change-requests/send",
        response_model=ManualSendResponse,
        responses=MANUAL_SEND_ERRORS,
        tags=["Messages"],
    )
    async def send_change_request(request: ManualSendRequest) -> ManualSendResponse:
        return await _manual_send(Stage.CHANGE_REQUEST, request)

    @app.post(
        "/api/broadcasts",
        response_model=BroadcastResponse,
        responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Messages"],
    )
    async def send_broadcast(
        recipient_type: RecipientType = Form(...),
        message: str = Form(default=""),
        custom_numbers: str = Form(default=""),
        media: UploadFile | None = File(default=None),
    ) -> BroadcastResponse:
        deps = _deps()
        attachment: MediaAttachment | None = None
        if media is not None:
            attachment = MediaAttachment(
                payload=await media.read(),
                mime_type=media.content_type or "application/octet-stream",
                filename=media.filename or "attachment.bin",
            )
        request = BroadcastRequest(
            message=message,
            recipient_type=recipient_type,
            custom_numbers=custom_numbers,
            media=attachment,
        )
        try:
            return await send_broadcast_handler(request=request, api_deps=deps)
        except ProviderNotReadyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except DomainValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/webhooks/whatsapp", response_class=PlainTextResponse, tags=["Webhooks"])
    async def verify_webhook(request: Request) -> PlainTextResponse:
        params = request.query_params
        challenge = verify_webhook_handler(
            mode=params.get("hub.mode"),
            token=params.get("hub.verify_token"),
            challenge=params.get("hub.challenge"),
            api_deps=_deps(),
        )
        if challenge is None:
            raise HTTPException(status_code=403, detail="webhook verification failed")
        return PlainTextResponse(challenge)

    @app.post("/webhooks/whatsapp", response_model=WebhookAckResponse, tags=["Webhooks"])
    async def receive_webhook(payload: dict[str, object] = Body(...)) -> WebhookAckResponse:  # noqa: B008
        return await receive_webhook_handler(payload=payload, api_deps=_deps())

    @app.websocket("/events")
    async def events(websocket: WebSocket) -> None:
        deps = _deps()
        await websocket.accept()
        queue = deps.events.subscribe()
        await websocket.send_json({"event": EVENT_STATUS, "data": {"provider_ready": deps.provider.is_ready()}})

        async def _forward() -> None:
            while True:
                await websocket.send_json(await queue.get())

        forward_task = asyncio.create_task(_forward())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("event subscriber disconnected")
        finally:
            forward_task.cancel()
            with suppress(asyncio.CancelledError):
                await forward_task
            deps.events.unsubscribe(queue)

    return app
