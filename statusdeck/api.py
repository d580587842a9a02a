"""Thin HTTP surface over a :class:`StatusDeck` instance."""

from __future__ import annotations

import hmac
import uuid
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from statusdeck.alerts.templates import TemplateRenderer
from statusdeck.alerts.unraid_events import UnraidEvent
from statusdeck.drivers import available_integrations
from statusdeck.errors import ConfigurationError, DriverError, IntegrationNotFoundError, RateLimitedError
from statusdeck.models import NotificationTemplate
from statusdeck.polling.fanout import QueueSink
from statusdeck.service import StatusDeck
from statusdeck.store import SETTING_UNRAID_WEBHOOK_API_KEY, SETTING_UNRAID_WEBHOOK_ENABLED


logger = structlog.get_logger(__name__)


class TemplatePreviewRequest(BaseModel):
    title_template: str = Field(..., max_length=500)
    message_template: str = Field(..., max_length=5000)
    sample: dict[str, Any] = Field(default_factory=dict)


class AggregationUpdateRequest(BaseModel):
    enabled: bool | None = None
    window_seconds: float | None = Field(None, gt=0, le=3600)


def create_app(deck: StatusDeck, *, manage_lifecycle: bool = True) -> FastAPI:
    app = FastAPI(title="StatusDeck", version="0.1.0")
    app.state.deck = deck

    if manage_lifecycle:

        @app.on_event("startup")
        async def _startup() -> None:
            await deck.start()

        @app.on_event("shutdown")
        async def _shutdown() -> None:
            await deck.stop()

    @app.exception_handler(IntegrationNotFoundError)
    async def _not_found(_: Request, exc: IntegrationNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(RateLimitedError)
    async def _rate_limited(_: Request, exc: RateLimitedError) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"error": str(exc), "retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ConfigurationError)
    async def _misconfigured(_: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(DriverError)
    async def _backend_failed(_: Request, exc: DriverError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "statusdeck", "started": deck.started}

    # -- live status -----------------------------------------------------------

    @app.get("/api/status")
    async def current_status() -> dict[str, Any]:
        return {
            "success": True,
            "data": {str(k): v for k, v in deck.status_poller.get_current_status().items()},
        }

    @app.get("/api/stream/status")
    async def stream_status() -> StreamingResponse:
        client_id = f"client-{uuid.uuid4().hex[:12]}"
        sink = QueueSink()
        if not await deck.status_poller.register_client(client_id, sink):
            raise HTTPException(status_code=503, detail="stream_unavailable")

        async def events():
            try:
                async for chunk in sink.stream():
                    yield chunk
            finally:
                sink.close()
                await deck.status_poller.unregister_client(client_id)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.post("/api/status/restart")
    async def restart_status() -> dict[str, Any]:
        await deck.status_poller.restart()
        return {"success": True, "message": "Status poller restarted"}

    # -- integrations ----------------------------------------------------------

    @app.get("/api/integrations/types")
    async def integration_types() -> dict[str, Any]:
        return {"success": True, "data": available_integrations()}

    @app.post("/api/integrations/{integration_id}/poll")
    async def poll_integration(integration_id: int, force: bool = False) -> dict[str, Any]:
        result = await deck.monitor.poll_now(integration_id, force=force)
        return {"success": True, "data": result.to_dict()}

    @app.post("/api/integrations/{integration_id}/test")
    async def test_integration(integration_id: int) -> dict[str, Any]:
        result = await deck.monitor.test_connection(integration_id)
        return result.to_dict()

    @app.get("/api/integrations/{integration_id}/monitors")
    async def integration_monitors(integration_id: int) -> dict[str, Any]:
        integration = deck.store.get_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        driver = deck.build_driver(integration)
        if not driver.supports_status:
            raise HTTPException(status_code=400, detail=f"{driver.display_name} does not report monitor status")
        monitors = await driver.fetch_monitor_list()
        return {"success": True, "data": [{"name": m.name, "status": m.status} for m in monitors]}

    @app.get("/api/integrations/{integration_id}/capabilities")
    async def integration_capabilities(integration_id: int) -> dict[str, Any]:
        caps = await deck.monitor.capabilities(integration_id)
        return {"success": True, "data": [c.to_dict() for c in caps]}

    @app.delete("/api/integrations/{integration_id}")
    async def delete_integration(integration_id: int) -> dict[str, Any]:
        if not await deck.remove_integration(integration_id):
            raise IntegrationNotFoundError(integration_id)
        return {"success": True, "message": "Integration deleted"}

    # -- notifications ---------------------------------------------------------

    @app.post("/api/webhooks/{webhook_id}/test")
    async def test_webhook(webhook_id: int) -> JSONResponse:
        result = await deck.notifications.test_webhook(webhook_id)
        return JSONResponse(status_code=200 if result["success"] else 500, content=result)

    @app.post("/api/notification-rules/{rule_id}/test")
    async def test_rule(rule_id: int) -> JSONResponse:
        result = await deck.notifications.test_rule(rule_id)
        if result["message"] == "Notification rule not found":
            return JSONResponse(status_code=404, content=result)
        return JSONResponse(status_code=200 if result["success"] else 500, content=result)

    @app.post("/api/notification-templates/preview")
    async def preview_template(body: TemplatePreviewRequest) -> dict[str, Any]:
        template = NotificationTemplate(
            id=None,
            name="preview",
            title_template=body.title_template,
            message_template=body.message_template,
        )
        title, message = TemplateRenderer.preview(template, body.sample)
        return {"success": True, "data": {"title": title, "message": message}}

    @app.get("/api/notifications/aggregation")
    async def aggregation_stats() -> dict[str, Any]:
        return {"success": True, "data": deck.notifications.aggregator.stats()}

    @app.put("/api/notifications/aggregation")
    async def update_aggregation(body: AggregationUpdateRequest) -> dict[str, Any]:
        deck.notifications.aggregator.update_config(enabled=body.enabled, window_seconds=body.window_seconds)
        return {"success": True, "data": deck.notifications.aggregator.stats()}

    # -- unraid push events ----------------------------------------------------

    @app.post("/api/unraid-webhook")
    async def unraid_webhook(req: Request) -> JSONResponse:
        if deck.store.get_setting(SETTING_UNRAID_WEBHOOK_ENABLED) != "true":
            return JSONResponse(status_code=403, content={"error": "Unraid webhook receiver is disabled"})

        auth = req.headers.get("authorization") or ""
        if not auth.startswith("Bearer "):
            return JSONResponse(
                status_code=401,
                content={"error": "Missing or invalid Authorization header. Expected: Bearer <API_KEY>"},
            )
        expected = deck.store.get_setting(SETTING_UNRAID_WEBHOOK_API_KEY)
        if not expected:
            return JSONResponse(status_code=500, content={"error": "Unraid webhook API key not configured"})
        if not hmac.compare_digest(auth[len("Bearer "):].encode(), expected.encode()):
            logger.warning("Rejected Unraid webhook with invalid API key")
            return JSONResponse(status_code=401, content={"error": "Invalid API key"})

        try:
            event = UnraidEvent.model_validate(await req.json())
        except (ValidationError, ValueError) as e:
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid event payload", "details": str(e)},
            )

        result = await deck.unraid_events.process(event)
        return JSONResponse(
            content={
                "success": True,
                "message": "Event received and processed" if result["processed"] else "Event received",
                "event": event.event,
                "event_id": result["event_id"],
            }
        )

    return app
