"""FastAPI application receiving GitHub webhooks."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import ServiceConfig
from ..errors import PayloadError, ShipcheckError
from ..events import parse_event
from ..logging import get_logger
from ..router import EventRouter
from ..workflow import CheckRunWorkflow

logger = get_logger("service")


class HealthResponse(BaseModel):
    status: str


class WebhookResponse(BaseModel):
    status: str
    event: Optional[str] = None


def create_app(router_factory: Callable[[], EventRouter]) -> FastAPI:
    """Create the webhook application around a single shared router."""

    app = FastAPI(title="shipcheck", version="1.0.0")
    router = router_factory()
    app.state.router = router

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/", response_model=WebhookResponse)
    async def webhook(
        request: Request,
        x_github_event: str = Header(default=""),
    ) -> WebhookResponse:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise PayloadError(f"webhook body is not valid JSON: {exc}") from exc

        event = parse_event(x_github_event, payload)
        if event is None:
            logger.debug("Ignoring unsupported event type %r", x_github_event)
            return WebhookResponse(status="ignored", event=x_github_event or None)

        # Dispatch creates the check run over the network before detaching.
        loop = asyncio.get_running_loop()
        future = await loop.run_in_executor(None, router.dispatch, event)
        return WebhookResponse(
            status="accepted" if future is not None else "ignored",
            event=x_github_event,
        )

    @app.exception_handler(ShipcheckError)
    async def shipcheck_error_handler(_: Any, exc: ShipcheckError) -> JSONResponse:
        logger.error("Webhook failed: %s", exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    return app


def run_service(config: ServiceConfig, *, host: str = "0.0.0.0") -> None:  # pragma: no cover - integration path
    workflow = CheckRunWorkflow.from_config(config)
    app = create_app(lambda: EventRouter.for_workflow(workflow))
    logger.info("Listening on %s:%d", host, config.port)
    try:
        uvicorn.run(app, host=host, port=config.port)
    finally:
        logger.info("Waiting for background tasks to finish")
        workflow.tasks.shutdown(wait=True)


__all__ = ["HealthResponse", "WebhookResponse", "create_app", "run_service"]
