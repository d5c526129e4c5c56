"""FastAPI server exposing triggers, test runs, run status and automation management."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..automation.events import ChangeNotification
from ..automation.models import Automation, TriggerStimulus
from ..automation.service import AutomationService, external_calls_performed
from ..automation.templates import TemplateRegistry, create_default_template_registry
from .config import ServerConfig
from .exceptions import (
    AutomationConfigError,
    AutomationDisabledError,
    AutomationError,
    AutomationNotFoundError,
    InvalidAutomationError,
    RunNotFoundError,
)
from .logger import get_logger

logger = get_logger("server")


class RunTestRequest(BaseModel):
    """Body of a test run request."""

    model_config = ConfigDict(populate_by_name=True)

    test_payload: dict[str, Any] = Field(default_factory=dict, alias="testPayload")


class InstantiateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(default="default", alias="tenantId")
    name: str | None = None


def _status_for(exc: AutomationError) -> int:
    if isinstance(exc, (AutomationNotFoundError, RunNotFoundError)):
        return 404
    if isinstance(exc, InvalidAutomationError):
        return 422
    if isinstance(exc, AutomationDisabledError):
        return 409
    if isinstance(exc, AutomationConfigError):
        return 400
    return 500


class AutomationServer:
    """Serve the automation API on top of an :class:`AutomationService`."""

    def __init__(
        self,
        config: ServerConfig,
        service: AutomationService,
        templates: TemplateRegistry | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Server configuration
            service: Service executing triggers and managing automations
            templates: Template registry, defaults to the built-in templates
        """
        self._config = config
        self._service = service
        self._templates = templates or create_default_template_registry()
        self._app = FastAPI(title="Pilot Automation", lifespan=self._lifespan)
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None
        self._create_routes()

    @property
    def app(self) -> FastAPI:
        return self._app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        self._service.start()
        try:
            yield
        finally:
            await self._service.shutdown(close_store=False)

    # ------------------------------------------------------------------
    # FastAPI setup
    # ------------------------------------------------------------------
    def _verify_api_key(self, request: Request) -> None:
        expected = self._config.api_key
        if not expected:
            return
        if request.headers.get("X-API-Key") != expected:
            logger.warning("Rejected request to %s: invalid API key", request.url.path)
            raise _Unauthorized()

    def _create_routes(self) -> None:
        app = self._app
        service = self._service
        secured = [Depends(self._verify_api_key)]

        @app.exception_handler(AutomationError)
        async def automation_error(request: Request, exc: AutomationError) -> JSONResponse:
            status = _status_for(exc)
            body: dict[str, Any] = {"detail": str(exc)}
            if isinstance(exc, InvalidAutomationError):
                body["errors"] = exc.issues
            if status >= 500:
                logger.error("Request to %s failed: %s", request.url.path, exc, exc_info=True)
            return JSONResponse(status_code=status, content=body)

        @app.exception_handler(_Unauthorized)
        async def unauthorized(request: Request, exc: _Unauthorized) -> JSONResponse:
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})

        @app.get("/healthz")
        async def health() -> dict[str, str]:  # pragma: no cover - trivial
            return {"status": "ok"}

        # Triggers ------------------------------------------------------
        @app.post("/triggers", status_code=202, dependencies=secured)
        async def receive_trigger(stimulus: TriggerStimulus) -> dict[str, Any]:
            result = await service.handle_trigger(stimulus)
            return result.to_dict()

        @app.post("/triggers/changes", status_code=202, dependencies=secured)
        async def receive_change(change: ChangeNotification) -> dict[str, Any]:
            result = await service.handle_change(change)
            return result.to_dict()

        # Runs ------------------------------------------------------------
        @app.post("/automations/{automation_id}/test", dependencies=secured)
        async def test_automation(automation_id: str, body: RunTestRequest) -> dict[str, Any]:
            run = await service.run_test(automation_id, body.test_payload)
            return {
                "run": run.to_document(),
                "external_calls_performed": external_calls_performed(run),
            }

        @app.get("/runs/{run_id}", dependencies=secured)
        async def get_run(run_id: str) -> dict[str, Any]:
            run = await service.get_run(run_id)
            return run.to_document()

        @app.post("/runs/{run_id}/cancel", dependencies=secured)
        async def cancel_run(run_id: str) -> dict[str, Any]:
            accepted = await service.cancel_run(run_id)
            return {"runId": run_id, "cancelled": accepted}

        # Automations -----------------------------------------------------
        @app.get("/automations", dependencies=secured)
        async def list_automations(tenant_id: str | None = None) -> list[dict[str, Any]]:
            automations = await service.list_automations(tenant_id)
            return [automation.to_document() for automation in automations]

        @app.get("/automations/{automation_id}", dependencies=secured)
        async def get_automation(automation_id: str) -> dict[str, Any]:
            automation = await service.get_automation(automation_id)
            return automation.to_document()

        @app.put("/automations/{automation_id}", dependencies=secured)
        async def save_automation(automation_id: str, document: dict[str, Any]) -> dict[str, Any]:
            try:
                automation = Automation.from_document({**document, "id": automation_id})
            except ValidationError as exc:
                raise HTTPException(
                    status_code=422, detail=exc.errors(include_url=False, include_context=False)
                ) from exc
            saved, report = await service.save_automation(automation)
            return {"automation": saved.to_document(), "validation": report.to_dict()}

        @app.get("/automations/{automation_id}/validation", dependencies=secured)
        async def validate_automation(automation_id: str) -> dict[str, Any]:
            report = await service.validate(automation_id)
            return report.to_dict()

        @app.post("/automations/{automation_id}/enable", dependencies=secured)
        async def enable_automation(automation_id: str) -> dict[str, Any]:
            automation = await service.set_enabled(automation_id, True)
            return automation.to_document()

        @app.post("/automations/{automation_id}/disable", dependencies=secured)
        async def disable_automation(automation_id: str) -> dict[str, Any]:
            automation = await service.set_enabled(automation_id, False)
            return automation.to_document()

        @app.get("/automations/{automation_id}/runs", dependencies=secured)
        async def list_runs(automation_id: str, limit: int = 50) -> list[dict[str, Any]]:
            await service.get_automation(automation_id)
            runs = await service.list_runs(automation_id, limit)
            return [run.to_document() for run in runs]

        # Templates -------------------------------------------------------
        @app.get("/templates", dependencies=secured)
        async def list_templates(category: str | None = None) -> list[dict[str, Any]]:
            return [template.to_dict() for template in self._templates.list_templates(category)]

        @app.post("/templates/{template_id}/instantiate", status_code=201, dependencies=secured)
        async def instantiate_template(template_id: str, body: InstantiateRequest) -> dict[str, Any]:
            try:
                automation = self._templates.instantiate(template_id, body.tenant_id, body.name)
            except KeyError as exc:
                return JSONResponse(status_code=404, content={"detail": str(exc.args[0])})
            saved, report = await service.save_automation(automation)
            return {"automation": saved.to_document(), "validation": report.to_dict()}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread or not self._config.enabled:
            return

        config = uvicorn.Config(
            self._app,
            host=self._config.host,
            port=self._config.port,
            log_level="info",
        )
        self._server = uvicorn.Server(config)

        def _run() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                server = self._server
                if server is None:
                    logger.error("Server thread started without a uvicorn server instance")
                    return
                loop.run_until_complete(server.serve())
            finally:
                loop.close()

        self._thread = threading.Thread(
            target=_run,
            name="pilot-automation-server",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Automation API listening on http://%s:%s",
            self._config.host,
            self._config.port,
        )

    def serve(self) -> None:
        """Run the server in the calling thread until interrupted."""
        uvicorn.run(self._app, host=self._config.host, port=self._config.port, log_level="info")

    def stop(self) -> None:
        if self._server:
            self._server.should_exit = True
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Automation API stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())


class _Unauthorized(Exception):
    pass


__all__ = ["AutomationServer", "InstantiateRequest", "RunTestRequest"]
