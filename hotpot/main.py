"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import asyncio
import logging
import time

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import (
    Settings,
    build_controller,
    load_controller_config,
    save_controller_config,
    settings as default_settings,
)
from .core import Controller, FileCalendar, Location, Timeline
from .core import Request as HeatingRequest
from .hardware import create_backend
from .schemas import (
    CalendarEntryPayload,
    ControllerConfig,
    HealthModel,
    RequestPayload,
    TimelineModel,
)
from .services import AlertService

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("hotpot.requests")


def create_app(
    settings: Optional[Settings] = None,
    controller: Optional[Controller] = None,
    config: Optional[ControllerConfig] = None,
) -> FastAPI:
    """
    Build and configure the FastAPI application. We keep everything in this
    factory so Uvicorn (and unit tests) can import `app` without side
    effects; the controller is only built and started in the lifespan
    handler. Tests may pass a ready-made `controller` (and its `config`).
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        nonlocal controller, config
        if config is None:
            config = load_controller_config(settings.config_path)
        if controller is None:
            backend = create_backend(settings.hardware_mode)
            logger.info("hotpot.backend mode=%s", backend.name)
            controller = build_controller(config, backend, settings.config_path.parent)

        alerts = AlertService(settings.alert_webhook)
        controller.set_alert_handler(alerts.thermostat_alert)

        app.state.settings = settings
        app.state.config = config
        app.state.controller = controller
        app.state.alerts = alerts

        await controller.initialise()
        if config.location is not None:
            await controller.set_location(Location.from_dict(config.location.model_dump()))
        logger.info("hotpot.started routes=%s", [route.path for route in app.routes])
        try:
            yield
        finally:
            logger.info("hotpot.stopping")
            controller.stop()

    app = FastAPI(title="Hotpot", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time
        request_logger.info(
            "http path=%s status=%s duration=%.3fs",
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed bodies are client errors like any other bad request
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    def get_controller(request: Request) -> Controller:
        ctl: Controller = request.app.state.controller
        return ctl

    def get_file_calendar(
        request: Request,
        name: Optional[str] = Query(None, alias="calendar"),
    ) -> FileCalendar:
        ctl: Controller = request.app.state.controller
        for cal_name, calendar in ctl.calendars.items():
            if isinstance(calendar, FileCalendar) and (name is None or name == cal_name):
                return calendar
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No editable calendar")

    @app.get("/health", response_model=HealthModel)
    async def health(request: Request) -> HealthModel:
        alerts: AlertService = request.app.state.alerts
        return HealthModel(
            status="ok",
            hardware_mode=request.app.state.settings.hardware_mode,
            alerts=alerts.recent(),
        )

    @app.get("/state")
    async def get_state(ctl: Controller = Depends(get_controller)) -> Dict[str, Any]:
        return await ctl.get_serialisable_state()

    @app.get("/log")
    async def get_all_logs(
        since: Optional[float] = Query(None),
        ctl: Controller = Depends(get_controller),
    ) -> Dict[str, Any]:
        return await ctl.get_serialisable_log(since)

    @app.get("/log/{kind}/{name}")
    async def get_log(
        kind: str,
        name: str,
        since: Optional[float] = Query(None),
        ctl: Controller = Depends(get_controller),
    ) -> Optional[List[float]]:
        try:
            return await ctl.get_log(kind, name, since)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    @app.get("/config")
    async def get_config(request: Request, path: str = Query("")) -> Any:
        node: Any = request.app.state.config.model_dump(exclude_none=True)
        for part in [p for p in path.split("/") if p]:
            if not isinstance(node, dict) or part not in node:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"No config at {path}",
                )
            node = node[part]
        return node

    @app.post("/config")
    async def set_config(
        request: Request,
        payload: TimelineModel,
        path: str = Query(...),
        ctl: Controller = Depends(get_controller),
    ) -> Dict[str, Any]:
        """
        Replace a thermostat timeline, e.g. path=thermostat/CH/timeline.
        Only timelines are editable at runtime.
        """
        parts = [p for p in path.split("/") if p]
        if len(parts) != 3 or parts[0] != "thermostat" or parts[2] != "timeline":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot set config at {path}",
            )
        name = parts[1]
        if name not in ctl.thermostats:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown thermostat {name}",
            )
        try:
            timeline = Timeline.from_dict(payload.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

        ctl.thermostats[name].timeline = timeline
        config: ControllerConfig = request.app.state.config
        if name in config.thermostat:
            config.thermostat[name].timeline = payload
        try:
            await asyncio.to_thread(
                save_controller_config, request.app.state.settings.config_path, config
            )
        except OSError as exc:
            logger.error("config.save_failed error=%s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Timeline applied but the config could not be saved",
            )
        logger.info("config.timeline_replaced thermostat=%s points=%s", name, timeline.n_points)
        return timeline.to_dict()

    @app.post("/request")
    async def make_request(
        payload: RequestPayload,
        ctl: Controller = Depends(get_controller),
    ) -> Dict[str, Any]:
        try:
            heating_request = HeatingRequest.from_dict(payload.model_dump())
            ctl.make_request(payload.service, heating_request)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return {"service": payload.service, "request": heating_request.to_dict()}

    @app.get("/calendar/events")
    async def calendar_events(
        calendar: FileCalendar = Depends(get_file_calendar),
    ) -> List[Dict[str, Any]]:
        return await calendar.load()

    @app.post("/calendar/add", status_code=status.HTTP_201_CREATED)
    async def calendar_add(
        payload: CalendarEntryPayload,
        calendar: FileCalendar = Depends(get_file_calendar),
    ) -> Dict[str, Any]:
        try:
            event_id = await calendar.add_event(payload.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return {"id": event_id}

    @app.post("/calendar/change/{event_id}")
    async def calendar_change(
        event_id: int,
        payload: CalendarEntryPayload,
        calendar: FileCalendar = Depends(get_file_calendar),
    ) -> Dict[str, Any]:
        try:
            await calendar.change_event(event_id, payload.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return {"id": event_id}

    @app.post("/calendar/remove/{event_id}")
    async def calendar_remove(
        event_id: int,
        calendar: FileCalendar = Depends(get_file_calendar),
    ) -> Dict[str, Any]:
        try:
            await calendar.remove_event(event_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        return {"id": event_id}

    return app


# Uvicorn expects a module-level variable named "app".
app = create_app()
