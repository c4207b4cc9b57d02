"""FastAPI routes for the FlowChecker REST API."""

import json
import logging
import os
import sys
import time
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Security,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from flowchecker.checks.models import TRIGGER_KINDS, Category
from flowchecker.hub.constants import (
    EVENT_CACHE_UPDATED,
    EVENT_CHECK_COMPLETED,
    EVENT_CONFIG_UPDATED,
    EVENT_TRIGGER,
)
from flowchecker.hub.core import FlowCheckerHub

logger = logging.getLogger(__name__)

# --- Optional API key authentication ---
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_FLOWCHECKER_API_KEY = os.environ.get("FLOWCHECKER_API_KEY")


async def verify_api_key(key: str = Security(_api_key_header)):
    """Verify API key if FLOWCHECKER_API_KEY is configured, otherwise allow all."""
    if _FLOWCHECKER_API_KEY and key != _FLOWCHECKER_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")


# --- Pydantic request models ---
class ConfigUpdate(BaseModel):
    value: Any
    changed_by: str = "user"


class IntervalUpdate(BaseModel):
    minutes: Any


class ToggleUpdate(BaseModel):
    enabled: bool


class WebSocketManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict[str, Any]):
        """Send a message to every client, dropping the ones that fail."""
        disconnected = set()

        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Error broadcasting to WebSocket: {e}")
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(conn)


def _parse_category(category: str) -> Category:
    try:
        return Category.parse(category)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown category '{category}'") from None


def _flow_checker(hub: FlowCheckerHub):
    module = hub.get_module("flow_checker")
    if module is None:
        raise HTTPException(status_code=503, detail="FlowChecker module not loaded")
    return module


def _register_check_routes(router: APIRouter, hub: FlowCheckerHub) -> None:
    """Register settings, condition and user action endpoints."""

    @router.get("/api/settings")
    async def get_settings():
        """Full settings bundle (snapshots, toggles, interval)."""
        return _flow_checker(hub).store.bundle.to_dict()

    @router.get("/api/summary")
    async def get_summary():
        """Category → problem count, for the dashboard widget."""
        module = _flow_checker(hub)
        counts = module.store.bundle.counts()
        return {"counts": counts, "total": sum(counts.values())}

    @router.get("/api/conditions/{category}")
    async def get_condition(category: str):
        """Whether the category currently holds any problem items."""
        cat = _parse_category(category)
        return {"category": cat.value, "active": _flow_checker(hub).has_problems(cat)}

    @router.get("/api/status")
    async def get_status():
        """Module counters, schedule state and the last pass report."""
        module = _flow_checker(hub)
        try:
            last_check = await module.get_last_report()
        except Exception:
            logger.exception("Error reading last check report")
            raise HTTPException(status_code=500, detail="Internal server error") from None
        return {**module.status(), "last_check": last_check}

    @router.post("/api/check")
    async def force_check():
        """Run a check pass now and return its report."""
        module = _flow_checker(hub)
        try:
            return await module.run_check()
        except Exception:
            logger.exception("Forced check failed")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.put("/api/interval")
    async def put_interval(body: IntervalUpdate):
        """Set the poll period in whole minutes (minimum 3)."""
        try:
            return await _flow_checker(hub).set_interval(body.minutes)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    @router.put("/api/interval/enabled")
    async def put_interval_enabled(body: ToggleUpdate):
        """Enable or disable the recurring check."""
        return await _flow_checker(hub).set_enabled(body.enabled)

    @router.put("/api/notifications/{category}")
    async def put_notification(category: str, body: ToggleUpdate):
        """Toggle timeline notifications for one category."""
        cat = _parse_category(category)
        enabled = await _flow_checker(hub).set_notification(cat, body.enabled)
        return {"category": cat.value, "enabled": enabled}

    @router.get("/api/events")
    async def get_events(
        trigger: str | None = None,
        category: str | None = None,
        limit: int = Query(default=100, le=1000),
    ):
        """Recent triggers, newest first."""
        if trigger is not None and trigger not in TRIGGER_KINDS:
            raise HTTPException(status_code=400, detail=f"Unknown trigger '{trigger}'")
        cat = _parse_category(category).value if category else None
        try:
            rows = await hub.cache.get_events(event_type=EVENT_TRIGGER, category=cat, limit=limit)
        except Exception:
            logger.exception("Error reading events")
            raise HTTPException(status_code=500, detail="Internal server error") from None
        if trigger is not None:
            rows = [r for r in rows if (r.get("data") or {}).get("trigger") == trigger]
        return {"events": rows, "count": len(rows)}


def _register_config_routes(router: APIRouter, hub: FlowCheckerHub) -> None:
    """Register config CRUD and history endpoints."""

    @router.get("/api/config")
    async def get_all_config():
        try:
            configs = await hub.cache.get_all_config()
            return {"configs": configs}
        except Exception:
            logger.exception("Error getting all config")
            raise HTTPException(status_code=500, detail="Internal server error") from None

    @router.post("/api/config/reset/{key:path}")
    async def reset_config(key: str):
        try:
            config = await hub.cache.reset_config(key)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        await hub.publish(EVENT_CONFIG_UPDATED, {"key": key, "value": config["value"]})
        return config

    @router.get("/api/config/{key:path}")
    async def get_config(key: str):
        config = await hub.cache.get_config(key)
        if config is None:
            raise HTTPException(status_code=404, detail=f"Config key '{key}' not found")
        return config

    @router.put("/api/config/{key:path}")
    async def put_config(key: str, body: ConfigUpdate):
        try:
            config = await hub.cache.set_config(key, body.value, changed_by=body.changed_by)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        await hub.publish(EVENT_CONFIG_UPDATED, {"key": key, "value": config["value"]})
        return config

    @router.get("/api/config-history")
    async def get_config_history(key: str | None = None, limit: int = Query(default=50, le=1000)):
        history = await hub.cache.get_config_history(key=key, limit=limit)
        return {"history": history, "count": len(history)}


def create_api(hub: FlowCheckerHub) -> FastAPI:
    """Create FastAPI application with hub routes.

    Args:
        hub: FlowCheckerHub instance

    Returns:
        FastAPI application
    """
    from flowchecker import __version__

    app = FastAPI(
        title="FlowChecker",
        description="REST API for FlowChecker, Homey flow and logic variable monitoring",
        version=__version__,
    )

    ws_manager = WebSocketManager()

    @app.middleware("http")
    async def request_timing_middleware(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start
        if elapsed > 1.0:
            logger.warning(f"{request.method} {request.url.path} took {elapsed:.2f}s")
        else:
            logger.debug(f"{request.method} {request.url.path} took {elapsed:.3f}s")
        return response

    async def broadcast_trigger(data: dict[str, Any]):
        await ws_manager.broadcast({"type": "trigger", **data})

    async def broadcast_cache_update(data: dict[str, Any]):
        await ws_manager.broadcast({"type": "cache_updated", "data": data})

    async def broadcast_check_completed(data: dict[str, Any]):
        await ws_manager.broadcast({"type": "check_completed", "data": data})

    hub.subscribe(EVENT_TRIGGER, broadcast_trigger)
    hub.subscribe(EVENT_CACHE_UPDATED, broadcast_cache_update)
    hub.subscribe(EVENT_CHECK_COMPLETED, broadcast_check_completed)

    router = APIRouter(dependencies=[Depends(verify_api_key)])

    @app.get("/")
    async def root():
        """API root - health check."""
        return {"status": "ok", "service": "FlowChecker"}

    @app.get("/health")
    async def health():
        """Detailed health check with module status and uptime."""
        try:
            health_data = await hub.health_check()
            return JSONResponse(content=health_data)
        except Exception:
            logger.exception("Health check failed")
            return JSONResponse(status_code=500, content={"status": "error", "error": "Health check failed"})

    @router.get("/api/version")
    async def get_version():
        return {
            "version": __version__,
            "package": "homey-flowchecker",
            "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        }

    _register_check_routes(router, hub)
    _register_config_routes(router, hub)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint pushing triggers as they fire."""
        if _FLOWCHECKER_API_KEY:
            token = websocket.query_params.get("token")
            if token != _FLOWCHECKER_API_KEY:
                await websocket.close(code=4003)
                return

        await ws_manager.connect(websocket)

        try:
            await websocket.send_json({"type": "connected", "message": "Connected to FlowChecker"})

            while True:
                try:
                    data = await websocket.receive_text()
                    message = json.loads(data)

                    if message.get("type") == "ping":
                        await websocket.send_json({"type": "pong"})
                    else:
                        logger.debug(f"Received WebSocket message: {message}")

                except WebSocketDisconnect:
                    break
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                except Exception as e:
                    logger.error(f"WebSocket error: {e}")
                    break

        finally:
            ws_manager.disconnect(websocket)

    app.include_router(router)

    return app
