"""
Welldash backend: widget data scoped by hierarchy node or device.
Caller identity (companyId, role) comes from the Bearer token, see auth.py.
Responses use the {success, data | message[, error]} envelope dashboards expect.
"""
import logging
from typing import Any

import psycopg
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import service
from .auth import Principal, get_principal
from .config import configure_logging, settings
from .db import get_conn, ping
from .errors import Forbidden, InvalidRequest, WelldashError
from .timeseries import DEFAULT_TIME_RANGE, parse_limit
from .widgets import list_device_types, load_property_mappings

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Welldash", version="0.1.0")

# CORS: with credentials (Bearer tokens) do not use allow_origins=["*"].
# Set CORS_ORIGINS to comma-separated origins (e.g. https://dash.example.com).
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(WelldashError)
async def welldash_error_handler(request: Request, exc: WelldashError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error", "error": str(exc)})


def _store_failure(message: str, exc: Exception) -> JSONResponse:
    logger.error(f"{message}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"success": False, "message": message, "error": str(exc)})


# ---------- Widget data ----------

@app.get("/api/widgets/widget-data/{widget_id}")
def widget_data(
    widget_id: str,
    timeRange: str = Query(DEFAULT_TIME_RANGE),
    hierarchyId: str | None = Query(None),
    deviceId: str | None = Query(None),
    limit: str | None = Query(None),
    principal: Principal = Depends(get_principal),
):
    """Per-series time series for one widget.
    Returns: { "success", "data": { displayName: { "data": [ {timestamp, serialNumber, value} ], "unit", "propertyName" } }, "config" }
    """
    try:
        result = service.fetch_widget_data(
            principal.company_id,
            widget_id,
            time_range=timeRange,
            hierarchy_id=hierarchyId,
            device_id=deviceId,
            limit=parse_limit(limit),
        )
    except psycopg.Error as e:
        return _store_failure("Failed to fetch widget data", e)
    return result.to_dict()


@app.get("/api/widgets/widget-data/{widget_id}/chart")
def widget_chart(
    widget_id: str,
    timeRange: str = Query(DEFAULT_TIME_RANGE),
    hierarchyId: str | None = Query(None),
    deviceId: str | None = Query(None),
    limit: str | None = Query(None),
    principal: Principal = Depends(get_principal),
):
    """Same data as widget-data, reshaped to one row per timestamp.
    Returns: { "success", "data": { "rows", "seriesNames", "units" }, "config" }
    """
    try:
        result = service.fetch_widget_data(
            principal.company_id,
            widget_id,
            time_range=timeRange,
            hierarchy_id=hierarchyId,
            device_id=deviceId,
            limit=parse_limit(limit),
        )
    except psycopg.Error as e:
        return _store_failure("Failed to fetch widget data", e)
    return {"success": True, "data": result.chart().to_dict(), "config": result.widget.raw_config}


@app.get("/api/widgets/widget-data/{widget_id}/latest")
def widget_latest(
    widget_id: str,
    hierarchyId: str | None = Query(None),
    deviceId: str | None = Query(None),
    principal: Principal = Depends(get_principal),
):
    """Latest value per device and the mean across devices, per series (KPI cards)."""
    try:
        widget, latest = service.fetch_widget_latest(
            principal.company_id,
            widget_id,
            hierarchy_id=hierarchyId,
            device_id=deviceId,
        )
    except psycopg.Error as e:
        return _store_failure("Failed to fetch latest widget data", e)
    if not widget.has_series:
        return {"success": True, "data": None, "message": service.NO_SERIES_MESSAGE}
    return {
        "success": True,
        "data": {name: series.to_dict() for name, series in latest.items()},
        "config": widget.raw_config,
    }


# ---------- Catalog ----------

@app.get("/api/widgets/device-types")
def device_types(principal: Principal = Depends(get_principal)):
    if not principal.is_admin:
        raise Forbidden("Only admins can access this endpoint")
    try:
        with get_conn() as conn:
            rows = list_device_types(conn)
    except psycopg.Error as e:
        return _store_failure("Failed to fetch device types", e)
    return {"success": True, "data": rows}


@app.get("/api/widgets/available-widgets")
def available_widgets(
    deviceTypeId: str | None = Query(None),
    principal: Principal = Depends(get_principal),
):
    if not deviceTypeId:
        raise InvalidRequest("deviceTypeId is required")
    try:
        with get_conn() as conn:
            catalog: dict[str, Any] = load_property_mappings(conn, deviceTypeId)
    except psycopg.Error as e:
        return _store_failure("Failed to fetch available widgets", e)
    return {"success": True, "data": catalog}


@app.get("/health")
def health():
    ok = ping()
    return JSONResponse(status_code=200 if ok else 503, content={"status": "ok" if ok else "unavailable"})


@app.get("/")
def root():
    return {"name": "Welldash API", "docs": "/docs"}
