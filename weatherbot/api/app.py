"""Read-only REST API over the weather log."""

import asyncio
import json
import logging
from typing import Optional

from aiohttp import web

from weatherbot.shared.database import ReadingStore
from weatherbot.shared.errors import StoreError
from weatherbot.shared.stats import DEFAULT_WINDOW_LIMIT, median_weather

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

STORE_KEY = web.AppKey("store", ReadingStore)


def _int_param(request: web.Request, name: str, default: int, maximum: Optional[int] = None) -> int:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"{name} must be an integer"}), content_type="application/json"
        )
    if value < 1 or (maximum is not None and value > maximum):
        bound = f"between 1 and {maximum}" if maximum is not None else "positive"
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"{name} must be {bound}"}), content_type="application/json"
        )
    return value


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Allow any origin, like the dashboard expects."""
    response = await handler(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    return response


@web.middleware
async def store_error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except StoreError as e:
        logger.error(f"Storage error serving {request.path}: {e}")
        return web.json_response({"error": "storage unavailable"}, status=503)


async def list_readings(request: web.Request) -> web.Response:
    """GET / - most recent readings, newest first."""
    limit = _int_param(request, "limit", DEFAULT_LIMIT, MAX_LIMIT)
    store = request.app[STORE_KEY]
    readings = await asyncio.to_thread(store.recent, limit)
    return web.json_response({"messages": [r.to_dict() for r in readings]})


async def median(request: web.Request) -> web.Response:
    """GET /median - medians over the last ``days`` days."""
    days = _int_param(request, "days", 1)
    limit = _int_param(request, "limit", DEFAULT_WINDOW_LIMIT, MAX_LIMIT * 10)
    store = request.app[STORE_KEY]
    summary = await asyncio.to_thread(median_weather, store, days, limit)
    return web.json_response({"median": summary.to_dict() if summary else None})


def create_app(store: ReadingStore) -> web.Application:
    """Build the API application around a reading store."""
    app = web.Application(middlewares=[cors_middleware, store_error_middleware])
    app[STORE_KEY] = store
    app.router.add_get("/", list_readings)
    app.router.add_get("/median", median)
    return app
