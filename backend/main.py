import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from linelight.cache.remote import create_remote_cache
from linelight.cache.resource_cache import ResourceCache
from linelight.cache.ttl import TTLCache
from linelight.data.modes import is_mode
from linelight.data.stops_repo import index_stops
from linelight.eta.report import generate_eta_report
from linelight.mbta.client import MbtaClient
from linelight.middleware import RequestLoggingMiddleware
from linelight.monitoring.metrics import get_metrics
from linelight.polling.scheduler import Poller
from linelight.stations.board import build_station_board
from linelight.stations.home import HomeQuery, build_home_snapshot
from linelight.stations.mapping_report import build_station_mapping_report
from linelight.stations.summaries import STATION_CACHE_TTL_SECONDS, build_station_summaries
from linelight.views.insights import build_system_insights
from linelight.views.lines import build_line_overview, build_line_summaries
from linelight.views.shapes import build_line_shapes
from linelight.views.trips import build_trip_track
from linelight.views.vehicles import build_vehicle_snapshots
from settings import get_settings

settings = get_settings()

# Structured logging: include module and level; telemetry events carry key=value pairs
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=["300/minute"])

# Query bounds
LAT_MIN, LAT_MAX = -90.0, 90.0
LNG_MIN, LNG_MAX = -180.0, 180.0
HOME_RADIUS_MIN, HOME_RADIUS_MAX, HOME_RADIUS_DEFAULT = 100, 5000, 1200
HOME_LIMIT_MIN, HOME_LIMIT_MAX, HOME_LIMIT_DEFAULT = 1, 20, 10
STATIONS_LIMIT_MAX, STATIONS_LIMIT_DEFAULT = 1200, 900

ERROR_CODES = {400: "bad_request", 404: "not_found", 429: "rate_limited", 500: "internal_error", 503: "unavailable"}


def _error(status_code: int, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": ERROR_CODES.get(status_code, "error"), "message": message},
    )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _split_list(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _mode_filter(mode: str | None):
    return mode if is_mode(mode) else None


def _require(name: str):
    value = getattr(app.state, name, None)
    if value is None:
        raise _error(503, "Service is starting up. Try again shortly.")
    return value


@asynccontextmanager
async def lifespan(app: FastAPI):
    remote = create_remote_cache(settings.redis_url)
    await remote.connect()
    cache = ResourceCache(remote)
    await cache.hydrate()
    client = MbtaClient(
        api_key=settings.mbta_api_key,
        base_url=settings.mbta_api_base_url,
        rate_limit_window_seconds=settings.mbta_rate_limit_window_seconds,
        rate_limit_max_requests=settings.mbta_rate_limit_max_requests,
        max_retries=settings.mbta_max_retries,
        retry_base_delay_seconds=settings.mbta_retry_base_delay_seconds,
        retry_max_delay_seconds=settings.mbta_retry_max_delay_seconds,
    )
    poller = Poller(client, cache)
    if settings.enable_polling:
        poller.start()
    else:
        logger.info("telemetry polling_disabled")
    app.state.cache = cache
    app.state.mbta_client = client
    app.state.station_memo = TTLCache(STATION_CACHE_TTL_SECONDS)
    app.state.poller = poller
    yield
    await poller.stop()
    await cache.flush()
    await client.aclose()
    await remote.close()
    app.state.cache = None
    app.state.mbta_client = None
    app.state.poller = None


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error as {error, message}."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = {"error": ERROR_CODES.get(exc.status_code, "error"), "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": "bad_request", "message": f"Invalid parameters: {fields}" if fields else "Invalid request"},
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    """Return consistent JSON error for unhandled exceptions (500)."""
    logger.exception("telemetry unhandled_exception path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "An unexpected error occurred. Please try again later."},
    )


# Order: last added = innermost. So RequestLogging runs first (outermost), then CORS.
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/favicon.ico", include_in_schema=False)
@limiter.exempt
def favicon(request: Request):
    """Return 204 so browser favicon requests don't log 404."""
    return Response(status_code=204)


@app.get("/api/health")
@limiter.exempt
def health(request: Request):
    cache: ResourceCache | None = getattr(app.state, "cache", None)
    client: MbtaClient | None = getattr(app.state, "mbta_client", None)
    routes = cache.get_routes() if cache else None
    remote = cache.remote if cache else None
    remote_status = remote.status if remote else "disabled"
    remote_error = getattr(remote, "last_error", None)
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "base_url": client.base_url if client else settings.mbta_api_base_url,
        "cached_routes": len(routes.data) if routes else 0,
        "cache_health": cache.get_health() if cache else None,
        "telemetry": client.telemetry.snapshot() if client else None,
        "remote_cache": {
            "status": remote_status,
            "error": remote_error,
            "healthy": remote_status == "ready" and not remote_error,
        },
    }


@app.get("/metrics")
@limiter.exempt
def metrics(request: Request):
    """Request counts and uptime. Production: use a Prometheus exporter if needed."""
    return get_metrics()


# --- Home and station boards ---


@app.get("/api/home")
@limiter.limit(settings.api_rate_limit)
async def home(
    request: Request,
    lat: float | None = None,
    lng: float | None = None,
    radius: float | None = None,
    limit: int | None = None,
    favorites: str | None = None,
):
    if lat is None or lng is None:
        raise _error(400, "lat and lng are required")
    if not (LAT_MIN <= lat <= LAT_MAX) or not (LNG_MIN <= lng <= LNG_MAX):
        raise _error(400, "lat/lng out of range")
    cache: ResourceCache = _require("cache")
    client: MbtaClient = _require("mbta_client")
    query = HomeQuery(
        lat=lat,
        lng=lng,
        radius_meters=_clamp(radius if radius is not None else HOME_RADIUS_DEFAULT, HOME_RADIUS_MIN, HOME_RADIUS_MAX),
        limit=int(_clamp(limit if limit is not None else HOME_LIMIT_DEFAULT, HOME_LIMIT_MIN, HOME_LIMIT_MAX)),
        favorite_stop_ids=tuple(_split_list(favorites)),
    )
    logger.info("telemetry route=home radius=%s limit=%s favorites=%s", query.radius_meters, query.limit, len(query.favorite_stop_ids))
    try:
        return await build_home_snapshot(cache, client, query)
    except Exception as e:
        logger.error("telemetry home_snapshot_error error=%s", str(e), extra={"error": str(e)})
        raise _error(500, "Unable to build home snapshot") from e


@app.get("/api/stations/{stop_id}/board")
@limiter.limit(settings.api_rate_limit)
async def station_board(request: Request, stop_id: str, lat: float | None = None, lng: float | None = None):
    cache: ResourceCache = _require("cache")
    client: MbtaClient = _require("mbta_client")
    try:
        board = await build_station_board(cache, client, stop_id, lat=lat, lng=lng)
    except Exception as e:
        logger.error("telemetry station_board_error stop_id=%s error=%s", stop_id, str(e), extra={"stop_id": stop_id})
        raise _error(500, "Unable to build station board") from e
    if board is None:
        raise _error(404, "Station data unavailable")
    return board


@app.get("/api/trips/{trip_id}/track")
@limiter.limit(settings.api_rate_limit)
async def trip_track(request: Request, trip_id: str):
    cache: ResourceCache = _require("cache")
    client: MbtaClient = _require("mbta_client")
    try:
        trip = await build_trip_track(client, cache, trip_id)
    except Exception as e:
        logger.error("telemetry trip_track_error trip_id=%s error=%s", trip_id, str(e), extra={"trip_id": trip_id})
        raise _error(500, "Unable to build trip track") from e
    if trip is None:
        raise _error(404, "Trip data unavailable")
    return trip


@app.get("/api/stations")
def stations(request: Request, limit: int | None = None, mode: str | None = None):
    cache: ResourceCache = _require("cache")
    limit = int(_clamp(limit or STATIONS_LIMIT_DEFAULT, 1, STATIONS_LIMIT_MAX))
    memo: TTLCache | None = getattr(app.state, "station_memo", None)
    return {"stations": build_station_summaries(cache, limit=limit, mode=_mode_filter(mode), memo=memo)}


# --- Lines, vehicles, insights ---


@app.get("/api/lines")
def lines(request: Request, mode: str | None = None):
    return build_line_summaries(_require("cache"), mode=_mode_filter(mode))


@app.get("/api/lines/{line_id}/overview")
def line_overview(request: Request, line_id: str):
    overview = build_line_overview(_require("cache"), line_id)
    if overview is None:
        raise _error(404, "Line not found or data not ready")
    return {"line": overview}


async def _shapes_or_404(shape_id: str, label: str):
    cache: ResourceCache = _require("cache")
    client: MbtaClient = _require("mbta_client")
    try:
        payload = await build_line_shapes(cache, client, shape_id)
    except Exception as e:
        logger.error("telemetry shapes_error id=%s error=%s", shape_id, str(e), extra={"id": shape_id})
        raise _error(500, f"Unable to fetch {label} shapes") from e
    if payload is None:
        raise _error(404, f"{label.capitalize()} shapes not available")
    return payload


@app.get("/api/lines/{line_id}/shapes")
async def line_shapes(request: Request, line_id: str):
    return await _shapes_or_404(line_id, "line")


@app.get("/api/routes/{route_id}/shapes")
async def route_shapes(request: Request, route_id: str):
    return await _shapes_or_404(route_id, "route")


@app.get("/api/vehicles")
def vehicles(request: Request, mode: str | None = None):
    return build_vehicle_snapshots(_require("cache"), mode=_mode_filter(mode))


@app.get("/api/system/insights")
def system_insights(request: Request):
    return {"insights": build_system_insights(_require("cache"))}


@app.get("/api/raw/routes")
def raw_routes(request: Request):
    routes = _require("cache").get_routes()
    return {"routes": routes.data if routes else [], "fetched_at": routes.fetched_at if routes else None}


# --- Diagnostics ---

if settings.enable_diagnostics:

    @app.get("/api/dev/reports/eta")
    async def eta_report(request: Request, stop_id: str | None = None):
        stop_ids = _split_list(stop_id)
        if not stop_ids:
            raise _error(400, "Provide at least one stop_id query param")
        cache: ResourceCache = _require("cache")
        client: MbtaClient = _require("mbta_client")
        stops_entry = cache.get_stops()
        if stops_entry is None:
            raise _error(503, "Stops cache is not ready yet")
        try:
            return await generate_eta_report(client, stop_ids, stop_index=index_stops(stops_entry.data))
        except Exception as e:
            logger.exception("telemetry eta_report_error stops=%s", ",".join(stop_ids))
            raise _error(500, "ETA report failed") from e

    @app.get("/api/dev/reports/stations")
    def station_mapping_report(request: Request, stop_id: str | None = None):
        stops_entry = _require("cache").get_stops()
        if stops_entry is None:
            raise _error(503, "Stops cache is not ready yet")
        return build_station_mapping_report(stops_entry.data, stop_ids=_split_list(stop_id) or None)
