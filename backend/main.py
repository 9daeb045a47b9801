"""Trail Mapper backend service.

Serves the walk library, the manual route builder, AI walk suggestions,
library-wide re-routing, GPX export and a same-origin proxy for the
OpenRouteService directions API.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

import googlemaps
import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import geometry
import walk_export
from errors import MalformedAIResponse, NoCredentials, RoutingUnavailable
from local_settings import LocalSettings, data_dir, mask
from models import (
    AssemblyResult,
    BuildRouteRequest,
    Difficulty,
    ElevationPoint,
    ElevationProfileResponse,
    GeocodeRequest,
    GeocodeResponse,
    ImportWalkRequest,
    RerouteReport,
    SettingsUpdate,
    SettingsView,
    SuggestWalkRequest,
    Walk,
    WalkType,
)
from reroute import reroute_all
from route_assembly import RouteAssembler
from routing_client import REQUEST_TIMEOUT_S, RoutingClient, post_to_ors
from walk_store import SNAPSHOT_FILENAME, WalkStore
from walk_suggestions import WalkSuggestionClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything the endpoints share, owned by the application lifespan."""

    settings: LocalSettings
    store: WalkStore
    routing: RoutingClient
    suggestions: WalkSuggestionClient
    assembler: RouteAssembler
    proxy_http: httpx.AsyncClient | None = None
    """Client used by the ORS proxy endpoint; a fresh one per call if unset."""

    build_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    suggest_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    reroute_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def build_context() -> AppContext:
    """Builds the context from environment variables and local files."""
    settings = LocalSettings()
    store = WalkStore(data_dir() / SNAPSHOT_FILENAME)
    store.load()
    routing = RoutingClient.from_env(settings)
    suggestions = WalkSuggestionClient(settings)
    return AppContext(
        settings=settings,
        store=store,
        routing=routing,
        suggestions=suggestions,
        assembler=RouteAssembler(routing, suggestions),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context()
    yield


app = FastAPI(
    title="Trail Mapper Backend",
    description="Walking route library, route builder and AI walk generation.",
    version="1.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


@asynccontextmanager
async def _exclusive(lock: asyncio.Lock, operation: str) -> AsyncIterator[None]:
    """Rejects a second call of the same operation while one is in flight."""
    if lock.locked():
        raise HTTPException(status_code=409, detail=f"{operation} already in progress.")
    async with lock:
        yield


def _walk_or_404(ctx: AppContext, index: int) -> Walk:
    try:
        return ctx.store.get(index)
    except IndexError:
        raise HTTPException(status_code=404, detail=f"No walk at index {index}.") from None


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint used to verify the service is live."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Walk library
# ---------------------------------------------------------------------------


@app.get("/walks", response_model=list[Walk])
async def list_walks(
    difficulty: Difficulty | None = None,
    walk_type: WalkType | None = None,
    ctx: AppContext = Depends(get_context),
) -> list[Walk]:
    """Lists the library, optionally filtered by difficulty and walk type."""
    return ctx.store.filter(difficulty=difficulty, walk_type=walk_type)


@app.post("/walks", response_model=Walk, status_code=201)
async def add_walk(walk: Walk, ctx: AppContext = Depends(get_context)) -> Walk:
    ctx.store.add(walk)
    return walk


@app.put("/walks", response_model=list[Walk])
async def replace_walks(
    walks: list[Walk], ctx: AppContext = Depends(get_context)
) -> list[Walk]:
    """Replaces the whole library."""
    ctx.store.replace_all(walks)
    return ctx.store.walks


@app.get("/walks/export")
async def export_library(ctx: AppContext = Depends(get_context)) -> Response:
    """Returns the full library as a downloadable JSON file."""
    return Response(
        content=walk_export.library_to_json(ctx.store.walks),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="trail-mapper-walks.json"'},
    )


@app.post("/walks/import", response_model=Walk, status_code=201)
async def import_walk(
    request: ImportWalkRequest, ctx: AppContext = Depends(get_context)
) -> Walk:
    """Adds a walk pasted as raw JSON.

    Raises:
        HTTPException 400: If the JSON is invalid or lacks name/lat.
    """
    try:
        walk = walk_export.import_walk(request.json_text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    ctx.store.add(walk)
    return walk


@app.get("/walks/{index}", response_model=Walk)
async def get_walk(index: int, ctx: AppContext = Depends(get_context)) -> Walk:
    return _walk_or_404(ctx, index)


@app.get("/walks/{index}/gpx")
async def walk_gpx(index: int, ctx: AppContext = Depends(get_context)) -> Response:
    """Downloads the walk's track as GPX."""
    walk = _walk_or_404(ctx, index)
    return Response(
        content=walk_export.generate_gpx(walk),
        media_type="application/gpx+xml",
        headers={
            "Content-Disposition": f'attachment; filename="{walk_export.gpx_filename(walk)}"'
        },
    )


@app.get("/walks/{index}/elevation-profile", response_model=ElevationProfileResponse)
async def walk_elevation_profile(
    index: int, ctx: AppContext = Depends(get_context)
) -> ElevationProfileResponse:
    """Returns the synthetic elevation profile drawn under the detail map."""
    walk = _walk_or_404(ctx, index)
    profile = geometry.elevation_profile(walk.waypoints, walk.elevation)
    return ElevationProfileResponse(
        total_distance_m=profile[-1][0] if profile else 0.0,
        max_elevation_m=max((e for _, e in profile), default=0.0),
        points=[ElevationPoint(distance_m=d, elevation_m=e) for d, e in profile],
    )


# ---------------------------------------------------------------------------
# Route building and AI suggestions
# ---------------------------------------------------------------------------


@app.post("/build-route", response_model=AssemblyResult)
async def build_route(
    request: BuildRouteRequest, ctx: AppContext = Depends(get_context)
) -> AssemblyResult:
    """Builds a walk from the route builder's car park and destination pins.

    Always returns a walk. When the trail router is unavailable the path is a
    straight-line preview and ``approximate`` is true.

    Raises:
        HTTPException 409: If a build is already in progress.
    """
    async with _exclusive(ctx.build_lock, "Route generation"):
        result = await ctx.assembler.build_from_pins(request)
        if request.add_to_library:
            ctx.store.add(result.walk)
        return result


@app.post("/suggest-walk", response_model=AssemblyResult)
async def suggest_walk(
    request: SuggestWalkRequest, ctx: AppContext = Depends(get_context)
) -> AssemblyResult:
    """Generates a walk from a natural-language description.

    Claude drafts the walk, then the route assembler fetches a real trail
    for it (or a straight-line approximation) and fills in directions.

    Raises:
        HTTPException 400: If the prompt is empty.
        HTTPException 409: If a suggestion is already in progress.
        HTTPException 502: If Claude fails or returns an unusable walk.
        HTTPException 503: If no Anthropic API key is configured.
    """
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="prompt must not be empty.")
    async with _exclusive(ctx.suggest_lock, "Walk generation"):
        try:
            draft = await ctx.suggestions.suggest_walk(request.prompt)
        except NoCredentials as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except MalformedAIResponse as exc:
            logger.warning("Unusable walk suggestion: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("suggest_walk failed")
            raise HTTPException(
                status_code=502,
                detail="Failed to generate a walk. Please try again.",
            ) from exc

        result = await ctx.assembler.assemble(draft)
        if request.add_to_library:
            ctx.store.add(result.walk)
        return result


@app.post("/reroute-all", response_model=RerouteReport)
async def reroute_library(ctx: AppContext = Depends(get_context)) -> RerouteReport:
    """Re-routes every walk in the library against real trail data.

    Walks are routed one at a time with pauses for the routing service's rate
    limits, so this takes a while. Failed walks are reported, not fatal.

    Raises:
        HTTPException 409: If a re-route is already in progress.
    """
    async with _exclusive(ctx.reroute_lock, "Re-routing"):
        try:
            report = await reroute_all(ctx.store.walks, ctx.routing)
        finally:
            ctx.store.save()
        return report


# ---------------------------------------------------------------------------
# ORS proxy
# ---------------------------------------------------------------------------


@app.post("/api/ors")
async def ors_proxy(request: Request, ctx: AppContext = Depends(get_context)) -> Response:
    """Forwards a directions request to ORS with the server-held key.

    The body is passed through verbatim and the upstream status and body are
    relayed unchanged. Answers 500 when no ``ORS_API_KEY`` is configured.
    """
    api_key = os.environ.get("ORS_API_KEY", "")
    if not api_key:
        return JSONResponse(status_code=500, content={"error": "ORS API key not configured"})

    body = await request.body()
    try:
        if ctx.proxy_http is not None:
            upstream = await post_to_ors(ctx.proxy_http, body, api_key)
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as http:
                upstream = await post_to_ors(http, body, api_key)
    except RoutingUnavailable as exc:
        logger.error("ORS proxy error: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type", "application/json"),
    )


# ---------------------------------------------------------------------------
# Geocoding and settings
# ---------------------------------------------------------------------------


@app.post("/geocode-address", response_model=GeocodeResponse)
async def geocode_address(request: GeocodeRequest) -> GeocodeResponse:
    """Geocodes a place name so the route builder map can centre on it.

    Raises:
        HTTPException 400: If address is empty.
        HTTPException 404: If the address could not be geocoded.
        HTTPException 502: If the upstream Google Maps API call fails.
    """
    if not request.address.strip():
        raise HTTPException(status_code=400, detail="address must not be empty.")
    try:
        gmaps = googlemaps.Client(key=os.environ.get("GOOGLE_MAPS_API_KEY", ""))
        result = gmaps.geocode(request.address)
        if not result:
            raise HTTPException(
                status_code=404,
                detail=f"Could not geocode address: {request.address!r}",
            )
        location = result[0]["geometry"]["location"]
        return GeocodeResponse(
            lat=float(location["lat"]),
            lon=float(location["lng"]),
            formatted_address=result[0].get("formatted_address", request.address),
        )
    except HTTPException:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("geocode_address failed")
        raise HTTPException(
            status_code=502,
            detail="Failed to geocode the address. Please try again.",
        ) from exc


def _settings_view(ctx: AppContext) -> SettingsView:
    return SettingsView(
        ors_api_key=mask(ctx.settings.resolve_key("ors_api_key")),
        anthropic_api_key=mask(ctx.settings.resolve_key("anthropic_api_key")),
        ors_proxy_url=os.environ.get("ORS_PROXY_URL", ""),
    )


@app.get("/settings", response_model=SettingsView)
async def get_settings(ctx: AppContext = Depends(get_context)) -> SettingsView:
    """Shows which API keys are available, masked."""
    return _settings_view(ctx)


@app.put("/settings", response_model=SettingsView)
async def save_settings(
    update: SettingsUpdate, ctx: AppContext = Depends(get_context)
) -> SettingsView:
    """Saves API keys locally (development fallback when the env has none)."""
    if update.ors_api_key and update.ors_api_key.strip():
        ctx.settings.set("ors_api_key", update.ors_api_key.strip())
    if update.anthropic_api_key and update.anthropic_api_key.strip():
        ctx.settings.set("anthropic_api_key", update.anthropic_api_key.strip())
    return _settings_view(ctx)
