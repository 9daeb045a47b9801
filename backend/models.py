"""Pydantic models for the Trail Mapper backend.

Walk records keep the camelCase keys of the exported walk JSON on the wire
(``endLat``, ``walkType``, ``thePayoff`` ...) while exposing snake_case
attributes in Python. Both spellings are accepted on input.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

import geometry

Difficulty = Literal["Easy", "Moderate", "Challenging"]
WalkType = Literal[
    "summit", "lakeside", "waterfall", "heritage", "woodland", "ridge", "village"
]
RoutePreference = Literal["recommended", "fastest", "shortest"]
LatLon = tuple[float, float]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Walk records
# ---------------------------------------------------------------------------


class DirectionStep(_CamelModel):
    """One numbered step of the walking directions."""

    step: int
    instruction: str
    landmark: str = ""


class Walk(_CamelModel):
    """A walk in the library.

    ``waypoints`` is the rendered path, first point at the car park. For a
    circular walk ``end_lat``/``end_lon`` equal ``lat``/``lon`` (or are unset).
    """

    name: str
    distance: str = ""
    time: str = ""
    difficulty: Difficulty = "Moderate"
    desc: str = ""
    start: str = "Car Park"
    """Car park or start location label."""

    lat: float
    lon: float
    end_lat: float | None = Field(default=None, alias="endLat")
    end_lon: float | None = Field(default=None, alias="endLon")
    waypoints: list[LatLon] = Field(default_factory=list)
    elevation: str = "N/A"
    """Total ascent, e.g. "238m"."""

    terrain: str = ""
    walk_type: WalkType | None = Field(default=None, alias="walkType")
    parking_detail: str = Field(default="", alias="parkingDetail")
    the_payoff: str = Field(default="", alias="thePayoff")
    """One evocative sentence about the highlight of the walk."""

    directions: list[DirectionStep] = Field(default_factory=list)
    route_url: str = Field(default="", alias="routeUrl")

    @property
    def start_point(self) -> LatLon:
        return (self.lat, self.lon)

    @property
    def end_point(self) -> LatLon:
        """The end coordinate, falling back to the start when unset."""
        if self.end_lat is None or self.end_lon is None:
            return self.start_point
        return (self.end_lat, self.end_lon)

    @property
    def is_circular(self) -> bool:
        return geometry.same_point(self.start_point, self.end_point)


class DraftWalk(Walk):
    """A walk before route assembly, as produced by the AI client or the builder.

    Adds the hints the assembler reconciles: an explicit circular flag, the
    walk's main feature (summit, tarn, waterfall) and an ordered list of
    intermediate points that shape a loop.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    circular_hint: bool | None = Field(default=None, alias="isCircular")
    destination_lat: float | None = Field(default=None, alias="destinationLat")
    destination_lon: float | None = Field(default=None, alias="destinationLon")
    loop_waypoints: list[LatLon] = Field(default_factory=list, alias="loopWaypoints")

    @property
    def destination(self) -> LatLon | None:
        if self.destination_lat is None or self.destination_lon is None:
            return None
        return (self.destination_lat, self.destination_lon)

    def to_walk(self, **updates: Any) -> Walk:
        """Returns a plain ``Walk`` with the draft-only hints dropped."""
        data = self.model_dump(
            exclude={"circular_hint", "destination_lat", "destination_lon", "loop_waypoints"}
        )
        data.update(updates)
        return Walk(**data)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class RouteRequest(BaseModel):
    """An ordered list of points to send to the foot-trail routing service."""

    coordinates: list[LatLon] = Field(min_length=2)
    preference: RoutePreference = "recommended"
    instructions: bool = True

    def to_ors_body(self) -> dict[str, Any]:
        """Returns the ORS request body; ORS wants ``[lon, lat]`` pairs."""
        return {
            "coordinates": [[lon, lat] for lat, lon in self.coordinates],
            "preference": self.preference,
            "instructions": self.instructions,
        }


class RouteResult(BaseModel):
    """A resolved trail path with its summary figures."""

    waypoints: list[LatLon]
    """Path as (lat, lon) pairs."""

    distance_m: float
    duration_s: float
    steps: list[dict[str, Any]] = Field(default_factory=list)
    """Raw turn-by-turn step objects, flattened across all segments."""


class AssemblyResult(BaseModel):
    """A finalized walk plus whether it is only a straight-line approximation."""

    walk: Walk
    approximate: bool = False
    warning: str | None = None


class RerouteReport(BaseModel):
    """Outcome of re-routing the whole library."""

    total: int = 0
    rerouted: int = 0
    failed: int = 0
    log: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP request and response bodies
# ---------------------------------------------------------------------------


class BuildRouteRequest(BaseModel):
    """Request body for the /build-route endpoint (manual route builder).

    The two clicked pins plus the details typed into the builder form.
    """

    start_lat: float
    start_lon: float
    destination_lat: float
    destination_lon: float
    circular: bool = True
    """True to walk out to the destination and back to the car park."""

    via: list[LatLon] = Field(default_factory=list)
    name: str = "Unnamed Walk"
    difficulty: Difficulty = "Moderate"
    desc: str = ""
    parking_detail: str = ""
    elevation: str = "N/A"
    terrain: str = ""
    walk_type: WalkType | None = None
    the_payoff: str = ""
    add_to_library: bool = False


class SuggestWalkRequest(BaseModel):
    """Request body for the /suggest-walk endpoint."""

    prompt: str
    add_to_library: bool = False


class ImportWalkRequest(BaseModel):
    """Raw walk JSON pasted by the user."""

    json_text: str


class ElevationPoint(BaseModel):
    distance_m: float
    elevation_m: float


class ElevationProfileResponse(BaseModel):
    """Synthetic elevation profile for drawing under the detail map."""

    total_distance_m: float
    max_elevation_m: float
    points: list[ElevationPoint]


class GeocodeRequest(BaseModel):
    """Request body for the /geocode-address endpoint."""

    address: str


class GeocodeResponse(BaseModel):
    lat: float
    lon: float
    formatted_address: str


class SettingsUpdate(BaseModel):
    """Locally stored API keys; blank or missing values are left unchanged."""

    ors_api_key: str | None = None
    anthropic_api_key: str | None = None


class SettingsView(BaseModel):
    """Masked view of the locally stored API keys."""

    ors_api_key: str = ""
    anthropic_api_key: str = ""
    ors_proxy_url: str = ""
