"""Route assembly: turn a draft walk into a finished walk with a rendered path.

Drafts arrive from two places, the manual route builder (two clicked pins)
and the AI suggestion client (coordinates the model believes are right).
Assembly reconciles them into one consistent record:

  1.  Decide circular vs linear from the coordinates, honouring the AI's
      ``isCircular`` hint only where the coordinates leave it open.
  2.  Route through the loop waypoints when the draft has them.
  3.  Otherwise route a circular walk out to its main feature and back, or a
      linear walk from start to end.
  4.  If routing is unavailable, rejected or unconfigured, fall back to a
      straight line so the walk always has a drawable path, and flag the
      result as approximate.
  5.  On success, rewrite distance and time from the routing summary.
  6.  Top up thin directions from the AI client (best effort).
"""

import logging
import math
from dataclasses import dataclass, field

import geometry
from errors import NoCredentials, RoutingRejected, RoutingUnavailable
from models import AssemblyResult, BuildRouteRequest, DraftWalk, LatLon, RouteResult, Walk
from routing_client import RoutingClient
from walk_suggestions import WalkSuggestionClient

logger = logging.getLogger(__name__)

# Failures that degrade to the straight-line fallback instead of raising.
ROUTING_FAILURES = (RoutingUnavailable, RoutingRejected, NoCredentials)

# Walks with fewer direction steps than this get AI-generated directions.
MIN_DIRECTION_STEPS: int = 3

# The builder previews a fallback as a dense straight line; AI drafts keep
# just the two known points.
PREVIEW_SEGMENTS: int = 20
DEFAULT_FALLBACK_SEGMENTS: int = 1


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_distance(meters: float) -> str:
    """Formats metres for display: "950 m", "1.0 km", "12.3 km"."""
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{_round_half_up(meters)} m"


def format_duration(seconds: float) -> str:
    """Formats seconds for display: "30 mins", "1 hours", "1.5 hours"."""
    hours = seconds / 3600
    if hours >= 1:
        return f"{math.floor(hours * 10 + 0.5) / 10:g} hours"
    return f"{_round_half_up(seconds / 60)} mins"


@dataclass
class RoutePlan:
    """How a draft will be routed, and what to draw if routing fails."""

    circular: bool
    start: LatLon
    end: LatLon
    target: LatLon
    """Turning point of a loop, or the end of a linear walk."""

    via: list[LatLon] = field(default_factory=list)


def is_circular_draft(draft: DraftWalk) -> bool:
    """Decides whether a draft describes a loop.

    Coordinates win: with an end coordinate present the walk is circular iff
    it equals the start. Without one, the draft is circular unless the hint
    says otherwise and there is a distinct destination to finish at.
    """
    if draft.end_lat is not None and draft.end_lon is not None:
        return geometry.same_point(draft.start_point, draft.end_point)
    dest = draft.destination
    if draft.circular_hint is False and dest is not None:
        return geometry.same_point(draft.start_point, dest)
    return True


def plan_route(draft: DraftWalk) -> RoutePlan:
    start = draft.start_point
    circular = is_circular_draft(draft)

    if circular:
        dest = draft.destination
        if dest is None or geometry.same_point(dest, start):
            dest = geometry.offset(
                start, geometry.DEFAULT_LOOP_OFFSET, geometry.DEFAULT_LOOP_OFFSET
            )
        return RoutePlan(
            circular=True, start=start, end=start, target=dest,
            via=list(draft.loop_waypoints),
        )

    if draft.end_lat is not None and draft.end_lon is not None:
        end = draft.end_point
    else:
        # is_circular_draft only says linear when a destination exists.
        end = draft.destination or start
    return RoutePlan(
        circular=False, start=start, end=end, target=end,
        via=list(draft.loop_waypoints),
    )


class RouteAssembler:
    """Completes draft walks using the routing and suggestion clients."""

    def __init__(
        self,
        routing: RoutingClient,
        suggestions: WalkSuggestionClient | None = None,
        *,
        fallback_segments: int = DEFAULT_FALLBACK_SEGMENTS,
    ) -> None:
        self.routing = routing
        self.suggestions = suggestions
        self.fallback_segments = fallback_segments

    async def assemble(
        self,
        draft: DraftWalk,
        *,
        fallback_segments: int | None = None,
    ) -> AssemblyResult:
        """Returns a finished walk for ``draft``. Never raises on routing errors.

        The result's ``approximate`` flag is set when the straight-line
        fallback replaced a real trail, with a ``warning`` for the caller to
        show.
        """
        plan = plan_route(draft)
        logger.info(
            "Assembling %r: %s, %d via points",
            draft.name,
            "circular" if plan.circular else "linear",
            len(plan.via),
        )

        updates: dict = {"end_lat": plan.end[0], "end_lon": plan.end[1]}
        warning: str | None = None
        try:
            result = await self._route(plan)
        except ROUTING_FAILURES as exc:
            logger.warning("Routing failed for %r, using straight line: %s", draft.name, exc)
            segments = fallback_segments or self.fallback_segments
            waypoints = geometry.interpolate(plan.start, plan.target, segments)
            updates["waypoints"] = waypoints
            if not draft.distance:
                # Out and back along the straight line for a loop.
                length = geometry.path_length_m(waypoints) * (2 if plan.circular else 1)
                updates["distance"] = format_distance(length)
            warning = (
                f"Real trail routing failed ({exc}). Showing an approximate "
                "straight-line route."
            )
        else:
            updates["waypoints"] = result.waypoints
            updates["distance"] = format_distance(result.distance_m)
            updates["time"] = format_duration(result.duration_s)
            logger.info(
                "Routed %r: %s, %s, %d points",
                draft.name, updates["distance"], updates["time"], len(result.waypoints),
            )

        walk = draft.to_walk(**updates)
        if len(walk.directions) < MIN_DIRECTION_STEPS:
            await self._enrich_directions(walk)

        return AssemblyResult(walk=walk, approximate=warning is not None, warning=warning)

    async def build_from_pins(self, request: BuildRouteRequest) -> AssemblyResult:
        """Assembles a walk from the route builder's car park and destination pins."""
        start = (request.start_lat, request.start_lon)
        destination = (request.destination_lat, request.destination_lon)
        end = start if request.circular else destination
        draft = DraftWalk(
            name=request.name or "Unnamed Walk",
            difficulty=request.difficulty,
            desc=request.desc,
            start=request.parking_detail.split(",")[0].strip() or "Car Park",
            lat=start[0],
            lon=start[1],
            end_lat=end[0],
            end_lon=end[1],
            destination_lat=destination[0],
            destination_lon=destination[1],
            loop_waypoints=request.via,
            elevation=request.elevation or "N/A",
            terrain=request.terrain,
            walk_type=request.walk_type,
            parking_detail=request.parking_detail,
            the_payoff=request.the_payoff,
        )
        return await self.assemble(draft, fallback_segments=PREVIEW_SEGMENTS)

    async def _route(self, plan: RoutePlan) -> RouteResult:
        if plan.via:
            return await self.routing.route_multi_waypoint([plan.start, *plan.via, plan.end])
        if plan.circular:
            return await self.routing.route_circular(plan.start, plan.target)
        return await self.routing.route_between(plan.start, plan.end)

    async def _enrich_directions(self, walk: Walk) -> None:
        if self.suggestions is None:
            return
        try:
            steps = await self.suggestions.suggest_directions(
                walk.name, walk.waypoints, walk.start, walk.difficulty
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Direction enrichment failed for %r: %s", walk.name, exc)
            return
        if steps:
            walk.directions = steps
