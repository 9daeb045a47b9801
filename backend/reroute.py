"""Re-route every walk in the library against the real trail network.

Walks are processed strictly one after another with a pause between calls to
stay inside the routing service's rate limits. A failed walk is logged and
skipped; the batch always runs to the end and keeps whatever it updated.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

import geometry
from errors import NoCredentials, RoutingError
from models import LatLon, RerouteReport, Walk
from route_assembly import format_distance, format_duration
from routing_client import RoutingClient

logger = logging.getLogger(__name__)

# Pause after a successful call, and after a failure.
REROUTE_PAUSE_S: float = 1.5
REROUTE_FAILURE_PAUSE_S: float = 5.0

# A circular walk with more rendered points than this already shows where it
# turns round; fewer and the default offset is used instead.
MIN_POINTS_FOR_TURNAROUND: int = 4


def loop_destination(walk: Walk) -> LatLon:
    """Returns the point a circular walk should be routed out to."""
    if len(walk.waypoints) > MIN_POINTS_FOR_TURNAROUND:
        far = geometry.farthest_from(walk.start_point, walk.waypoints)
        if far is not None and not geometry.same_point(far, walk.start_point):
            return far
    return geometry.offset(
        walk.start_point, geometry.DEFAULT_LOOP_OFFSET, geometry.DEFAULT_LOOP_OFFSET
    )


async def reroute_all(
    walks: Sequence[Walk],
    routing: RoutingClient,
    *,
    pause_s: float = REROUTE_PAUSE_S,
    failure_pause_s: float = REROUTE_FAILURE_PAUSE_S,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RerouteReport:
    """Replaces waypoints, distance and time of every walk in place.

    Only those three fields change; everything else on a walk is left as is.
    The caller is responsible for persisting ``walks`` afterwards.
    """
    report = RerouteReport(total=len(walks))
    logger.info("Re-routing %d walks", len(walks))

    for i, walk in enumerate(walks):
        try:
            if walk.is_circular:
                result = await routing.route_circular(walk.start_point, loop_destination(walk))
            else:
                result = await routing.route_between(walk.start_point, walk.end_point)
        except (RoutingError, NoCredentials) as exc:
            report.failed += 1
            report.log.append(f"FAILED {walk.name}: {exc}")
            logger.warning("Re-route failed for %r: %s", walk.name, exc)
            if i < len(walks) - 1:
                await sleep(failure_pause_s)
            continue

        walk.waypoints = result.waypoints
        walk.distance = format_distance(result.distance_m)
        walk.time = format_duration(result.duration_s)
        report.rerouted += 1
        report.log.append(f"OK {walk.name}: {walk.distance}")

        if i < len(walks) - 1:
            await sleep(pause_s)

    logger.info(
        "Re-route complete: %d re-routed, %d failed out of %d",
        report.rerouted, report.failed, report.total,
    )
    return report
