"""Tests for route_assembly.py.

The routing and suggestion clients are replaced with in-memory fakes that
record what they were asked to route.
"""

import httpx
import pytest

import geometry
import route_assembly
from errors import NoCredentials, RoutingRejected, RoutingUnavailable
from models import BuildRouteRequest, DirectionStep, DraftWalk, RouteResult
from route_assembly import RouteAssembler
from routing_client import DirectTransport, RoutingClient

_START = (54.40, -3.00)
_DEST = (54.42, -3.02)
_END = (54.45, -2.95)

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _ten_point_result(distance_m=5000.0, duration_s=3600.0) -> RouteResult:
    out = geometry.interpolate(_START, _DEST, segments=4)
    back = geometry.interpolate(_DEST, _START, segments=4)
    path = out + back[1:]
    path.insert(1, (54.401, -3.001))
    return RouteResult(waypoints=path, distance_m=distance_m, duration_s=duration_s)


class _FakeRouting:
    """Records calls; returns ``result`` or raises ``error``."""

    def __init__(self, result=None, error=None):
        self.result = result or _ten_point_result()
        self.error = error
        self.calls: list[tuple] = []

    async def route_between(self, start, end, via=()):
        self.calls.append(("between", start, end, tuple(via)))
        return self._answer()

    async def route_circular(self, start, destination):
        self.calls.append(("circular", start, destination))
        return self._answer()

    async def route_multi_waypoint(self, points):
        self.calls.append(("multi", tuple(points)))
        return self._answer()

    def _answer(self):
        if self.error is not None:
            raise self.error
        return self.result


class _FakeSuggestions:
    def __init__(self, steps=None, error=None):
        self.steps = steps if steps is not None else [
            DirectionStep(step=i, instruction=f"Step {i}") for i in range(1, 6)
        ]
        self.error = error
        self.calls = 0

    async def suggest_directions(self, name, waypoints, start_label, difficulty):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.steps


def _draft(**overrides) -> DraftWalk:
    data = {
        "name": "Test Walk",
        "lat": _START[0],
        "lon": _START[1],
        "destinationLat": _DEST[0],
        "destinationLon": _DEST[1],
        "isCircular": True,
    }
    data.update(overrides)
    return DraftWalk.model_validate(data)


# ---------------------------------------------------------------------------
# format_distance / format_duration
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "meters, expected",
    [(950, "950 m"), (1000, "1.0 km"), (12345, "12.3 km"), (0, "0 m")],
)
def test_format_distance(meters, expected):
    assert route_assembly.format_distance(meters) == expected


@pytest.mark.parametrize(
    "seconds, expected",
    [(1800, "30 mins"), (3600, "1 hours"), (5400, "1.5 hours"), (9000, "2.5 hours")],
)
def test_format_duration(seconds, expected):
    assert route_assembly.format_duration(seconds) == expected


# ---------------------------------------------------------------------------
# Circular vs linear decision
# ---------------------------------------------------------------------------


def test_circular_when_end_equals_start_within_epsilon():
    draft = _draft(endLat=_START[0] + 0.001, endLon=_START[1] - 0.001)
    assert route_assembly.is_circular_draft(draft)


def test_linear_when_end_differs_beyond_epsilon():
    draft = _draft(endLat=_END[0], endLon=_END[1])
    assert not route_assembly.is_circular_draft(draft)


def test_circular_hint_overridden_by_distinct_end():
    draft = _draft(endLat=_END[0], endLon=_END[1], isCircular=True)
    assert not route_assembly.is_circular_draft(draft)


def test_missing_end_is_circular_by_default():
    assert route_assembly.is_circular_draft(_draft(isCircular=None))


def test_linear_hint_without_end_finishes_at_destination():
    draft = _draft(isCircular=False)
    assert not route_assembly.is_circular_draft(draft)
    assert route_assembly.plan_route(draft).end == _DEST


def test_linear_hint_without_end_or_destination_stays_circular():
    draft = _draft(isCircular=False, destinationLat=None, destinationLon=None)
    assert route_assembly.is_circular_draft(draft)


# ---------------------------------------------------------------------------
# Routing strategy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_circular_routes_out_to_destination():
    routing = _FakeRouting()
    await RouteAssembler(routing).assemble(_draft())
    assert routing.calls == [("circular", _START, _DEST)]


@pytest.mark.asyncio
async def test_circular_without_destination_uses_offset():
    routing = _FakeRouting()
    await RouteAssembler(routing).assemble(_draft(destinationLat=None, destinationLon=None))

    kind, start, dest = routing.calls[0]
    assert kind == "circular"
    assert dest == pytest.approx((_START[0] + 0.005, _START[1] + 0.005))


@pytest.mark.asyncio
async def test_circular_destination_equal_to_start_uses_offset():
    routing = _FakeRouting()
    draft = _draft(destinationLat=_START[0] + 0.0005, destinationLon=_START[1])
    await RouteAssembler(routing).assemble(draft)

    assert not geometry.same_point(routing.calls[0][2], _START)


@pytest.mark.asyncio
async def test_linear_routes_start_to_end():
    routing = _FakeRouting()
    await RouteAssembler(routing).assemble(_draft(endLat=_END[0], endLon=_END[1]))
    assert routing.calls == [("between", _START, _END, ())]


@pytest.mark.asyncio
async def test_loop_waypoints_use_multi_waypoint_back_to_start():
    routing = _FakeRouting()
    via = [[54.41, -3.01], [54.42, -3.00]]
    await RouteAssembler(routing).assemble(_draft(loopWaypoints=via))

    kind, points = routing.calls[0]
    assert kind == "multi"
    assert points == (_START, (54.41, -3.01), (54.42, -3.00), _START)


@pytest.mark.asyncio
async def test_linear_loop_waypoints_end_at_end():
    routing = _FakeRouting()
    draft = _draft(endLat=_END[0], endLon=_END[1], loopWaypoints=[[54.42, -2.98]])
    await RouteAssembler(routing).assemble(draft)

    assert routing.calls[0][1] == (_START, (54.42, -2.98), _END)


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_assemble_success_rewrites_distance_and_time():
    routing = _FakeRouting(result=_ten_point_result(5000.0, 3600.0))

    result = await RouteAssembler(routing).assemble(_draft(distance="3 km", time="2 hours"))

    walk = result.walk
    assert walk.distance == "5.0 km"
    assert walk.time == "1 hours"
    assert len(walk.waypoints) == 10
    assert walk.end_point == walk.start_point
    assert walk.is_circular
    assert not result.approximate
    assert result.warning is None


@pytest.mark.asyncio
async def test_assemble_unavailable_falls_back_to_straight_line():
    routing = _FakeRouting(error=RoutingUnavailable("offline"))

    result = await RouteAssembler(routing).assemble(_draft(distance="4 km", time="2 hours"))

    assert result.approximate
    assert "approximate" in result.warning
    assert result.walk.waypoints == [_START, _DEST]
    assert result.walk.distance == "4 km"
    assert result.walk.time == "2 hours"
    assert result.walk.is_circular


@pytest.mark.parametrize(
    "error",
    [RoutingRejected(400, "bad coordinates"), NoCredentials("no key")],
)
@pytest.mark.asyncio
async def test_assemble_rejected_or_unconfigured_falls_back(error):
    routing = _FakeRouting(error=error)

    result = await RouteAssembler(routing).assemble(_draft(endLat=_END[0], endLon=_END[1]))

    assert result.approximate
    assert result.walk.waypoints == [_START, _END]


@pytest.mark.asyncio
async def test_fallback_without_destination_still_has_points():
    routing = _FakeRouting(error=RoutingUnavailable("offline"))
    draft = _draft(destinationLat=None, destinationLon=None)

    result = await RouteAssembler(routing).assemble(draft)

    assert len(result.walk.waypoints) >= 1
    assert result.walk.waypoints[0] == _START


@pytest.mark.asyncio
async def test_fallback_fills_blank_distance_from_straight_line():
    routing = _FakeRouting(error=RoutingUnavailable("offline"))

    result = await RouteAssembler(routing).assemble(_draft(distance=""))

    expected = route_assembly.format_distance(2 * geometry.haversine_m(_START, _DEST))
    assert result.walk.distance == expected


@pytest.mark.asyncio
async def test_result_drops_draft_hints():
    result = await RouteAssembler(_FakeRouting()).assemble(_draft())
    dumped = result.walk.model_dump(by_alias=True)
    assert "isCircular" not in dumped
    assert "destinationLat" not in dumped


# ---------------------------------------------------------------------------
# Direction enrichment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_thin_directions_are_enriched():
    suggestions = _FakeSuggestions()

    result = await RouteAssembler(_FakeRouting(), suggestions).assemble(_draft())

    assert suggestions.calls == 1
    assert len(result.walk.directions) == 5


@pytest.mark.asyncio
async def test_full_directions_are_kept():
    suggestions = _FakeSuggestions()
    steps = [{"step": i, "instruction": f"Original {i}"} for i in range(1, 4)]

    result = await RouteAssembler(_FakeRouting(), suggestions).assemble(
        _draft(directions=steps)
    )

    assert suggestions.calls == 0
    assert result.walk.directions[0].instruction == "Original 1"


@pytest.mark.asyncio
async def test_enrichment_failure_is_swallowed():
    suggestions = _FakeSuggestions(error=RuntimeError("model down"))
    steps = [{"step": 1, "instruction": "Only one"}]

    result = await RouteAssembler(_FakeRouting(), suggestions).assemble(
        _draft(directions=steps)
    )

    assert [d.instruction for d in result.walk.directions] == ["Only one"]


# ---------------------------------------------------------------------------
# build_from_pins
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_build_from_pins_circular():
    routing = _FakeRouting()
    request = BuildRouteRequest(
        start_lat=_START[0], start_lon=_START[1],
        destination_lat=_DEST[0], destination_lon=_DEST[1],
        circular=True, name="Pinned Loop",
        parking_detail="Rydal car park, LA22 9LR",
    )

    result = await RouteAssembler(routing).build_from_pins(request)

    assert routing.calls == [("circular", _START, _DEST)]
    assert result.walk.is_circular
    assert result.walk.start == "Rydal car park"
    assert result.walk.name == "Pinned Loop"


@pytest.mark.asyncio
async def test_build_from_pins_linear_fallback_is_dense_preview():
    routing = _FakeRouting(error=RoutingUnavailable("offline"))
    request = BuildRouteRequest(
        start_lat=_START[0], start_lon=_START[1],
        destination_lat=_END[0], destination_lon=_END[1],
        circular=False,
    )

    result = await RouteAssembler(routing).build_from_pins(request)

    assert result.approximate
    assert len(result.walk.waypoints) == route_assembly.PREVIEW_SEGMENTS + 1
    assert result.walk.end_point == _END
    assert result.walk.start == "Car Park"


# ---------------------------------------------------------------------------
# Real routing client with an unusable response
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "body",
    [
        [],
        {"features": [{"geometry": {"coordinates": [[-3.0, 54.4], [-3.02, 54.42]]},
                       "properties": {"summary": {"distance": None}}}]},
    ],
)
@pytest.mark.asyncio
async def test_malformed_routing_response_falls_back(body):
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body))
    )
    routing = RoutingClient([DirectTransport("TEST_KEY")], http_client=http)

    result = await RouteAssembler(routing).assemble(_draft())

    assert result.approximate
    assert result.walk.waypoints == [_START, _DEST]
