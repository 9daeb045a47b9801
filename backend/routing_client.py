"""Client for the OpenRouteService foot-hiking directions API.

Requests go through an ordered chain of transports: a same-origin proxy that
holds the API key server-side is tried first when configured, then a direct
call with a locally available key. The first transport to return a route
wins; the client itself never retries.

ORS speaks ``[lon, lat]``; everything returned from here is ``(lat, lon)``.
"""

import json
import logging
import os
from typing import Any, Callable, Protocol, Sequence

import httpx

from errors import NoCredentials, RoutingError, RoutingRejected, RoutingUnavailable
from local_settings import LocalSettings
from models import LatLon, RoutePreference, RouteRequest, RouteResult

logger = logging.getLogger(__name__)

ORS_ENDPOINT: str = "https://api.openrouteservice.org/v2/directions/foot-hiking/geojson"
REQUEST_TIMEOUT_S: float = 30.0

# Points closer than this (degrees) are treated as one when deciding whether a
# request is degenerate.
_DEGENERATE_EPSILON: float = 1e-9


class Transport(Protocol):
    name: str

    async def send(self, http: httpx.AsyncClient, body: dict[str, Any]) -> dict[str, Any]:
        ...


async def post_to_ors(
    http: httpx.AsyncClient,
    content: bytes,
    api_key: str,
    endpoint: str = ORS_ENDPOINT,
) -> httpx.Response:
    """POSTs an already-serialized request body to ORS with the given key.

    Raises:
        RoutingUnavailable: If ORS cannot be reached.
    """
    try:
        return await http.post(
            endpoint,
            content=content,
            headers={"Content-Type": "application/json", "Authorization": api_key},
        )
    except httpx.TransportError as exc:
        raise RoutingUnavailable(f"Could not reach ORS: {exc}") from exc


def _json_or_rejected(response: httpx.Response) -> dict[str, Any]:
    if not response.is_success:
        raise RoutingRejected(response.status_code, response.text)
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise RoutingRejected(response.status_code, response.text) from exc


class ProxyTransport:
    """Sends the request body verbatim to a proxy that attaches the key."""

    name = "proxy"

    def __init__(self, url: str) -> None:
        self.url = url

    async def send(self, http: httpx.AsyncClient, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await http.post(self.url, json=body)
        except httpx.TransportError as exc:
            raise RoutingUnavailable(f"Could not reach routing proxy: {exc}") from exc
        if response.status_code == 500:
            # The proxy answers 500 when it has no key of its own.
            raise RoutingUnavailable(f"Routing proxy unusable: {response.text[:200]}")
        return _json_or_rejected(response)


class DirectTransport:
    """Calls ORS directly with an ``Authorization`` header (local/dev use)."""

    name = "direct"

    def __init__(
        self,
        api_key: str | Callable[[], str],
        endpoint: str = ORS_ENDPOINT,
    ) -> None:
        self._api_key = api_key
        self.endpoint = endpoint

    def _resolve_key(self) -> str:
        return self._api_key() if callable(self._api_key) else self._api_key

    async def send(self, http: httpx.AsyncClient, body: dict[str, Any]) -> dict[str, Any]:
        key = self._resolve_key()
        if not key:
            raise NoCredentials(
                "No OpenRouteService API key set. Add one in settings or ORS_API_KEY."
            )
        response = await post_to_ors(http, json.dumps(body).encode("utf-8"), key, self.endpoint)
        return _json_or_rejected(response)


class RoutingClient:
    """Resolves ordered points into a real-trail path via the transport chain."""

    def __init__(
        self,
        transports: Sequence[Transport],
        *,
        http_client: httpx.AsyncClient | None = None,
        preference: RoutePreference = "recommended",
    ) -> None:
        self.transports = list(transports)
        self.preference = preference
        self._http = http_client

    @classmethod
    def from_env(
        cls,
        settings: LocalSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> "RoutingClient":
        """Builds the default chain: ``ORS_PROXY_URL`` if set, then direct."""
        transports: list[Transport] = []
        proxy_url = os.environ.get("ORS_PROXY_URL", "")
        if proxy_url:
            transports.append(ProxyTransport(proxy_url))
        transports.append(DirectTransport(lambda: settings.resolve_key("ors_api_key")))
        return cls(transports, http_client=http_client)

    async def route_between(
        self,
        start: LatLon,
        end: LatLon,
        via: Sequence[LatLon] = (),
    ) -> RouteResult:
        """Routes start → each via point in order → end."""
        return await self.route_multi_waypoint([start, *via, end])

    async def route_circular(self, start: LatLon, destination: LatLon) -> RouteResult:
        """Routes start → destination → start as a single merged path."""
        return await self.route_between(start, start, [destination])

    async def route_multi_waypoint(self, points: Sequence[LatLon]) -> RouteResult:
        """Routes through an arbitrary ordered list of at least two points.

        A request whose points are all the same place is answered locally with
        that point repeated, so it never fails.

        Raises:
            RoutingUnavailable: No transport could reach the service.
            RoutingRejected: The service answered with an error or no route.
            NoCredentials: No transport had a usable API key.
        """
        if len(points) < 2:
            raise ValueError("A route needs at least two points.")
        if _is_degenerate(points):
            p = (points[0][0], points[0][1])
            return RouteResult(waypoints=[p, p], distance_m=0.0, duration_s=0.0)

        request = RouteRequest(coordinates=list(points), preference=self.preference)
        data = await self._send(request.to_ors_body())
        return _decode_route(data)

    async def _send(self, body: dict[str, Any]) -> dict[str, Any]:
        if self._http is not None:
            return await self._try_transports(self._http, body)
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as http:
            return await self._try_transports(http, body)

    async def _try_transports(
        self, http: httpx.AsyncClient, body: dict[str, Any]
    ) -> dict[str, Any]:
        last_error: RoutingError | None = None
        for transport in self.transports:
            try:
                logger.info(
                    "Routing %d points via %s transport",
                    len(body["coordinates"]),
                    transport.name,
                )
                return await transport.send(http, body)
            except NoCredentials as exc:
                logger.info("Skipping %s transport: %s", transport.name, exc)
            except RoutingError as exc:
                logger.warning("%s transport failed: %s", transport.name, exc)
                last_error = exc
        if last_error is not None:
            raise last_error
        raise NoCredentials("No routing transport has an API key configured.")


def _is_degenerate(points: Sequence[LatLon]) -> bool:
    first = points[0]
    return all(
        abs(p[0] - first[0]) < _DEGENERATE_EPSILON
        and abs(p[1] - first[1]) < _DEGENERATE_EPSILON
        for p in points[1:]
    )


def _decode_route(data: Any) -> RouteResult:
    """Converts an ORS GeoJSON response into a ``RouteResult``.

    Raises:
        RoutingRejected: If the response does not have the GeoJSON route shape.
    """
    if not isinstance(data, dict):
        raise RoutingRejected(200, f"ORS response was not an object: {type(data).__name__}")
    features = data.get("features") or []
    if not isinstance(features, list) or not features:
        raise RoutingRejected(200, "ORS response contained no route features.")
    feature = features[0]
    if not isinstance(feature, dict):
        raise RoutingRejected(200, "ORS route feature was not an object.")
    try:
        coords = feature["geometry"]["coordinates"]
        waypoints = [(float(c[1]), float(c[0])) for c in coords]
    except (KeyError, TypeError, IndexError, ValueError) as exc:
        raise RoutingRejected(200, f"ORS route geometry unreadable: {exc}") from exc
    if not waypoints:
        raise RoutingRejected(200, "ORS route geometry was empty.")

    properties = feature.get("properties") or {}
    if not isinstance(properties, dict):
        raise RoutingRejected(200, "ORS route properties unreadable.")
    summary = properties.get("summary") or {}
    if not isinstance(summary, dict):
        raise RoutingRejected(200, "ORS route summary unreadable.")
    try:
        distance_m = float(summary.get("distance", 0.0))
        duration_s = float(summary.get("duration", 0.0))
        steps = [
            step
            for segment in properties.get("segments") or []
            for step in segment.get("steps") or []
        ]
    except (AttributeError, TypeError, ValueError) as exc:
        raise RoutingRejected(200, f"ORS route summary unreadable: {exc}") from exc
    return RouteResult(
        waypoints=waypoints,
        distance_m=distance_m,
        duration_s=duration_s,
        steps=steps,
    )
