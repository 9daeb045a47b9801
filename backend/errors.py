"""Error kinds shared by the routing client, AI client and route assembler."""


class RoutingError(Exception):
    """Base class for failures talking to the foot-trail routing service."""


class RoutingUnavailable(RoutingError):
    """The routing service (or its proxy) could not be reached at all."""


class RoutingRejected(RoutingError):
    """The routing service answered, but not with a usable route.

    Carries the upstream status code and response body for diagnostics.
    """

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"ORS API error ({status_code}): {body[:300]}")


class MalformedAIResponse(Exception):
    """The language model returned text that is not the expected walk JSON."""


class NoCredentials(Exception):
    """No API key is available through any configured source."""
