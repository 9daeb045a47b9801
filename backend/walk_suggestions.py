"""Claude-backed walk suggestions.

Two calls:
  suggest_walk: turns a free-text request ("an easy lakeside stroll
      near Keswick with a café") into a draft walk: name,
      car park coordinates, main feature, difficulty,
      narrative fields and directions.
  suggest_directions: best-effort step-by-step directions for a walk that
      already has a route. Never raises.

Responses are held to a typed contract: the last non-empty text block is
taken (thinking blocks are skipped), markdown fences are stripped, and the
JSON is validated against the pydantic models. Anything that does not fit is
a ``MalformedAIResponse``.
"""

import json
import logging
import re
from typing import Any, Sequence

from anthropic import AsyncAnthropic
from pydantic import TypeAdapter, ValidationError

from errors import MalformedAIResponse, NoCredentials
from local_settings import LocalSettings
from models import DirectionStep, DraftWalk, LatLon

logger = logging.getLogger(__name__)

# Claude model used for walk and direction generation.
WALK_MODEL: str = "claude-sonnet-4-6"

WALK_TEMPERATURE: float = 0.7
WALK_MAX_TOKENS: int = 4096
DIRECTIONS_TEMPERATURE: float = 0.6
DIRECTIONS_MAX_TOKENS: int = 2048

_JSON_SYSTEM_PROMPT = (
    "You are an expert Lake District walking guide and a walk-planning API. "
    "You respond with ONLY valid JSON: no markdown, no explanation, no "
    "commentary."
)

_WALK_PROMPT = """\
Given a walker's description of their ideal walk, generate a detailed walk \
plan.

Return ONLY a JSON object with exactly this structure:
{{
    "name": "Walk name, short and evocative",
    "distance": "e.g. 3.5 km",
    "time": "e.g. 1.5 hours",
    "difficulty": "Easy | Moderate | Challenging",
    "desc": "2-3 sentence vivid description of the walk experience",
    "start": "Car park or starting location name",
    "lat": 54.XXXX,
    "lon": -3.XXXX,
    "endLat": 54.XXXX,
    "endLon": -3.XXXX,
    "destinationLat": 54.XXXX,
    "destinationLon": -3.XXXX,
    "loopWaypoints": [[54.XXXX, -3.XXXX], ...],
    "elevation": "e.g. 238m, or N/A for flat walks",
    "terrain": "e.g. Woodland and open fell",
    "walkType": "summit | lakeside | waterfall | heritage | woodland | ridge | village",
    "parkingDetail": "Specific car park name, postcode if known, tips",
    "thePayoff": "One evocative sentence about the wow moment of this walk",
    "directions": [
        {{"step": 1, "instruction": "Detailed direction...", "landmark": "Notable feature"}}
    ],
    "isCircular": true
}}

RULES:
- lat/lon is the CAR PARK starting point, using real coordinates.
- destinationLat/destinationLon is the MAIN FEATURE of the walk (summit, \
waterfall, tarn, viewpoint). It must be a DIFFERENT point from the car park.
- For circular walks endLat/endLon equal lat/lon (the walk returns to the car \
park).
- For linear walks endLat/endLon is the finishing point.
- loopWaypoints is optional: 2-4 ordered points on real paths that shape the \
route between the car park and the finish. Omit it if unsure.
- Use ACTUAL place names, car parks, paths and landmarks that REALLY EXIST.
- Directions should be 5-8 detailed steps a walker could actually follow.
- parkingDetail should include real postcodes where possible.

Walker's request: {request}
"""

_DIRECTIONS_PROMPT = """\
Generate step-by-step walking directions for a walk called "{name}".
Starting from: {start_label}
Difficulty: {difficulty}
Number of route points: {n_waypoints}
Start coordinates: {start}
End coordinates: {end}

Return ONLY a JSON array of direction objects:
[{{"step": 1, "instruction": "Detailed walking direction...", "landmark": "Notable feature"}}, ...]

Generate 5-8 steps. Be specific about turns, landmarks and features. Make \
the directions practical and vivid.
"""

_FENCE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)
_DIRECTIONS_ADAPTER = TypeAdapter(list[DirectionStep])


def extract_text(response: Any) -> str | None:
    """Returns the last non-empty text block of a Messages API response.

    Extended-thinking responses carry ``thinking`` blocks before the answer;
    those are skipped.
    """
    for block in reversed(getattr(response, "content", None) or []):
        if getattr(block, "type", "text") != "text":
            continue
        text = getattr(block, "text", "") or ""
        if text.strip():
            return text
    return None


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def _extract_json(text: str, opener: str, closer: str) -> Any:
    """Parses JSON from text that may wrap it in fences or commentary.

    Tries the whole (fence-stripped) string first, then the outermost
    ``opener ... closer`` block.
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        pass

    match = re.search(re.escape(opener) + r".*" + re.escape(closer), cleaned, re.DOTALL)
    if match:
        try:
            return json.loads(match.group())
        except (json.JSONDecodeError, ValueError):
            pass
    return None


def parse_draft_walk(text: str) -> DraftWalk:
    """Validates model output against the draft walk contract.

    Raises:
        MalformedAIResponse: If the text is not a JSON object or any field
            does not match (including a missing name or start coordinate).
    """
    parsed = _extract_json(text, "{", "}")
    if not isinstance(parsed, dict):
        raise MalformedAIResponse("AI response was not a JSON object.")
    try:
        draft = DraftWalk.model_validate(parsed)
    except ValidationError as exc:
        raise MalformedAIResponse(f"AI response did not match the walk schema: {exc}") from exc
    if not draft.name.strip():
        raise MalformedAIResponse("AI response is missing the walk name.")
    return draft


class WalkSuggestionClient:
    """Language-model client producing draft walks and directions."""

    def __init__(
        self,
        settings: LocalSettings | None = None,
        *,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._settings = settings or LocalSettings()
        self._client = client

    def _claude(self) -> AsyncAnthropic:
        if self._client is not None:
            return self._client
        api_key = self._settings.resolve_key("anthropic_api_key")
        if not api_key:
            raise NoCredentials(
                "No Anthropic API key set. Add one in settings or ANTHROPIC_API_KEY."
            )
        return AsyncAnthropic(api_key=api_key)

    async def suggest_walk(self, prompt: str) -> DraftWalk:
        """Generates a draft walk from a natural-language request.

        Raises:
            ValueError: If the prompt is empty.
            NoCredentials: If no Anthropic key is available.
            MalformedAIResponse: If the reply is not a valid draft walk.
            anthropic.APIError: On Claude API failures.
        """
        if not prompt.strip():
            raise ValueError("prompt must not be empty.")
        claude = self._claude()

        logger.info("Requesting walk suggestion from Claude")
        response = await claude.messages.create(
            model=WALK_MODEL,
            max_tokens=WALK_MAX_TOKENS,
            temperature=WALK_TEMPERATURE,
            system=_JSON_SYSTEM_PROMPT,
            messages=[
                {"role": "user", "content": _WALK_PROMPT.format(request=prompt.strip())},
            ],
        )
        text = extract_text(response)
        if text is None:
            raise MalformedAIResponse("Claude returned an empty response.")
        logger.info("Claude walk response: %s", text[:300])

        draft = parse_draft_walk(text)
        logger.info("Suggested walk %r from (%f, %f)", draft.name, draft.lat, draft.lon)
        return draft

    async def suggest_directions(
        self,
        name: str,
        waypoints: Sequence[LatLon],
        start_label: str,
        difficulty: str,
    ) -> list[DirectionStep]:
        """Generates walking directions; returns [] on any failure."""
        try:
            claude = self._claude()
            prompt = _DIRECTIONS_PROMPT.format(
                name=name,
                start_label=start_label or "Car Park",
                difficulty=difficulty,
                n_waypoints=len(waypoints),
                start=list(waypoints[0]) if waypoints else "unknown",
                end=list(waypoints[-1]) if waypoints else "unknown",
            )
            logger.info("Requesting directions for %r from Claude", name)
            response = await claude.messages.create(
                model=WALK_MODEL,
                max_tokens=DIRECTIONS_MAX_TOKENS,
                temperature=DIRECTIONS_TEMPERATURE,
                system=_JSON_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
            text = extract_text(response)
            if text is None:
                return []
            parsed = _extract_json(text, "[", "]")
            if not isinstance(parsed, list):
                logger.warning("Directions response was not a JSON array: %s", text[:200])
                return []
            return _DIRECTIONS_ADAPTER.validate_python(parsed)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Direction generation failed: %s", exc)
            return []
