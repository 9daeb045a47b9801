"""Walk export formats: the library JSON shape and GPX 1.1 tracks."""

import json
import re
from typing import Sequence

from pydantic import ValidationError

from models import Walk

GPX_CREATOR = "Trail Mapper"


def walk_to_json(walk: Walk) -> str:
    """Serializes a walk to its export JSON (camelCase keys, floats untouched)."""
    return json.dumps(walk.model_dump(mode="json", by_alias=True), indent=2)


def walk_from_json(text: str) -> Walk:
    return Walk.model_validate_json(text)


def library_to_json(walks: Sequence[Walk]) -> str:
    return json.dumps([w.model_dump(mode="json", by_alias=True) for w in walks], indent=2)


def import_walk(text: str) -> Walk:
    """Parses a walk pasted by the user.

    Raises:
        ValueError: If the text is not JSON, lacks ``name`` or ``lat``, or
            does not otherwise validate as a walk.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict) or not data.get("name") or data.get("lat") is None:
        raise ValueError("Missing required fields: name, lat")
    try:
        return Walk.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid walk: {exc.error_count()} field error(s)") from exc


def _escape_xml(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def generate_gpx(walk: Walk) -> str:
    """Builds a GPX track of the walk's waypoints.

    Only the name, description and raw coordinates are written: no elevation
    and no timestamps.
    """
    name = _escape_xml(walk.name)
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<gpx version="1.1" creator="{GPX_CREATOR}"',
        '  xmlns="http://www.topografix.com/GPX/1/1">',
        "  <metadata>",
        f"    <name>{name}</name>",
        f"    <desc>{_escape_xml(walk.desc)}</desc>",
        "  </metadata>",
        "  <trk>",
        f"    <name>{name}</name>",
        "    <trkseg>",
    ]
    for lat, lon in walk.waypoints:
        lines.append(f'      <trkpt lat="{lat}" lon="{lon}"></trkpt>')
    lines += [
        "    </trkseg>",
        "  </trk>",
        "</gpx>",
    ]
    return "\n".join(lines)


def gpx_filename(walk: Walk) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", walk.name) + ".gpx"
