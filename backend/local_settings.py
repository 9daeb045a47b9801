"""Locally stored API keys and data-directory configuration.

Keys normally come from the environment (``ORS_API_KEY``,
``ANTHROPIC_API_KEY``). For local development they can also be saved through
the /settings endpoint into ``settings.json`` in the data directory, which is
consulted only when the environment has no value.
"""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".trail_mapper"
SETTINGS_FILENAME = "settings.json"

# Environment variable consulted first for each stored key.
KEY_ENV_VARS: dict[str, str] = {
    "ors_api_key": "ORS_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
}


def data_dir() -> Path:
    """Returns the directory holding the walk snapshot and settings file."""
    return Path(os.environ.get("TRAIL_MAPPER_DATA_DIR", "") or DEFAULT_DATA_DIR)


class LocalSettings:
    """Read-modify-write store for the locally saved API keys."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or data_dir() / SETTINGS_FILENAME

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable settings file %s", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def get(self, name: str) -> str:
        return self._read().get(name, "")

    def set(self, name: str, value: str) -> None:
        if name not in KEY_ENV_VARS:
            raise KeyError(name)
        data = self._read()
        data[name] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.info("Saved local setting %s", name)

    def resolve_key(self, name: str) -> str:
        """Returns the key from the environment, else from the settings file.

        Returns "" when neither source has one.
        """
        return os.environ.get(KEY_ENV_VARS[name], "") or self.get(name)


def mask(key: str) -> str:
    """Masks all but the last four characters of a key for display."""
    if not key:
        return ""
    if len(key) <= 4:
        return "*" * len(key)
    return "*" * (len(key) - 4) + key[-4:]
