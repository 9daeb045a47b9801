"""Persistent walk library.

The whole library is kept as one versioned JSON snapshot on disk and
rewritten on every change. Bumping ``WALKS_VERSION`` invalidates cached
snapshots so the bundled default library is picked up again.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

from pydantic import TypeAdapter, ValidationError

from models import Difficulty, Walk, WalkType

logger = logging.getLogger(__name__)

WALKS_VERSION: str = "1.1"
SNAPSHOT_FILENAME: str = "walks.json"
BUNDLED_WALKS_PATH: Path = Path(__file__).parent / "data" / "walks.json"

_WALKS_ADAPTER = TypeAdapter(list[Walk])


def bundled_walks_path() -> Path:
    return Path(os.environ.get("TRAIL_MAPPER_BUNDLED_WALKS", "") or BUNDLED_WALKS_PATH)


class WalkStore:
    """In-memory walk list mirrored to a local JSON snapshot."""

    def __init__(
        self,
        path: Path,
        bundled_path: Path | None = None,
        version: str = WALKS_VERSION,
    ) -> None:
        self.path = path
        self.bundled_path = bundled_path or bundled_walks_path()
        self.version = version
        self._walks: list[Walk] = []

    @property
    def walks(self) -> list[Walk]:
        return self._walks

    def load(self) -> list[Walk]:
        """Loads the cached snapshot, or the bundled library if it is stale.

        A snapshot is used only when its version matches and it parses; the
        bundled library is cached immediately when it is used instead.
        """
        cached = self._read_snapshot()
        if cached:
            self._walks = cached
            logger.info("Loaded %d walks from %s", len(cached), self.path)
            return self._walks

        raw = json.loads(self.bundled_path.read_text(encoding="utf-8"))
        self._walks = _WALKS_ADAPTER.validate_python(raw)
        logger.info("Loaded %d bundled walks from %s", len(self._walks), self.bundled_path)
        self._save()
        return self._walks

    def get(self, index: int) -> Walk:
        if index < 0:
            raise IndexError(index)
        return self._walks[index]

    def filter(
        self,
        difficulty: Difficulty | None = None,
        walk_type: WalkType | None = None,
    ) -> list[Walk]:
        return [
            w
            for w in self._walks
            if (difficulty is None or w.difficulty == difficulty)
            and (walk_type is None or w.walk_type == walk_type)
        ]

    def add(self, walk: Walk) -> None:
        self._walks.append(walk)
        self._save()

    def replace_all(self, walks: Sequence[Walk]) -> None:
        self._walks = list(walks)
        self._save()

    def save(self) -> None:
        """Persists the current list, e.g. after walks were edited in place."""
        self._save()

    def _read_snapshot(self) -> list[Walk] | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Discarding unreadable walk snapshot %s", self.path)
            return None
        if not isinstance(data, dict) or data.get("version") != self.version:
            logger.info("Walk snapshot version changed; reloading bundled walks")
            return None
        try:
            return _WALKS_ADAPTER.validate_python(data.get("walks") or [])
        except ValidationError:
            logger.warning("Discarding walk snapshot that no longer validates")
            return None

    def _save(self) -> None:
        payload = {
            "version": self.version,
            "walks": [w.model_dump(mode="json", by_alias=True) for w in self._walks],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise
