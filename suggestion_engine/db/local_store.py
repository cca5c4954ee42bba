"""JSON-file stores under DATA_DIR.

Layout:
    observations.json            list of Observation objects
    suggestions.json             list of Suggestion records
    preferences.json             list of user preference strings
    suggestion_generation/_meta.json   {"lastProcessedTimestamp": float}
"""

import json
from pathlib import Path
from typing import Any

from suggestion_engine.core.logging import get_logger
from suggestion_engine.core.schemas_observations import Observation
from suggestion_engine.core.schemas_suggestions import Suggestion

logger = get_logger(__name__)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, sort_keys=True, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


class LocalObservationStore:
    """Observations read from ``observations.json``."""

    def __init__(self, data_dir: str | Path):
        self.path = Path(data_dir) / "observations.json"

    def get_all_observations(self) -> list[Observation]:
        """All observations, newest first."""
        observations = [Observation.model_validate(o) for o in _read_json(self.path, [])]
        return sorted(observations, key=lambda o: o.timestamp, reverse=True)

    def get_recent_observations(self, limit: int) -> list[Observation]:
        return self.get_all_observations()[:limit]

    def add_observation(self, observation: Observation) -> None:
        data = _read_json(self.path, [])
        data.append(observation.model_dump(mode="json"))
        _write_json(self.path, data)


class LocalSuggestionStore:
    """Suggestions and preferences kept in JSON files."""

    def __init__(self, data_dir: str | Path):
        root = Path(data_dir)
        self.suggestions_path = root / "suggestions.json"
        self.preferences_path = root / "preferences.json"

    def get_suggestions(self) -> list[Suggestion]:
        return [Suggestion.model_validate(s) for s in _read_json(self.suggestions_path, [])]

    def get_active_suggestions(self) -> list[Suggestion]:
        return [s for s in self.get_suggestions() if s.status == "active"]

    def add_suggestion(self, suggestion: Suggestion) -> None:
        data = _read_json(self.suggestions_path, [])
        data.append(suggestion.model_dump(mode="json"))
        _write_json(self.suggestions_path, data)
        logger.info(f"Stored suggestion {suggestion.suggestion_id}: {suggestion.title}")

    def get_user_preferences(self) -> list[str]:
        return [str(p) for p in _read_json(self.preferences_path, [])]


class LocalCheckpointStore:
    """Monotonic watermark in ``suggestion_generation/_meta.json``."""

    def __init__(self, data_dir: str | Path):
        self.path = Path(data_dir) / "suggestion_generation" / "_meta.json"

    def load(self) -> float:
        try:
            meta = _read_json(self.path, {})
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable checkpoint {self.path}, starting from 0: {e}")
            return 0.0
        return float(meta.get("lastProcessedTimestamp", 0.0))

    def save(self, timestamp: float) -> None:
        current = self.load()
        if timestamp < current:
            logger.warning(f"Ignoring checkpoint rollback from {current} to {timestamp}")
            return
        _write_json(self.path, {"lastProcessedTimestamp": timestamp})
