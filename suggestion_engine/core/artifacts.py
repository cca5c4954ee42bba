"""
Per-stage audit artifacts.

Layout under DATA_DIR:
    concentration_gate/gate_<observation_id>.json
    suggestion_generation/<batch_id>.json
    scoring_filtering/<batch_id>.json
    deduplication/<batch_id>.json

Serialization uses sorted keys and fixed indentation, so the same
in-memory result always produces identical bytes.
"""

import json
import re
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from suggestion_engine.core.logging import get_logger
from suggestion_engine.core.schemas_observations import GateDecision

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

GATE_DIR = "concentration_gate"
GENERATION_DIR = "suggestion_generation"
SCORING_DIR = "scoring_filtering"
DEDUP_DIR = "deduplication"

STAGE_DIRS = (GATE_DIR, GENERATION_DIR, SCORING_DIR, DEDUP_DIR)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def serialize_artifact(model: BaseModel) -> str:
    """Canonical JSON text for an artifact."""
    return json.dumps(model.model_dump(mode="json"), sort_keys=True, indent=2) + "\n"


class ArtifactWriter:
    """Writes and reads stage artifacts under a root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, stage_dir: str, name: str) -> Path:
        safe = _UNSAFE_CHARS.sub("_", name)
        return self.root / stage_dir / f"{safe}.json"

    def write(self, stage_dir: str, name: str, model: BaseModel) -> Path:
        path = self.path_for(stage_dir, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(serialize_artifact(model), encoding="utf-8")
        logger.debug(f"Wrote {stage_dir} artifact {path.name}")
        return path

    def read(self, stage_dir: str, name: str, model: type[T]) -> T | None:
        path = self.path_for(stage_dir, name)
        if not path.exists():
            return None
        return model.model_validate_json(path.read_text(encoding="utf-8"))

    def write_gate_decision(self, decision: GateDecision) -> Path:
        return self.write(GATE_DIR, f"gate_{decision.observation_id}", decision)

    def recent_gate_decisions(self, limit: int = 10) -> list[GateDecision]:
        """Most recently processed gate decisions, newest first."""
        gate_dir = self.root / GATE_DIR
        if not gate_dir.exists():
            return []

        decisions = []
        for path in gate_dir.glob("gate_*.json"):
            try:
                decisions.append(GateDecision.model_validate_json(path.read_text(encoding="utf-8")))
            except ValueError as e:
                logger.warning(f"Skipping unreadable gate artifact {path.name}: {e}")

        decisions.sort(key=lambda d: d.processed_at, reverse=True)
        return decisions[:limit]

    def status(self) -> dict[str, str]:
        """Stage name to artifact directory."""
        return {stage: str(self.root / stage) for stage in STAGE_DIRS}
