"""Pydantic models for observations and concentration-gate decisions.

An Observation is one unit of transcribed user activity, produced by the
external capture/analysis collaborator. Observations are immutable.
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

GateDecisionType = Literal["CONTINUE", "SKIP"]


class Observation(BaseModel):
    """A transcribed frame of user activity."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    timestamp: float  # unix seconds
    tags: list[str] = Field(default_factory=list)

    # Frame-analysis fields (may be empty for plain-text observations)
    applications: list[str] = Field(default_factory=list)
    activities: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    def app_set(self) -> list[str]:
        """Applications seen in this frame, falling back to tags."""
        return list(self.applications or self.tags)


class GateDecision(BaseModel):
    """Outcome of the concentration gate for one observation."""

    model_config = ConfigDict(frozen=True)

    observation_id: str
    decision: GateDecisionType
    importance: float = Field(ge=0.0, le=1.0)
    reason: str
    strategy: Literal["heuristic", "llm"]
    processed_at: float = Field(default_factory=time.time)

    @property
    def should_continue(self) -> bool:
        return self.decision == "CONTINUE"
