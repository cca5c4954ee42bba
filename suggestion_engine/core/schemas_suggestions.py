"""Pydantic models for the suggestion pipeline.

Stage outputs, in pipeline order:
  CandidateSuggestion  (generation)
  ScoredSuggestion     (scoring & filtering)
  DeduplicationResult  (deduplication)
  Suggestion           (record persisted in the suggestion store)

Every utility dimension is normalized to 0-1. benefit, confidence,
timeliness, actionability and decay are good-high; disruption_cost and
miss_cost are cost-high.
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SuggestionCategory = Literal["problem", "efficiency", "learning"]

DecayProfile = Literal["ephemeral", "session", "durable", "evergreen"]

FilterPolicyName = Literal["composite", "cutoff"]

RelationClass = Literal["COMBINE", "RELATED", "DIFFERENT"]

SuggestionStatus = Literal["active", "closed", "complete"]


# =============================================================================
# Comparison view shared by candidates and stored suggestions
# =============================================================================


class ComparableSuggestion(BaseModel):
    """The fields deduplication looks at, regardless of pipeline stage."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    approach: str = ""
    keywords: list[str] = Field(default_factory=list)
    category: SuggestionCategory | None = None


# =============================================================================
# Generation
# =============================================================================


class CandidateSuggestion(BaseModel):
    """A suggestion proposed by the generator, before scoring."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    approach: str = ""
    keywords: list[str] = Field(default_factory=list)
    category: SuggestionCategory = "efficiency"
    confidence: float = Field(ge=0.0, le=1.0)
    raw_support: int | None = Field(default=None, ge=1, le=10)
    decay_profile: DecayProfile = "session"
    support_evidence: list[str] = Field(default_factory=list)
    initial_chat_message: str = ""
    source_observation_ids: list[str] = Field(default_factory=list)
    generated_at: float = Field(default_factory=time.time)

    def support_rating(self) -> int:
        """1-10 support rating: raw_support, else derived from confidence."""
        if self.raw_support is not None:
            return self.raw_support
        return min(10, max(1, round(self.confidence * 10)))

    def as_comparable(self) -> ComparableSuggestion:
        return ComparableSuggestion(
            id=self.id,
            title=self.title,
            description=self.description,
            approach=self.approach,
            keywords=list(self.keywords),
            category=self.category,
        )


class GenerationResult(BaseModel):
    """Output of one generation pass."""

    batch_id: str
    observation_ids: list[str]
    context: list[str] = Field(default_factory=list)
    suggestions: list[CandidateSuggestion] = Field(default_factory=list)
    strategy: Literal["heuristic", "llm"]
    generated_at: float = Field(default_factory=time.time)


# =============================================================================
# Scoring & filtering
# =============================================================================


class UtilityScores(BaseModel):
    """Normalized (0-1) utility dimensions for one suggestion."""

    model_config = ConfigDict(frozen=True)

    benefit: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    timeliness: float = Field(ge=0.0, le=1.0)
    actionability: float = Field(ge=0.0, le=1.0)
    disruption_cost: float = Field(ge=0.0, le=1.0)
    miss_cost: float = Field(ge=0.0, le=1.0)
    decay: float = Field(ge=0.0, le=1.0)


class FilterDecision(BaseModel):
    """Pass/fail outcome plus the numbers that produced it."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    reason: str
    policy: FilterPolicyName
    composite_score: float
    cutoff: float | None = None
    support_probability: float | None = None


class ScoredSuggestion(BaseModel):
    """A candidate with its utility scores and filter decision."""

    model_config = ConfigDict(frozen=True)

    candidate: CandidateSuggestion
    scores: UtilityScores
    decision: FilterDecision
    scorer: Literal["heuristic", "llm"]
    scored_at: float = Field(default_factory=time.time)

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def title(self) -> str:
        return self.candidate.title

    @property
    def passed(self) -> bool:
        return self.decision.passed

    @property
    def composite_score(self) -> float:
        return self.decision.composite_score

    def as_comparable(self) -> ComparableSuggestion:
        return self.candidate.as_comparable()


class ScoringResult(BaseModel):
    """Output of one scoring pass."""

    batch_id: str
    scored: list[ScoredSuggestion] = Field(default_factory=list)
    scored_at: float = Field(default_factory=time.time)

    @property
    def passed(self) -> list[ScoredSuggestion]:
        return [s for s in self.scored if s.passed]

    @property
    def filtered_out(self) -> list[ScoredSuggestion]:
        return [s for s in self.scored if not s.passed]


# =============================================================================
# Deduplication
# =============================================================================


class PairComparison(BaseModel):
    """One pairwise classification, kept for the audit trail."""

    suggestion_id: str
    other_id: str
    classification: RelationClass
    similarity: float
    reason: str = ""
    against: Literal["existing", "batch"]


class DuplicateRecord(BaseModel):
    """A suggestion removed as a duplicate of an anchor."""

    suggestion: ScoredSuggestion
    duplicate_of_id: str
    similarity_score: float


class RelatedRecord(BaseModel):
    """A kept suggestion that shares a higher-level goal with another."""

    suggestion_id: str
    related_to_id: str
    similarity_score: float


class DeduplicationResult(BaseModel):
    """Output of one deduplication pass.

    ``suggestions`` is the arena of inputs; ``clusters`` maps an anchor id
    (a kept suggestion or an existing store suggestion) to arena indices.
    """

    batch_id: str
    suggestions: list[ScoredSuggestion] = Field(default_factory=list)
    unique: list[ScoredSuggestion] = Field(default_factory=list)
    duplicates_removed: list[DuplicateRecord] = Field(default_factory=list)
    related: list[RelatedRecord] = Field(default_factory=list)
    clusters: dict[str, list[int]] = Field(default_factory=dict)
    comparisons: list[PairComparison] = Field(default_factory=list)
    strategy: str = "heuristic"
    processed_at: float = Field(default_factory=time.time)

    def cluster_members(self, anchor_id: str) -> list[ScoredSuggestion]:
        return [self.suggestions[i] for i in self.clusters.get(anchor_id, [])]


# =============================================================================
# Persisted record
# =============================================================================


class SuggestionUtilities(BaseModel):
    """Utility block stored with each suggestion (0-1 scale)."""

    benefit: float
    false_positive_cost: float
    false_negative_cost: float
    decay: float


class Suggestion(BaseModel):
    """A suggestion as held by the external suggestion store."""

    suggestion_id: str
    title: str
    description: str = ""
    approach: str = ""
    keywords: list[str] = Field(default_factory=list)
    category: SuggestionCategory | None = None
    status: SuggestionStatus = "active"
    initial_prompt: str = ""
    support: float = 0.0
    composite_score: float = 0.0
    utilities: SuggestionUtilities | None = None
    grounding: list[str] = Field(default_factory=list)
    source_observation_ids: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    def as_comparable(self) -> ComparableSuggestion:
        return ComparableSuggestion(
            id=self.suggestion_id,
            title=self.title,
            description=self.description,
            approach=self.approach,
            keywords=list(self.keywords),
            category=self.category,
        )

    @classmethod
    def from_scored(cls, scored: ScoredSuggestion, *, now: float | None = None) -> Suggestion:
        """Convert a pipeline result into a store record."""
        now = time.time() if now is None else now
        candidate = scored.candidate
        scores = scored.scores
        return cls(
            suggestion_id=candidate.id,
            title=candidate.title,
            description=candidate.description,
            approach=candidate.approach,
            keywords=list(candidate.keywords),
            category=candidate.category,
            initial_prompt=candidate.initial_chat_message or f"Help me with: {candidate.title}",
            support=scored.decision.support_probability
            if scored.decision.support_probability is not None
            else scored.decision.composite_score,
            composite_score=scored.decision.composite_score,
            utilities=SuggestionUtilities(
                benefit=scores.benefit,
                false_positive_cost=scores.disruption_cost,
                false_negative_cost=scores.miss_cost,
                decay=scores.decay,
            ),
            grounding=list(candidate.support_evidence),
            source_observation_ids=list(candidate.source_observation_ids),
            created_at=now,
            updated_at=now,
        )
