"""Score candidate suggestions on utility dimensions and filter them.

Scorers produce normalized UtilityScores:
  - HeuristicUtilityScorer: category / decay profile / approach tables
  - LLMUtilityScorer: 0-10 ratings from the text generator, heuristic per
    item on malformed output or transport failure

Filter policies decide pass/fail from the scores:
  - CompositeFilterPolicy: 0.3*benefit + 0.4*confidence + 0.2*timeliness
    + 0.1*actionability, every dimension >= floor and composite >= cutoff
  - CutoffFilterPolicy: decision-theoretic cutoff fp / (benefit + fp + fn)
    against the support probability

Usage:
    from suggestion_engine.chains.score_suggestions import SuggestionScorer

    scorer = SuggestionScorer(HeuristicUtilityScorer(), CompositeFilterPolicy())
    result = await scorer.score_and_filter(batch_id, candidates)
    result.passed  # -> list[ScoredSuggestion]
"""

from __future__ import annotations

import logging
from typing import Protocol

from suggestion_engine.core.llm import LLMRequestError, parse_llm_json_dict
from suggestion_engine.core.logging import get_logger, log_with_context
from suggestion_engine.core.retrieval import LIKERT_10, stringify_suggestion
from suggestion_engine.core.schemas_suggestions import (
    CandidateSuggestion,
    FilterDecision,
    ScoredSuggestion,
    ScoringResult,
    UtilityScores,
)
from suggestion_engine.db.protocols import TextGenerator

logger = get_logger(__name__)

CUTOFF_EPSILON = 1e-3

COMPOSITE_WEIGHTS = {
    "benefit": 0.3,
    "confidence": 0.4,
    "timeliness": 0.2,
    "actionability": 0.1,
}


class UtilityScorer(Protocol):
    strategy: str

    async def score(self, candidate: CandidateSuggestion, *, user_context: str = "") -> UtilityScores: ...


class FilterPolicy(Protocol):
    def decide(self, candidate: CandidateSuggestion, scores: UtilityScores) -> FilterDecision: ...


# =============================================================================
# Heuristic scorer
# =============================================================================

CATEGORY_BENEFIT = {"problem": 0.8, "efficiency": 0.7, "learning": 0.6}
CATEGORY_DISRUPTION = {"problem": 0.2, "efficiency": 0.3, "learning": 0.4}
CATEGORY_MISS_COST = {"problem": 0.7, "efficiency": 0.4, "learning": 0.3}

DECAY_TIMELINESS = {"ephemeral": 0.9, "session": 0.7, "durable": 0.6, "evergreen": 0.5}
# How long the benefit lasts; higher is slower decay
DECAY_RETENTION = {"ephemeral": 0.1, "session": 0.4, "durable": 0.7, "evergreen": 0.9}


def _actionability(candidate: CandidateSuggestion) -> float:
    """Concrete steps make a suggestion most actionable; keywords help a little."""
    if candidate.approach.strip():
        return 0.8
    if candidate.keywords:
        return 0.7
    return 0.6


class HeuristicUtilityScorer:
    """Table-driven scorer, deterministic for a given candidate."""

    strategy = "heuristic"

    async def score(self, candidate: CandidateSuggestion, *, user_context: str = "") -> UtilityScores:
        return self.score_sync(candidate)

    def score_sync(self, candidate: CandidateSuggestion) -> UtilityScores:
        return UtilityScores(
            benefit=CATEGORY_BENEFIT.get(candidate.category, 0.6),
            confidence=candidate.confidence,
            timeliness=DECAY_TIMELINESS.get(candidate.decay_profile, 0.6),
            actionability=_actionability(candidate),
            disruption_cost=CATEGORY_DISRUPTION.get(candidate.category, 0.3),
            miss_cost=CATEGORY_MISS_COST.get(candidate.category, 0.4),
            decay=DECAY_RETENTION.get(candidate.decay_profile, 0.4),
        )


# =============================================================================
# LLM scorer
# =============================================================================

SYSTEM_PROMPT = """You evaluate suggestions for a user based on their current screen activity.

For each suggestion, provide scores from 0-10 on these dimensions:

1. **importance**: How much value would this provide if valid?
   0-3 = Low value, 4-6 = Medium value, 7-10 = High value
2. **confidence**: How likely is this suggestion correct and applicable?
   This dimension has the HIGHEST WEIGHT - be conservative.
3. **timeliness**: Is now the right moment for this suggestion?
   0-3 = Bad timing (user in flow), 7-10 = Perfect timing (user stuck, needs help)
4. **actionability**: Can the user act on this immediately?
5. **disruptionCost**: How disruptive would unsolicited assistance be? (false positive cost)
   0 = not disruptive, 10 = highly disruptive
6. **missCost**: How critical is it for the user to receive this if they need it? (false negative cost)
   0 = no impact, 10 = significant negative impact
7. **decay**: How long does the benefit last?
   0 = obsolete unless acted on immediately, 10 = still useful hours later

Respond in JSON format:
{
  "scores": {
    "importance": 7,
    "confidence": 8,
    "timeliness": 6,
    "actionability": 9,
    "disruptionCost": 3,
    "missCost": 6,
    "decay": 8
  }
}"""

_LLM_FIELDS = {
    "benefit": ("importance", "benefit"),
    "confidence": ("confidence",),
    "timeliness": ("timeliness",),
    "actionability": ("actionability",),
    "disruption_cost": ("disruptionCost", "disruption_cost"),
    "miss_cost": ("missCost", "miss_cost"),
    "decay": ("decay",),
}


def build_scoring_prompt(candidate: CandidateSuggestion, user_context: str) -> str:
    suggestion_text = stringify_suggestion(
        candidate.title,
        candidate.description,
        candidate.keywords,
        candidate.approach,
    )
    return f"""Evaluate this suggestion based on the user's current activity.

Suggestion:
category: {candidate.category}
{suggestion_text}

Current Screen Activity:
{user_context or "No additional context available."}

Score each dimension (0-10)."""


def parse_llm_scores(raw_output: str) -> UtilityScores:
    """
    Normalize 0-10 ratings to 0-1. Missing dimensions default to 5.

    Raises:
        LLMResponseError: If the output is not JSON
        ValueError: If the scores block is not an object of numbers
    """
    parsed = parse_llm_json_dict(raw_output)
    scores = parsed.get("scores", parsed) if isinstance(parsed, dict) else None
    if not isinstance(scores, dict):
        raise ValueError("Scoring response has no scores object")

    values = {}
    for field, keys in _LLM_FIELDS.items():
        raw = next((scores[k] for k in keys if k in scores), 5)
        values[field] = max(0.0, min(1.0, float(raw) / 10.0))
    return UtilityScores(**values)


class LLMUtilityScorer:
    """Scorer backed by the text generator."""

    strategy = "llm"

    def __init__(self, generator: TextGenerator, fallback: HeuristicUtilityScorer | None = None):
        self.generator = generator
        self.fallback = fallback or HeuristicUtilityScorer()

    async def score(self, candidate: CandidateSuggestion, *, user_context: str = "") -> UtilityScores:
        try:
            raw = await self.generator.complete(
                SYSTEM_PROMPT,
                build_scoring_prompt(candidate, user_context),
                temperature=0.3,
                max_tokens=512,
            )
            return parse_llm_scores(raw)
        except (LLMRequestError, TypeError, ValueError) as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"LLM scoring failed for '{candidate.title}', using heuristic: {e}",
                stage="scoring_filtering",
            )
            return self.fallback.score_sync(candidate)


# =============================================================================
# Filter policies
# =============================================================================


def composite_score(scores: UtilityScores) -> float:
    return sum(getattr(scores, name) * weight for name, weight in COMPOSITE_WEIGHTS.items())


def decision_cutoff(benefit: float, false_positive_cost: float, false_negative_cost: float) -> float:
    """Probability above which showing the suggestion has positive expected utility."""
    return false_positive_cost / (benefit + false_positive_cost + false_negative_cost + CUTOFF_EPSILON)


def support_probability(candidate: CandidateSuggestion) -> float:
    return LIKERT_10[candidate.support_rating()]


class CompositeFilterPolicy:
    """Every good-high dimension above a floor and a weighted composite cutoff."""

    name = "composite"

    def __init__(self, dimension_floor: float = 0.5, composite_cutoff: float = 0.6):
        self.dimension_floor = dimension_floor
        self.composite_cutoff = composite_cutoff

    def decide(self, candidate: CandidateSuggestion, scores: UtilityScores) -> FilterDecision:
        composite = round(composite_score(scores), 6)
        low = [name for name in COMPOSITE_WEIGHTS if getattr(scores, name) < self.dimension_floor]
        summary = " ".join(f"{name[0].upper()}:{getattr(scores, name):.2f}" for name in COMPOSITE_WEIGHTS)

        if low:
            passed, reason = False, f"Below floor {self.dimension_floor}: {', '.join(low)} ({summary})"
        elif composite < self.composite_cutoff:
            passed, reason = False, f"Composite {composite:.2f} below {self.composite_cutoff} ({summary})"
        else:
            passed, reason = True, f"Composite {composite:.2f} ({summary})"

        return FilterDecision(
            passed=passed,
            reason=reason,
            policy="composite",
            composite_score=composite,
        )


class CutoffFilterPolicy:
    """Pass iff support probability exceeds the cost-weighted cutoff."""

    name = "cutoff"

    def decide(self, candidate: CandidateSuggestion, scores: UtilityScores) -> FilterDecision:
        cutoff = decision_cutoff(scores.benefit, scores.disruption_cost, scores.miss_cost)
        probability = support_probability(candidate)
        passed = probability > cutoff

        comparison = ">" if passed else "<="
        return FilterDecision(
            passed=passed,
            reason=f"Support {probability:.2f} {comparison} cutoff {cutoff:.3f}",
            policy="cutoff",
            composite_score=round(composite_score(scores), 6),
            cutoff=round(cutoff, 6),
            support_probability=probability,
        )


def get_filter_policy(name: str, *, dimension_floor: float = 0.5, composite_cutoff: float = 0.6) -> FilterPolicy:
    if name == "cutoff":
        return CutoffFilterPolicy()
    if name == "composite":
        return CompositeFilterPolicy(dimension_floor, composite_cutoff)
    raise ValueError(f"Unknown scoring policy: {name}")


# =============================================================================
# Runner
# =============================================================================


class SuggestionScorer:
    """Apply a scorer and a filter policy to a batch of candidates."""

    def __init__(self, scorer: UtilityScorer, policy: FilterPolicy):
        self.scorer = scorer
        self.policy = policy

    async def score_and_filter(
        self,
        batch_id: str,
        candidates: list[CandidateSuggestion],
        *,
        user_context: str = "",
    ) -> ScoringResult:
        scored = []
        for candidate in candidates:
            scores = await self.scorer.score(candidate, user_context=user_context)
            decision = self.policy.decide(candidate, scores)
            scored.append(
                ScoredSuggestion(
                    candidate=candidate,
                    scores=scores,
                    decision=decision,
                    scorer=self.scorer.strategy,
                )
            )

        result = ScoringResult(batch_id=batch_id, scored=scored)
        log_with_context(
            logger,
            logging.INFO,
            f"Scored {len(scored)} suggestions: {len(result.passed)} passed, {len(result.filtered_out)} filtered",
            batch_id=batch_id,
            stage="scoring_filtering",
        )
        return result
