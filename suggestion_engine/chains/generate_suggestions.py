"""Generate candidate suggestions from new observations.

Two strategies share ``generate(observations, *, context, preferences, batch_id)``:
  - LLMSuggestionGenerator: single completion call (temperature 0.7, 2048 tokens)
  - HeuristicSuggestionGenerator: deterministic keyword templates, no LLM cost

Candidates below the confidence floor are discarded. Transport failures
propagate to the caller so the batch can be retried; an unusable response
falls back to the heuristic templates for that batch.

Usage:
    from suggestion_engine.chains.generate_suggestions import LLMSuggestionGenerator

    generator = LLMSuggestionGenerator(text_generator)
    candidates = await generator.generate(new_observations, context=related, preferences=prefs)
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Any, Protocol

from pydantic import ValidationError

from suggestion_engine.core.llm import LLMResponseError, parse_llm_json_dict
from suggestion_engine.core.logging import get_logger, log_with_context
from suggestion_engine.core.schemas_observations import Observation
from suggestion_engine.core.schemas_suggestions import CandidateSuggestion
from suggestion_engine.core.tokenizer import extract_terms
from suggestion_engine.db.protocols import TextGenerator

logger = get_logger(__name__)

DEFAULT_CONFIDENCE = 0.7
DEFAULT_CONFIDENCE_FLOOR = 0.5

_CATEGORIES = {"problem", "efficiency", "learning"}
_DECAY_PROFILES = {"ephemeral", "session", "durable", "evergreen"}


class SuggestionGenerator(Protocol):
    async def generate(
        self,
        observations: list[Observation],
        *,
        context: list[Observation] | None = None,
        preferences: list[str] | None = None,
        batch_id: str | None = None,
    ) -> list[CandidateSuggestion]: ...


def _suggestion_id(batch_id: str | None, index: int) -> str:
    if batch_id:
        return f"{batch_id}_sug_{index}"
    return f"sug_{uuid.uuid4().hex[:16]}"


# =============================================================================
# LLM generator
# =============================================================================

SYSTEM_PROMPT = """You are a helpful AI assistant. Based on a transcription of what the user is seeing on their screen, generate concrete suggestions that would help them.

## QUALITY REQUIREMENTS
A suggestion MUST be accurate, relevant, timely, actionable and clear.

**CRITICAL: Generate NOTHING rather than bad suggestions. If you cannot meet ALL quality requirements, return an empty suggestions array.**

## CATEGORIES
Each suggestion must belong to exactly one category:
1. **problem**: Something is wrong or might go wrong (errors, failures, risky patterns)
2. **efficiency**: There's a better or faster way (suboptimal workflows, automatable work)
3. **learning**: User might not know about this (unknown features, helpful concepts, better tools)

## OUTPUT STRUCTURE
Each suggestion must include:
- **title**: Highly specific title mentioning exactly where and how you could help
- **category**: One of "problem", "efficiency", or "learning"
- **description**: Why this suggestion would be helpful
- **approach**: Brief, high-level steps from now to completion
- **keywords**: Keywords helpful for retrieval (include project names)
- **confidence**: 0-1 score for how confident you are this suggestion is correct and valuable.
  Below 0.5 = do not generate this suggestion
- **decayProfile**: "ephemeral" (minutes), "session" (hours), "durable" (a week) or "evergreen" (no decay)
- **supportEvidence**: What from the transcription supports this suggestion
- **initialChatMessage**: A detailed opening message for when the user starts a chat: what you observed,
  why it would help, concrete steps, and a question about where to start

## AVOID
- Trivial or self-evident suggestions
- Telling the user to do something they're ALREADY doing
- Suggestions that are too high-level or generic

Respond in JSON format:
{
  "suggestions": [
    {
      "title": "...",
      "category": "problem" | "efficiency" | "learning",
      "description": "...",
      "approach": "...",
      "keywords": ["..."],
      "confidence": 0.85,
      "decayProfile": "session",
      "supportEvidence": "...",
      "initialChatMessage": "..."
    }
  ]
}"""


def format_observations_for_prompt(observations: list[Observation]) -> str:
    blocks = []
    for i, obs in enumerate(observations):
        blocks.append(
            f"--- Frame {i + 1} ---\n"
            f"{obs.text or 'No transcription'}\n\n"
            f"Applications: {', '.join(obs.app_set()) or 'None detected'}\n"
            f"Activities: {', '.join(obs.activities) or 'None detected'}\n"
            f"Keywords: {', '.join(obs.keywords[:20]) or 'None'}"
        )
    return "\n\n".join(blocks)


def build_generation_prompt(
    observations: list[Observation],
    context: list[Observation],
    preferences: list[str],
) -> str:
    context_text = format_observations_for_prompt(context) if context else "No related past activity."
    preferences_text = "\n".join(f"- {p}" for p in preferences) or "No user preferences available."

    return f"""Based on the user's screen activity, generate helpful suggestions.

Screen Transcription:
{format_observations_for_prompt(observations)}

Related Past Activity:
{context_text}

User Context/Preferences:
{preferences_text}

Generate specific, actionable suggestions in JSON format. Remember: generate NOTHING rather than low-quality suggestions."""


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v) for v in value]


def _raw_support(item: dict) -> int | None:
    value = item.get("rawSupport", item.get("raw_support", item.get("support")))
    if value is None:
        return None
    return max(1, min(10, int(round(float(value)))))


def parse_candidates(
    raw_output: str,
    observations: list[Observation],
    *,
    batch_id: str | None = None,
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
) -> list[CandidateSuggestion]:
    """
    Turn a generation response into candidates.

    Accepts ``{"suggestions": [...]}`` or a bare list. Malformed items are
    skipped; the rest of the batch continues.

    Raises:
        LLMResponseError: If the response is not JSON or has no suggestion list
    """
    parsed = parse_llm_json_dict(raw_output)
    items = parsed.get("suggestions") if isinstance(parsed, dict) else parsed
    if not isinstance(items, list):
        raise LLMResponseError("Generation response has no suggestions list")

    source_ids = [o.id for o in observations]
    default_evidence = [o.text for o in observations[:3]]

    candidates: list[CandidateSuggestion] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed suggestion at index {i}: not an object")
            continue
        try:
            confidence = float(item.get("confidence", DEFAULT_CONFIDENCE))
            if confidence < confidence_floor:
                logger.info(f"Skipping suggestion '{item.get('title')}' with low confidence: {confidence}")
                continue

            category = item.get("category")
            decay = item.get("decayProfile", item.get("decay_profile"))
            candidates.append(
                CandidateSuggestion(
                    id=_suggestion_id(batch_id, i),
                    title=str(item.get("title") or "Untitled suggestion"),
                    description=str(item.get("description") or ""),
                    approach=str(item.get("approach") or ""),
                    keywords=_as_list(item.get("keywords")),
                    category=category if category in _CATEGORIES else "efficiency",
                    confidence=min(1.0, confidence),
                    raw_support=_raw_support(item),
                    decay_profile=decay if decay in _DECAY_PROFILES else "session",
                    support_evidence=_as_list(item.get("supportEvidence")) or default_evidence,
                    initial_chat_message=str(item.get("initialChatMessage") or ""),
                    source_observation_ids=source_ids,
                )
            )
        except (TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Skipping malformed suggestion at index {i}: {e}")

    return candidates


class LLMSuggestionGenerator:
    """Generator backed by the text generator."""

    strategy = "llm"

    def __init__(self, generator: TextGenerator, *, confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR):
        self.generator = generator
        self.confidence_floor = confidence_floor

    async def generate(
        self,
        observations: list[Observation],
        *,
        context: list[Observation] | None = None,
        preferences: list[str] | None = None,
        batch_id: str | None = None,
    ) -> list[CandidateSuggestion]:
        if not observations:
            return []

        raw = await self.generator.complete(
            SYSTEM_PROMPT,
            build_generation_prompt(observations, context or [], preferences or []),
            temperature=0.7,
            max_tokens=2048,
        )
        try:
            candidates = parse_candidates(
                raw,
                observations,
                batch_id=batch_id,
                confidence_floor=self.confidence_floor,
            )
        except LLMResponseError as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"Unusable generation response, falling back to heuristic generator: {e}",
                batch_id=batch_id,
                stage="suggestion_generation",
            )
            return HeuristicSuggestionGenerator(confidence_floor=self.confidence_floor).generate_sync(
                observations, batch_id=batch_id
            )
        logger.info(f"Generated {len(candidates)} candidate suggestions from {len(observations)} observations")
        return candidates


# =============================================================================
# Heuristic generator
# =============================================================================

MAX_KEYWORDS = 5

TEMPLATES = (
    (
        "Review {kw} best practices",
        "Based on your recent activity with {kw}, reviewing best practices could help improve your work.",
        "1. Research current {kw} best practices\n2. Compare with your current approach\n3. Identify improvements",
    ),
    (
        "Optimize {kw} workflow",
        "You've been working with {kw} frequently. There may be opportunities to streamline your workflow.",
        "1. Analyze current {kw} workflow\n2. Identify bottlenecks\n3. Implement optimizations",
    ),
    (
        "Document {kw} process",
        "Creating documentation for your {kw} work could help with future reference and collaboration.",
        "1. Outline key {kw} processes\n2. Document steps and decisions\n3. Share with relevant stakeholders",
    ),
)


def top_keywords(observations: list[Observation], limit: int = MAX_KEYWORDS) -> list[tuple[str, int]]:
    """Most frequent keywords by (count desc, first appearance)."""
    counts: Counter[str] = Counter()
    first_seen: dict[str, int] = {}
    for obs in observations:
        terms = [k.lower() for k in obs.keywords] or extract_terms(obs.text)
        for term in terms:
            if term not in first_seen:
                first_seen[term] = len(first_seen)
            counts[term] += 1

    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], first_seen[kv[0]]))
    return ranked[:limit]


class HeuristicSuggestionGenerator:
    """Deterministic keyword-template generator."""

    strategy = "heuristic"

    def __init__(self, *, confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR):
        self.confidence_floor = confidence_floor

    async def generate(
        self,
        observations: list[Observation],
        *,
        context: list[Observation] | None = None,
        preferences: list[str] | None = None,
        batch_id: str | None = None,
    ) -> list[CandidateSuggestion]:
        return self.generate_sync(observations, batch_id=batch_id)

    def generate_sync(
        self,
        observations: list[Observation],
        *,
        batch_id: str | None = None,
    ) -> list[CandidateSuggestion]:
        if not observations:
            return []

        source_ids = [o.id for o in observations]
        evidence = [o.text for o in observations[:3]]

        candidates = []
        for i, ((keyword, count), (title, description, approach)) in enumerate(
            zip(top_keywords(observations), TEMPLATES)
        ):
            confidence = min(0.9, 0.5 + 0.1 * count)
            if confidence < self.confidence_floor:
                continue
            candidates.append(
                CandidateSuggestion(
                    id=_suggestion_id(batch_id, i),
                    title=title.format(kw=keyword),
                    description=description.format(kw=keyword),
                    approach=approach.format(kw=keyword),
                    keywords=[keyword],
                    category="efficiency",
                    confidence=confidence,
                    decay_profile="session",
                    support_evidence=evidence,
                    initial_chat_message=(
                        f"I noticed {keyword} came up {count} time(s) in your recent activity. "
                        f"{description.format(kw=keyword)} Where would you like to start?"
                    ),
                    source_observation_ids=source_ids,
                )
            )
        return candidates
