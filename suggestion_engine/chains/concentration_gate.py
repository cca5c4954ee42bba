"""Concentration gate: decide whether an observation is worth generating for.

Two strategies share the ``evaluate(current, recent)`` interface:
  - HeuristicConcentrationGate: app/activity pattern tables, no LLM cost
  - LLMConcentrationGate: asks the text generator, falls back to CONTINUE

The gate never drops an observation because of an infrastructure fault.

Usage:
    from suggestion_engine.chains.concentration_gate import HeuristicConcentrationGate

    decision = await HeuristicConcentrationGate().evaluate(current, recent)
    if not decision.should_continue:
        return
"""

from __future__ import annotations

import logging
from typing import Protocol

from suggestion_engine.core.llm import LLMRequestError, LLMResponseError, parse_llm_json_dict
from suggestion_engine.core.logging import get_logger, log_with_context
from suggestion_engine.core.schemas_observations import GateDecision, Observation
from suggestion_engine.db.protocols import TextGenerator

logger = get_logger(__name__)


class ConcentrationGate(Protocol):
    async def evaluate(self, current: Observation, recent: list[Observation]) -> GateDecision: ...


# =============================================================================
# Heuristic gate
# =============================================================================

LOW_VALUE_APPS = ("twitter", "facebook", "instagram", "tiktok", "youtube", "netflix", "reddit")

HIGH_VALUE_KEYWORDS = ("coding", "debugging", "writing", "reviewing", "meeting", "email", "document")

SIMILARITY_OVERLAP = 0.8


def _contains_any(values: list[str], needles: tuple[str, ...]) -> bool:
    return any(needle in value.lower() for value in values for needle in needles)


def is_similar_to_recent(current: Observation, recent: list[Observation]) -> bool:
    """True if at least 80% of the current apps were seen in recent frames."""
    current_apps = current.app_set()
    if not recent or not current_apps:
        return False

    recent_apps = {app for obs in recent for app in obs.app_set()}
    overlap = [app for app in current_apps if app in recent_apps]
    return len(overlap) >= len(current_apps) * SIMILARITY_OVERLAP


class HeuristicConcentrationGate:
    """Pattern-table gate."""

    strategy = "heuristic"

    async def evaluate(self, current: Observation, recent: list[Observation]) -> GateDecision:
        return self.evaluate_sync(current, recent)

    def evaluate_sync(self, current: Observation, recent: list[Observation]) -> GateDecision:
        has_low_value_app = _contains_any(current.app_set(), LOW_VALUE_APPS)
        has_high_value_activity = _contains_any(current.activities, HIGH_VALUE_KEYWORDS)
        similar = is_similar_to_recent(current, recent)

        if has_low_value_app and similar:
            decision, importance, reason = "SKIP", 0.2, "Low-value application with similar recent activity"
        elif has_high_value_activity:
            decision, importance, reason = "CONTINUE", 0.8, "High-value work activity detected"
        elif similar:
            decision, importance, reason = "SKIP", 0.3, "Similar to recent frames with no high-value activity"
        else:
            decision, importance, reason = "CONTINUE", 0.5, "New activity pattern detected"

        return GateDecision(
            observation_id=current.id,
            decision=decision,
            importance=importance,
            reason=reason,
            strategy="heuristic",
        )


# =============================================================================
# LLM gate
# =============================================================================

SYSTEM_PROMPT = """You evaluate whether a user's current screen activity warrants generating productivity suggestions. Consider:
- Is this meaningfully different from recent activity?
- Is this important work (crisis, deadline, learning, coding, writing) or low-value (social media, idle, entertainment)?
- Even if similar to recent frames, high-importance work may still warrant processing.

IMPORTANT: Be conservative about skipping. When in doubt, choose CONTINUE.

Respond in JSON format:
{
  "decision": "CONTINUE" | "SKIP",
  "importance": 0.0-1.0,
  "reason": "Brief explanation"
}

Importance scale:
- 0.0-0.3: Low value (social media browsing, entertainment, idle)
- 0.4-0.6: Medium value (general browsing, casual reading)
- 0.7-1.0: High value (active work, coding, writing, meetings, urgent tasks)"""


def _format_observation(obs: Observation) -> str:
    return (
        f'description: "{obs.text}"\n'
        f"activities: {', '.join(obs.activities) or 'none'}\n"
        f"applications: {', '.join(obs.app_set()) or 'none'}\n"
        f"keywords: {', '.join(obs.keywords) or 'none'}"
    )


def build_gate_prompt(current: Observation, recent: list[Observation]) -> str:
    if recent:
        recent_str = "\n\n".join(f"[{i + 1}]\n{_format_observation(o)}" for i, o in enumerate(recent))
    else:
        recent_str = "No recent frames available."

    return f"""Current frame:
{_format_observation(current)}

Recent frames (for context):
{recent_str}

Should we generate suggestions for this activity?"""


class LLMConcentrationGate:
    """Gate backed by the text generator."""

    strategy = "llm"

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    async def evaluate(self, current: Observation, recent: list[Observation]) -> GateDecision:
        try:
            raw = await self.generator.complete(
                SYSTEM_PROMPT,
                build_gate_prompt(current, recent),
                temperature=0.3,
                max_tokens=512,
            )
            parsed = parse_llm_json_dict(raw)
            if not isinstance(parsed, dict):
                raise LLMResponseError("Gate response is not a JSON object")

            importance = float(parsed.get("importance", 0.5))
            return GateDecision(
                observation_id=current.id,
                decision="SKIP" if str(parsed.get("decision", "")).upper() == "SKIP" else "CONTINUE",
                importance=max(0.0, min(1.0, importance)),
                reason=str(parsed.get("reason") or "No reason provided"),
                strategy="llm",
            )
        except (LLMRequestError, TypeError, ValueError) as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"Concentration gate LLM failed, defaulting to CONTINUE: {e}",
                stage="concentration_gate",
                observation_id=current.id,
            )
            return GateDecision(
                observation_id=current.id,
                decision="CONTINUE",
                importance=0.5,
                reason="LLM evaluation failed, defaulting to continue",
                strategy="llm",
            )
