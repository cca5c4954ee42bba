"""LangGraph run of the five-stage suggestion pipeline.

    fetch -> gate -> (SKIP: end) -> generate -> (none: end) -> score -> dedup -> persist

The graph is compiled once at module load. Collaborators (stores, stage
strategies, artifact writer) travel in ``config["configurable"]["components"]``
so every run is explicitly wired by its caller.

The checkpoint advances to the newest consumed observation right after
generation succeeds. A failing generation leaves it untouched, so the next
run retries the same observations.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from suggestion_engine.chains.concentration_gate import ConcentrationGate
from suggestion_engine.chains.dedup_suggestions import Deduplicator
from suggestion_engine.chains.generate_suggestions import SuggestionGenerator
from suggestion_engine.chains.score_suggestions import SuggestionScorer
from suggestion_engine.core.artifacts import (
    DEDUP_DIR,
    GENERATION_DIR,
    SCORING_DIR,
    ArtifactWriter,
)
from suggestion_engine.core.logging import get_logger, log_with_context
from suggestion_engine.core.retrieval import retrieve_similar_observations
from suggestion_engine.core.schemas_observations import GateDecision, Observation
from suggestion_engine.core.schemas_suggestions import (
    CandidateSuggestion,
    DeduplicationResult,
    GenerationResult,
    ScoringResult,
    Suggestion,
)
from suggestion_engine.db.protocols import CheckpointStore, ObservationStore, SuggestionStore

logger = get_logger(__name__)

MAX_STEPS = 10

STAGES = ("fetch", "concentration_gate", "suggestion_generation", "scoring_filtering", "deduplication", "persist")


class PipelineStageError(RuntimeError):
    """A pipeline stage failed; the run was aborted."""

    def __init__(self, stage: str, batch_id: str, cause: BaseException):
        super().__init__(f"Stage {stage} failed for {batch_id}: {cause}")
        self.stage = stage
        self.batch_id = batch_id
        self.cause = cause


@dataclass
class PipelineComponents:
    """Everything a run needs, injected by the caller."""

    observation_store: ObservationStore
    suggestion_store: SuggestionStore
    checkpoint_store: CheckpointStore
    gate: ConcentrationGate
    generator: SuggestionGenerator
    scorer: SuggestionScorer
    deduplicator: Deduplicator
    artifacts: ArtifactWriter | None = None
    recent_limit: int = 5
    retrieval_top_n: int = 3
    retrieval_lambda: float = 0.3
    retrieval_alpha: float = 0.05
    on_stage: Callable[[str, str], None] | None = None


@dataclass
class SuggestionPipelineState:
    """State for the suggestion pipeline graph."""

    # Input
    batch_id: str

    # Processing state
    step_count: int = 0
    watermark: float = 0.0
    all_observations: list[Observation] = field(default_factory=list)
    new_observations: list[Observation] = field(default_factory=list)
    recent_observations: list[Observation] = field(default_factory=list)
    gate_decision: GateDecision | None = None
    preferences: list[str] = field(default_factory=list)
    candidates: list[CandidateSuggestion] = field(default_factory=list)
    scoring: ScoringResult | None = None
    dedup: DeduplicationResult | None = None

    # Output
    outcome: str = "pending"
    persisted_ids: list[str] = field(default_factory=list)


def _components(config: RunnableConfig) -> PipelineComponents:
    return config["configurable"]["components"]


def _enter(state: SuggestionPipelineState, config: RunnableConfig, stage: str) -> PipelineComponents:
    """Step guard plus stage notification."""
    if state.step_count + 1 > MAX_STEPS:
        raise RuntimeError(f"Graph exceeded max steps ({MAX_STEPS})")

    components = _components(config)
    if components.on_stage:
        components.on_stage(stage, state.batch_id)
    return components


async def fetch(state: SuggestionPipelineState, config: RunnableConfig) -> dict[str, Any]:
    """Load the watermark and every observation newer than it."""
    components = _enter(state, config, "fetch")

    watermark = components.checkpoint_store.load()
    all_observations = components.observation_store.get_all_observations()
    new_observations = sorted(
        (o for o in all_observations if o.timestamp > watermark),
        key=lambda o: o.timestamp,
    )
    recent = components.observation_store.get_recent_observations(components.recent_limit + 1)

    log_with_context(
        logger,
        logging.INFO,
        f"Found {len(new_observations)} new observations after {watermark}",
        batch_id=state.batch_id,
        stage="fetch",
    )

    return {
        "watermark": watermark,
        "all_observations": all_observations,
        "new_observations": new_observations,
        "recent_observations": recent,
        "outcome": "fetched" if new_observations else "no_new_observations",
        "step_count": state.step_count + 1,
    }


async def gate(state: SuggestionPipelineState, config: RunnableConfig) -> dict[str, Any]:
    """Run the concentration gate on the newest observation."""
    components = _enter(state, config, "concentration_gate")

    current = state.new_observations[-1]
    recent = [o for o in state.recent_observations if o.id != current.id][: components.recent_limit]
    decision = await components.gate.evaluate(current, recent)

    if components.artifacts:
        components.artifacts.write_gate_decision(decision)

    log_with_context(
        logger,
        logging.INFO,
        f"Gate {decision.decision} ({decision.importance:.2f}): {decision.reason}",
        batch_id=state.batch_id,
        stage="concentration_gate",
        observation_id=current.id,
    )

    return {
        "gate_decision": decision,
        "outcome": "gated" if decision.should_continue else "skipped",
        "step_count": state.step_count + 1,
    }


async def generate(state: SuggestionPipelineState, config: RunnableConfig) -> dict[str, Any]:
    """Generate candidates, then advance the checkpoint."""
    components = _enter(state, config, "suggestion_generation")

    new_ids = [o.id for o in state.new_observations]
    context = retrieve_similar_observations(
        state.all_observations,
        " ".join(o.text for o in state.new_observations),
        top_n=components.retrieval_top_n,
        lambda_param=components.retrieval_lambda,
        alpha=components.retrieval_alpha,
        exclude_ids=new_ids,
    )
    preferences = components.suggestion_store.get_user_preferences()

    candidates = await components.generator.generate(
        state.new_observations,
        context=context,
        preferences=preferences,
        batch_id=state.batch_id,
    )

    if components.artifacts:
        components.artifacts.write(
            GENERATION_DIR,
            state.batch_id,
            GenerationResult(
                batch_id=state.batch_id,
                observation_ids=new_ids,
                context=[o.id for o in context],
                suggestions=candidates,
                strategy=getattr(components.generator, "strategy", "llm"),
            ),
        )

    new_watermark = max(o.timestamp for o in state.new_observations)
    components.checkpoint_store.save(new_watermark)

    log_with_context(
        logger,
        logging.INFO,
        f"Generated {len(candidates)} candidates, checkpoint -> {new_watermark}",
        batch_id=state.batch_id,
        stage="suggestion_generation",
    )

    return {
        "candidates": candidates,
        "preferences": preferences,
        "watermark": new_watermark,
        "outcome": "generated" if candidates else "no_candidates",
        "step_count": state.step_count + 1,
    }


async def score(state: SuggestionPipelineState, config: RunnableConfig) -> dict[str, Any]:
    """Score and filter the candidates."""
    components = _enter(state, config, "scoring_filtering")

    user_context = "\n".join(
        [f"- {p}" for p in state.preferences] + [o.text for o in state.new_observations]
    )
    result = await components.scorer.score_and_filter(
        state.batch_id,
        state.candidates,
        user_context=user_context,
    )

    if components.artifacts:
        components.artifacts.write(SCORING_DIR, state.batch_id, result)

    return {"scoring": result, "step_count": state.step_count + 1}


async def dedup(state: SuggestionPipelineState, config: RunnableConfig) -> dict[str, Any]:
    """Deduplicate passed suggestions against the store and the batch."""
    components = _enter(state, config, "deduplication")

    passed = state.scoring.passed if state.scoring else []
    existing = components.suggestion_store.get_active_suggestions()
    result = await components.deduplicator.deduplicate(state.batch_id, passed, existing)

    if components.artifacts:
        components.artifacts.write(DEDUP_DIR, state.batch_id, result)

    return {"dedup": result, "step_count": state.step_count + 1}


async def persist(state: SuggestionPipelineState, config: RunnableConfig) -> dict[str, Any]:
    """Append unique suggestions to the store."""
    components = _enter(state, config, "persist")

    persisted = []
    for scored in state.dedup.unique if state.dedup else []:
        components.suggestion_store.add_suggestion(Suggestion.from_scored(scored))
        persisted.append(scored.id)

    log_with_context(
        logger,
        logging.INFO,
        f"Persisted {len(persisted)} suggestions",
        batch_id=state.batch_id,
        stage="persist",
    )

    return {"persisted_ids": persisted, "outcome": "completed", "step_count": state.step_count + 1}


def _after_fetch(state: SuggestionPipelineState) -> str:
    return "continue" if state.new_observations else "end"


def _after_gate(state: SuggestionPipelineState) -> str:
    return "continue" if state.gate_decision and state.gate_decision.should_continue else "end"


def _after_generate(state: SuggestionPipelineState) -> str:
    return "continue" if state.candidates else "end"


def _build_graph() -> StateGraph:
    """Build the suggestion pipeline graph."""
    graph = StateGraph(SuggestionPipelineState)

    graph.add_node("fetch", fetch)
    graph.add_node("gate", gate)
    graph.add_node("generate", generate)
    graph.add_node("score", score)
    graph.add_node("dedup", dedup)
    graph.add_node("persist", persist)

    graph.set_entry_point("fetch")
    graph.add_conditional_edges("fetch", _after_fetch, {"continue": "gate", "end": END})
    graph.add_conditional_edges("gate", _after_gate, {"continue": "generate", "end": END})
    graph.add_conditional_edges("generate", _after_generate, {"continue": "score", "end": END})
    graph.add_edge("score", "dedup")
    graph.add_edge("dedup", "persist")
    graph.add_edge("persist", END)

    return graph


# Compile the graph once at module load
_compiled_graph = _build_graph().compile()


async def run_suggestion_pipeline(batch_id: str, components: PipelineComponents) -> dict[str, Any]:
    """
    Run the pipeline graph for one batch.

    Args:
        batch_id: Identifier used for logs and artifacts
        components: Injected stores and stage strategies

    Returns:
        Final graph state as a dict (outcome, persisted_ids, scoring, dedup, ...)

    Raises:
        PipelineStageError: If a stage raises; the checkpoint is unchanged
            unless generation had already completed
    """
    current_stage = {"name": "fetch"}
    on_stage = components.on_stage

    def _track(stage: str, run_batch_id: str) -> None:
        current_stage["name"] = stage
        if on_stage:
            on_stage(stage, run_batch_id)

    tracked = replace(components, on_stage=_track)

    try:
        return await _compiled_graph.ainvoke(
            SuggestionPipelineState(batch_id=batch_id),
            config={"configurable": {"components": tracked}},
        )
    except Exception as e:
        log_with_context(
            logger,
            logging.ERROR,
            f"Pipeline run failed: {e}",
            batch_id=batch_id,
            stage=current_stage["name"],
            error_type=type(e).__name__,
        )
        raise PipelineStageError(current_stage["name"], batch_id, e) from e
