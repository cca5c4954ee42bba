"""Pipeline orchestrator: scheduling, run guard, status events.

One run at a time per process. A trigger that arrives while a run is in
flight is logged and dropped. Runs happen on a fixed interval after an
initial delay, or on demand via ``trigger_pipeline_once``.

Usage:
    from suggestion_engine.services.suggestion_pipeline import build_pipeline

    pipeline = build_pipeline()
    pipeline.initialize()
    pipeline.start()
    ...
    await pipeline.stop()
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from suggestion_engine.chains.concentration_gate import HeuristicConcentrationGate, LLMConcentrationGate
from suggestion_engine.chains.dedup_suggestions import (
    Deduplicator,
    HeuristicRelationClassifier,
    JaccardClassifier,
    LLMRelationClassifier,
)
from suggestion_engine.chains.generate_suggestions import HeuristicSuggestionGenerator, LLMSuggestionGenerator
from suggestion_engine.chains.score_suggestions import (
    HeuristicUtilityScorer,
    LLMUtilityScorer,
    SuggestionScorer,
    get_filter_policy,
)
from suggestion_engine.core.artifacts import ArtifactWriter
from suggestion_engine.core.config import Settings, get_settings
from suggestion_engine.core.llm import LLMConfigurationError, get_text_generator
from suggestion_engine.core.logging import get_logger, log_with_context
from suggestion_engine.db.protocols import CheckpointStore, ObservationStore, SuggestionStore, TextGenerator
from suggestion_engine.graphs.suggestion_pipeline_graph import (
    PipelineComponents,
    PipelineStageError,
    run_suggestion_pipeline,
)

logger = get_logger(__name__)

__all__ = [
    "PipelineEvent",
    "PipelineRunReport",
    "PipelineStageError",
    "PipelineStatus",
    "SuggestionPipeline",
    "build_pipeline",
]

EventType = Literal["run_started", "stage_started", "run_completed", "run_failed", "run_dropped"]


class PipelineEvent(BaseModel):
    """Status notification delivered to subscribers."""

    type: EventType
    batch_id: str | None = None
    stage: str | None = None
    detail: str = ""
    at: float = Field(default_factory=time.time)


class PipelineRunReport(BaseModel):
    """Summary of one completed run."""

    batch_id: str
    outcome: str
    new_observations: int = 0
    candidates: int = 0
    passed: int = 0
    duplicates: int = 0
    persisted_ids: list[str] = Field(default_factory=list)


class PipelineStatus(BaseModel):
    state: Literal["idle", "running"]
    scheduled: bool
    current_stage: str | None = None
    last_batch_id: str | None = None
    last_report: PipelineRunReport | None = None
    last_error: str | None = None
    runs_completed: int = 0
    runs_failed: int = 0
    interval_seconds: float
    stages: dict[str, str] = Field(default_factory=dict)


class SuggestionPipeline:
    """Periodic, single-flight runner for the suggestion graph."""

    def __init__(
        self,
        components: PipelineComponents,
        *,
        interval_seconds: float = 15.0,
        initial_delay_seconds: float = 5.0,
    ):
        self.components = components
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds

        self._running = False
        self._current_stage: str | None = None
        self._task: asyncio.Task | None = None
        self._subscribers: list[Callable[[PipelineEvent], Any]] = []
        self._initialized = False

        self.last_batch_id: str | None = None
        self.last_report: PipelineRunReport | None = None
        self.last_error: str | None = None
        self.runs_completed = 0
        self.runs_failed = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Create artifact directories. Safe to call more than once."""
        if self.components.artifacts:
            for directory in self.components.artifacts.status().values():
                _ensure_dir(directory)
        self._initialized = True
        logger.info("Suggestion pipeline initialized")

    def start(self) -> None:
        """Schedule the initial run and the recurring tick."""
        if self._task and not self._task.done():
            logger.info("Suggestion pipeline already scheduled")
            return
        if not self._initialized:
            self.initialize()

        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(
            f"Suggestion pipeline started (interval {self.interval_seconds}s, "
            f"initial delay {self.initial_delay_seconds}s)"
        )

    async def stop(self) -> None:
        """Cancel the schedule. An in-flight run is cancelled with it."""
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Suggestion pipeline stopped")

    @property
    def is_scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_running(self) -> bool:
        return self._running

    async def _loop(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.trigger_pipeline_once()
            except PipelineStageError:
                # Already logged with stage context; the next tick retries
                pass
            await asyncio.sleep(self.interval_seconds)

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    async def trigger_pipeline_once(self) -> PipelineRunReport | None:
        """
        Run the pipeline now.

        Returns:
            Run report, or None if a run was already in flight

        Raises:
            PipelineStageError: If a stage fails
        """
        # Single event loop: check-and-set cannot interleave with another trigger
        if self._running:
            logger.info("Pipeline run already in progress, dropping trigger")
            self._emit(PipelineEvent(type="run_dropped", batch_id=self.last_batch_id))
            return None

        self._running = True
        batch_id = f"batch_{int(time.time() * 1000)}"
        self.last_batch_id = batch_id
        self._emit(PipelineEvent(type="run_started", batch_id=batch_id))

        try:
            final_state = await run_suggestion_pipeline(
                batch_id,
                replace(self.components, on_stage=self._on_stage),
            )
        except PipelineStageError as e:
            self.runs_failed += 1
            self.last_error = str(e)
            self._emit(PipelineEvent(type="run_failed", batch_id=batch_id, stage=e.stage, detail=str(e.cause)))
            raise
        finally:
            self._running = False
            self._current_stage = None

        report = _report_from_state(batch_id, final_state)
        self.runs_completed += 1
        self.last_report = report
        self.last_error = None

        log_with_context(
            logger,
            logging.INFO,
            f"Pipeline run finished: {report.outcome}",
            batch_id=batch_id,
            persisted=len(report.persisted_ids),
        )
        self._emit(PipelineEvent(type="run_completed", batch_id=batch_id, detail=report.outcome))
        return report

    def _on_stage(self, stage: str, batch_id: str) -> None:
        self._current_stage = stage
        self._emit(PipelineEvent(type="stage_started", batch_id=batch_id, stage=stage))

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> PipelineStatus:
        return PipelineStatus(
            state="running" if self._running else "idle",
            scheduled=self.is_scheduled,
            current_stage=self._current_stage,
            last_batch_id=self.last_batch_id,
            last_report=self.last_report,
            last_error=self.last_error,
            runs_completed=self.runs_completed,
            runs_failed=self.runs_failed,
            interval_seconds=self.interval_seconds,
            stages=self.components.artifacts.status() if self.components.artifacts else {},
        )

    def subscribe(self, handler: Callable[[PipelineEvent], Any]) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: Callable[[PipelineEvent], Any]) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def _emit(self, event: PipelineEvent) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Pipeline status subscriber failed on {event.type}")


def _ensure_dir(directory: str) -> None:
    Path(directory).mkdir(parents=True, exist_ok=True)


def _report_from_state(batch_id: str, state: dict[str, Any]) -> PipelineRunReport:
    scoring = state.get("scoring")
    dedup = state.get("dedup")
    return PipelineRunReport(
        batch_id=batch_id,
        outcome=state.get("outcome", "unknown"),
        new_observations=len(state.get("new_observations") or []),
        candidates=len(state.get("candidates") or []),
        passed=len(scoring.passed) if scoring else 0,
        duplicates=len(dedup.duplicates_removed) if dedup else 0,
        persisted_ids=list(state.get("persisted_ids") or []),
    )


# =============================================================================
# Factory
# =============================================================================


def _build_stores(settings: Settings) -> tuple[ObservationStore, SuggestionStore, CheckpointStore]:
    backend = settings.STORE_BACKEND.lower()
    if backend == "local":
        from suggestion_engine.db.local_store import (
            LocalCheckpointStore,
            LocalObservationStore,
            LocalSuggestionStore,
        )

        return (
            LocalObservationStore(settings.DATA_DIR),
            LocalSuggestionStore(settings.DATA_DIR),
            LocalCheckpointStore(settings.DATA_DIR),
        )
    if backend == "supabase":
        from suggestion_engine.db.supabase_store import (
            SupabaseCheckpointStore,
            SupabaseObservationStore,
            SupabaseSuggestionStore,
        )

        return SupabaseObservationStore(), SupabaseSuggestionStore(), SupabaseCheckpointStore()

    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")


def build_pipeline(
    settings: Settings | None = None,
    *,
    text_generator: TextGenerator | None = None,
    observation_store: ObservationStore | None = None,
    suggestion_store: SuggestionStore | None = None,
    checkpoint_store: CheckpointStore | None = None,
    artifacts: ArtifactWriter | None = None,
) -> SuggestionPipeline:
    """
    Wire a pipeline from settings.

    Stages configured for the LLM strategy degrade to their heuristic
    implementation when generation credentials are missing.
    """
    settings = settings or get_settings()

    if observation_store is None or suggestion_store is None or checkpoint_store is None:
        default_obs, default_sugg, default_ckpt = _build_stores(settings)
        observation_store = observation_store or default_obs
        suggestion_store = suggestion_store or default_sugg
        checkpoint_store = checkpoint_store or default_ckpt

    strategies = {
        "concentration_gate": settings.GATE_STRATEGY.lower(),
        "suggestion_generation": settings.GENERATION_STRATEGY.lower(),
        "scoring_filtering": settings.SCORING_STRATEGY.lower(),
        "deduplication": settings.DEDUP_STRATEGY.lower(),
    }

    if text_generator is None and "llm" in strategies.values():
        try:
            text_generator = get_text_generator(settings)
        except LLMConfigurationError as e:
            for stage, strategy in strategies.items():
                if strategy == "llm":
                    log_with_context(
                        logger,
                        logging.ERROR,
                        f"LLM unavailable, using heuristic strategy: {e}",
                        stage=stage,
                    )
                    strategies[stage] = "heuristic"

    floor = settings.GENERATION_CONFIDENCE_FLOOR

    gate = (
        LLMConcentrationGate(text_generator)
        if strategies["concentration_gate"] == "llm"
        else HeuristicConcentrationGate()
    )
    generator = (
        LLMSuggestionGenerator(text_generator, confidence_floor=floor)
        if strategies["suggestion_generation"] == "llm"
        else HeuristicSuggestionGenerator(confidence_floor=floor)
    )
    utility_scorer = (
        LLMUtilityScorer(text_generator)
        if strategies["scoring_filtering"] == "llm"
        else HeuristicUtilityScorer()
    )
    policy = get_filter_policy(
        settings.SCORING_POLICY.lower(),
        dimension_floor=settings.SCORING_DIMENSION_FLOOR,
        composite_cutoff=settings.SCORING_COMPOSITE_CUTOFF,
    )

    dedup_strategy = strategies["deduplication"]
    if dedup_strategy == "llm":
        classifier = LLMRelationClassifier(text_generator)
    elif dedup_strategy == "jaccard":
        classifier = JaccardClassifier(settings.DEDUP_JACCARD_THRESHOLD)
    else:
        classifier = HeuristicRelationClassifier()

    components = PipelineComponents(
        observation_store=observation_store,
        suggestion_store=suggestion_store,
        checkpoint_store=checkpoint_store,
        gate=gate,
        generator=generator,
        scorer=SuggestionScorer(utility_scorer, policy),
        deduplicator=Deduplicator(classifier),
        artifacts=artifacts if artifacts is not None else ArtifactWriter(settings.DATA_DIR),
        recent_limit=settings.GATE_RECENT_OBSERVATIONS,
        retrieval_top_n=settings.RETRIEVAL_TOP_N,
        retrieval_lambda=settings.RETRIEVAL_LAMBDA,
        retrieval_alpha=settings.RETRIEVAL_ALPHA,
    )

    logger.info(
        "Suggestion pipeline wired: "
        + ", ".join(f"{stage}={strategy}" for stage, strategy in strategies.items())
        + f", policy={settings.SCORING_POLICY}, store={settings.STORE_BACKEND}"
    )

    return SuggestionPipeline(
        components,
        interval_seconds=settings.PIPELINE_INTERVAL_SECONDS,
        initial_delay_seconds=settings.PIPELINE_INITIAL_DELAY_SECONDS,
    )
