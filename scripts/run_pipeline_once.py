"""Run one suggestion pipeline pass against the configured stores.

Wires the pipeline from environment settings, runs a single batch, and
prints the run report. Useful for debugging strategies and inspecting the
artifacts written under DATA_DIR.

Usage:
    uv run python scripts/run_pipeline_once.py [--data-dir <path>] [--heuristic]

Examples:
    # Run against a scratch data directory with no LLM calls
    uv run python scripts/run_pipeline_once.py --data-dir /tmp/suggestions --heuristic
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Ensure suggestion_engine is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def run_once(data_dir: str | None, heuristic: bool) -> int:
    from suggestion_engine.core.config import get_settings
    from suggestion_engine.services.suggestion_pipeline import PipelineStageError, build_pipeline

    overrides = {}
    if data_dir:
        overrides["DATA_DIR"] = data_dir
    if heuristic:
        overrides.update(
            GATE_STRATEGY="heuristic",
            GENERATION_STRATEGY="heuristic",
            SCORING_STRATEGY="heuristic",
            DEDUP_STRATEGY="heuristic",
        )
    settings = get_settings().model_copy(update=overrides)

    pipeline = build_pipeline(settings)
    pipeline.initialize()

    print(f"\n{'='*60}")
    print(f"Running pipeline (data dir: {settings.DATA_DIR})...")

    try:
        report = await pipeline.trigger_pipeline_once()
    except PipelineStageError as e:
        print(f"Pipeline failed at stage {e.stage}: {e.cause}")
        return 1

    print(json.dumps(report.model_dump(mode="json") if report else None, indent=2))
    print(f"{'='*60}\n")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one suggestion pipeline pass")
    parser.add_argument("--data-dir", help="Override DATA_DIR")
    parser.add_argument("--heuristic", action="store_true", help="Use heuristic strategies for every stage")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_once(args.data_dir, args.heuristic)))


if __name__ == "__main__":
    main()
