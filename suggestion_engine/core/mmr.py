"""
Maximal Marginal Relevance reranking with optional recency decay.

Greedy selection: at each step pick the candidate maximizing

    lambda * relevance' - (1 - lambda) * max_sim_to_selected

where ``relevance' = relevance * exp(-alpha * age_days)`` when timestamps
are supplied, and similarity is TF-IDF cosine.
"""

import math
import time

import numpy as np

from suggestion_engine.core.tfidf import build_tfidf_matrix, cosine_similarity_matrix

SECONDS_PER_DAY = 86400.0


def extract_timestamp_span(filename: str) -> tuple[float, float] | None:
    """Parse ``"<start>-<end>.json"`` into (start, end) unix seconds."""
    core = filename.removesuffix(".json")
    parts = core.split("-")
    if len(parts) != 2:
        return None
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        return None


def _timestamp_seconds(value: float | int | str, now: float) -> float:
    if isinstance(value, str):
        span = extract_timestamp_span(value)
        return span[0] if span else now
    return float(value)


def mmr_select(
    documents: list[str],
    scores: list[float],
    timestamps: list[float | str] | None = None,
    *,
    lambda_param: float = 0.5,
    alpha: float = 0.1,
    top_n: int = 10,
    now: float | None = None,
) -> list[int]:
    """Indices chosen by MMR, in selection order."""
    if lambda_param < 0 or lambda_param > 1:
        raise ValueError("lambda_param must be between 0 and 1")
    if len(scores) != len(documents):
        raise ValueError("Length of scores must equal number of documents")

    n_docs = len(documents)
    if n_docs == 0:
        return []

    if timestamps is not None and len(timestamps) != n_docs:
        raise ValueError("Length of timestamps must equal number of documents")

    now = time.time() if now is None else now

    relevance = np.asarray(scores, dtype=float)
    if timestamps is not None:
        ages = np.array(
            [(now - _timestamp_seconds(ts, now)) / SECONDS_PER_DAY for ts in timestamps]
        )
        relevance = relevance * np.exp(-alpha * ages)

    similarities = cosine_similarity_matrix(build_tfidf_matrix(documents))

    selected: list[int] = []
    remaining = list(range(n_docs))
    target = min(top_n, n_docs)

    while len(selected) < target and remaining:
        best_idx = -1
        best_score = -math.inf

        for idx in remaining:
            diversity = 0.0
            if selected and similarities.size:
                diversity = float(similarities[idx, selected].max())

            mmr_score = lambda_param * relevance[idx] - (1 - lambda_param) * diversity
            # Strict comparison keeps the earliest candidate on ties
            if mmr_score > best_score:
                best_score = mmr_score
                best_idx = idx

        if best_idx == -1:
            break
        selected.append(best_idx)
        remaining.remove(best_idx)

    return selected


def maximal_marginal_relevance(
    documents: list[str],
    scores: list[float],
    timestamps: list[float | str] | None = None,
    *,
    lambda_param: float = 0.5,
    alpha: float = 0.1,
    top_n: int = 10,
    now: float | None = None,
) -> tuple[list[str], list[float]]:
    """
    Rerank documents for relevance and diversity.

    Args:
        documents: Candidate texts
        scores: Relevance score per document (e.g. BM25)
        timestamps: Optional unix seconds or span filenames, one per document
        lambda_param: 1.0 is pure relevance, 0.0 is pure diversity
        alpha: Recency decay rate per day of age
        top_n: Maximum documents to select
        now: Reference time in unix seconds (defaults to the current time)

    Returns:
        (selected_docs, selected_scores). Scores are the original,
        undecayed relevance values.

    Raises:
        ValueError: lambda_param outside [0, 1] or timestamps length mismatch
    """
    selected = mmr_select(
        documents,
        scores,
        timestamps,
        lambda_param=lambda_param,
        alpha=alpha,
        top_n=top_n,
        now=now,
    )
    return [documents[i] for i in selected], [scores[i] for i in selected]
