"""
Retrieval orchestration: BM25 recall followed by MMR reranking.

Also holds small helpers shared by the pipeline stages (Likert scale
mapping, suggestion flattening for retrieval).
"""

from collections.abc import Iterable, Sequence

from suggestion_engine.core.bm25 import bm25_search
from suggestion_engine.core.mmr import extract_timestamp_span, mmr_select
from suggestion_engine.core.schemas_observations import Observation

__all__ = [
    "LIKERT_10",
    "extract_timestamp_span",
    "likert",
    "retrieve_and_rerank",
    "retrieve_similar_observations",
    "stringify_suggestion",
]


def _rank(
    corpus: list[str],
    query: str,
    *,
    lambda_param: float,
    top_n: int,
    timestamps: list[float | str] | None,
    alpha: float,
    now: float | None = None,
) -> tuple[list[int], list[float]]:
    """Corpus indices and relevance scores of the reranked selection."""
    if not corpus:
        return [], []
    if timestamps is not None and len(timestamps) != len(corpus):
        raise ValueError("Length of timestamps must equal number of documents")

    order, scores = bm25_search(corpus, query)
    documents = [corpus[i] for i in order]
    ranked_timestamps = [timestamps[i] for i in order] if timestamps is not None else None

    if lambda_param == 1:
        return order[:top_n], scores[:top_n]

    picked = mmr_select(
        documents,
        scores,
        ranked_timestamps,
        lambda_param=lambda_param,
        alpha=alpha,
        top_n=top_n,
        now=now,
    )
    return [order[i] for i in picked], [scores[i] for i in picked]


def retrieve_and_rerank(
    corpus: list[str],
    query: str,
    *,
    lambda_param: float = 0.2,
    top_n: int = 5,
    timestamps: list[float | str] | None = None,
    alpha: float = 0.1,
) -> tuple[list[str], list[float]]:
    """
    BM25 search, then MMR reranking (skipped when lambda_param == 1).

    Returns:
        (documents, relevance_scores) for the selection
    """
    indices, scores = _rank(
        corpus,
        query,
        lambda_param=lambda_param,
        top_n=top_n,
        timestamps=timestamps,
        alpha=alpha,
    )
    return [corpus[i] for i in indices], scores


def retrieve_similar_observations(
    observations: Sequence[Observation],
    query: str,
    *,
    top_n: int = 3,
    lambda_param: float = 0.3,
    alpha: float = 0.05,
    exclude_ids: Iterable[str] = (),
    now: float | None = None,
) -> list[Observation]:
    """
    Past observations related to ``query``, favouring recent and diverse ones.

    The corpus is rebuilt from ``observations`` on every call.
    """
    excluded = set(exclude_ids)
    corpus = [o for o in observations if o.id not in excluded]
    if not corpus or not query.strip():
        return []

    indices, scores = _rank(
        [o.text for o in corpus],
        query,
        lambda_param=lambda_param,
        top_n=top_n,
        timestamps=[o.timestamp for o in corpus],
        alpha=alpha,
        now=now,
    )
    # Observations with no lexical overlap are not context
    return [corpus[i] for i, score in zip(indices, scores) if score > 0]


def likert(scale_count: int) -> dict[int, float]:
    """Map ratings 1..scale_count to bucket-midpoint probabilities."""
    if scale_count < 2:
        raise ValueError("scale_count must be at least 2")
    return {i: round((i - 0.5) / scale_count, 10) for i in range(1, scale_count + 1)}


LIKERT_10 = likert(10)


def _strify(value: str | Sequence[str]) -> str:
    return value if isinstance(value, str) else ", ".join(value)


def stringify_suggestion(
    title: str,
    description: str,
    keywords: str | Sequence[str] | None = None,
    approach: str | None = None,
) -> str:
    """Flatten a suggestion into a single retrieval document."""
    parts = [f"title: {title}", f"description: {description}"]
    if keywords:
        parts.append(f"keywords: {_strify(keywords)}")
    if approach:
        parts.append(f"approach: {approach}")
    return "\n".join(parts)
