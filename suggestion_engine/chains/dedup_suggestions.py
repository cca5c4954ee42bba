"""Deduplicate scored suggestions against the store and within the batch.

Each passed suggestion is compared first against existing active
suggestions, then against suggestions already accepted from this batch.
Pairs are classified as:
  COMBINE   - same task, the new suggestion is dropped as a duplicate
  RELATED   - same higher-level goal, both kept and the relation recorded
  DIFFERENT - unrelated

Classifiers:
  - JaccardClassifier: two-class, keyword/title Jaccard >= threshold
  - HeuristicRelationClassifier: three-class, Jaccard + rapidfuzz title ratio
  - LLMRelationClassifier: three-class A/B/C answer, heuristic per pair on failure

Usage:
    from suggestion_engine.chains.dedup_suggestions import Deduplicator

    result = await Deduplicator(HeuristicRelationClassifier()).deduplicate(
        batch_id, scoring.passed, store.get_active_suggestions()
    )
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from rapidfuzz import fuzz

from suggestion_engine.core.llm import LLMRequestError, LLMResponseError, parse_llm_json_dict
from suggestion_engine.core.logging import get_logger, log_with_context
from suggestion_engine.core.schemas_suggestions import (
    ComparableSuggestion,
    DeduplicationResult,
    DuplicateRecord,
    PairComparison,
    RelatedRecord,
    RelationClass,
    ScoredSuggestion,
    Suggestion,
)
from suggestion_engine.core.tokenizer import extract_terms
from suggestion_engine.db.protocols import TextGenerator

logger = get_logger(__name__)


@dataclass
class Relation:
    """Classifier verdict for one pair."""

    classification: RelationClass
    similarity: float
    reason: str = ""


class RelationClassifier(Protocol):
    strategy: str

    async def classify(self, a: ComparableSuggestion, b: ComparableSuggestion) -> Relation: ...


# =============================================================================
# Lexical helpers
# =============================================================================


def normalize_text(text: str) -> str:
    text = re.sub(r"[^\w\s]", "", text.lower())
    return " ".join(text.split())


def suggestion_terms(s: ComparableSuggestion) -> set[str]:
    """Keywords (split into words) together with title words."""
    terms = set(extract_terms(s.title))
    for keyword in s.keywords:
        terms.update(extract_terms(keyword))
    return terms


def jaccard_similarity(a: ComparableSuggestion, b: ComparableSuggestion) -> float:
    terms_a, terms_b = suggestion_terms(a), suggestion_terms(b)
    if not terms_a and not terms_b:
        # Nothing to compare but the titles themselves
        return 1.0 if normalize_text(a.title) == normalize_text(b.title) else 0.0
    return len(terms_a & terms_b) / len(terms_a | terms_b)


def title_ratio(a: ComparableSuggestion, b: ComparableSuggestion) -> float:
    return fuzz.token_set_ratio(normalize_text(a.title), normalize_text(b.title)) / 100.0


def is_identical(a: ComparableSuggestion, b: ComparableSuggestion) -> bool:
    return (
        normalize_text(a.title) == normalize_text(b.title)
        and normalize_text(a.description) == normalize_text(b.description)
    )


# =============================================================================
# Classifiers
# =============================================================================


class JaccardClassifier:
    """Two-class classifier: COMBINE iff Jaccard >= threshold."""

    strategy = "jaccard"

    def __init__(self, threshold: float = 0.7):
        self.threshold = threshold

    async def classify(self, a: ComparableSuggestion, b: ComparableSuggestion) -> Relation:
        return self.classify_sync(a, b)

    def classify_sync(self, a: ComparableSuggestion, b: ComparableSuggestion) -> Relation:
        similarity = 1.0 if is_identical(a, b) else jaccard_similarity(a, b)
        if similarity >= self.threshold:
            return Relation("COMBINE", similarity, f"Jaccard {similarity:.2f} >= {self.threshold}")
        return Relation("DIFFERENT", similarity, f"Jaccard {similarity:.2f} < {self.threshold}")


class HeuristicRelationClassifier:
    """Three-class classifier from term overlap and fuzzy title matching."""

    strategy = "heuristic"

    combine_jaccard = 0.5
    combine_ratio = 0.85
    related_jaccard = 0.2
    related_ratio = 0.6

    async def classify(self, a: ComparableSuggestion, b: ComparableSuggestion) -> Relation:
        return self.classify_sync(a, b)

    def classify_sync(self, a: ComparableSuggestion, b: ComparableSuggestion) -> Relation:
        if is_identical(a, b):
            return Relation("COMBINE", 1.0, "Identical title and description")

        jaccard = jaccard_similarity(a, b)
        ratio = title_ratio(a, b)
        similarity = round(max(jaccard, ratio), 6)
        same_category = a.category is not None and a.category == b.category

        if same_category and (jaccard >= self.combine_jaccard or ratio >= self.combine_ratio):
            return Relation("COMBINE", similarity, f"Same category, jaccard {jaccard:.2f}, title {ratio:.2f}")
        if jaccard >= self.related_jaccard or ratio >= self.related_ratio:
            return Relation("RELATED", similarity, f"Shared goal, jaccard {jaccard:.2f}, title {ratio:.2f}")
        return Relation("DIFFERENT", similarity, f"Unrelated, jaccard {jaccard:.2f}, title {ratio:.2f}")


SYSTEM_PROMPT = """Determine the relationship between two suggestions by analyzing their category, keywords, and semantic meaning.

(A) COMBINE - Both suggestions address the SAME task in the same way; one should be dropped
(B) RELATED - Different tasks that serve the same higher-level goal or project; keep both
(C) DIFFERENT - Unrelated suggestions

Respond in JSON format:
{
  "classification": "A" | "B" | "C",
  "semanticSimilarity": 0.0-1.0,
  "reason": "Brief explanation"
}"""

_LETTER_TO_CLASS: dict[str, RelationClass] = {"A": "COMBINE", "B": "RELATED", "C": "DIFFERENT"}
_WORD_TO_CLASS: dict[str, RelationClass] = {
    "COMBINE": "COMBINE",
    "COMBINE_TASK": "COMBINE",
    "DUPLICATE": "COMBINE",
    "RELATED": "RELATED",
    "DIFFERENT_TASK": "RELATED",
    "DIFFERENT": "DIFFERENT",
    "DIFFERENT_PROJECT": "DIFFERENT",
}
_DEFAULT_SIMILARITY: dict[RelationClass, float] = {"COMBINE": 0.9, "RELATED": 0.5, "DIFFERENT": 0.1}


def format_suggestion_for_prompt(s: ComparableSuggestion) -> str:
    return (
        f"Title: {s.title}\n"
        f"Category: {s.category or 'unknown'}\n"
        f"Description: {s.description}\n"
        f"Keywords: {', '.join(s.keywords) or 'none'}"
    )


def _classification_from_token(token: str) -> RelationClass | None:
    token = token.strip().strip("().").upper()
    return _LETTER_TO_CLASS.get(token) or _WORD_TO_CLASS.get(token)


def parse_relation(raw_output: str) -> Relation:
    """
    Accepts a bare letter/word answer or JSON with ``classification``.

    Raises:
        LLMResponseError: If no classification can be read
    """
    # Bare answers: every token must name the same class, e.g. "A" or "(C) DIFFERENT"
    bare = {_classification_from_token(token) for token in raw_output.split()}
    if len(bare) == 1 and None not in bare:
        classification = bare.pop()
        return Relation(classification, _DEFAULT_SIMILARITY[classification], "LLM classification")

    parsed = parse_llm_json_dict(raw_output)
    if not isinstance(parsed, dict):
        raise LLMResponseError("Relation response is not a JSON object")

    classification = _classification_from_token(str(parsed.get("classification", "")))
    if classification is None:
        raise LLMResponseError(f"Unknown classification: {parsed.get('classification')!r}")

    similarity = parsed.get("semanticSimilarity", parsed.get("similarity"))
    similarity = _DEFAULT_SIMILARITY[classification] if similarity is None else float(similarity)
    return Relation(
        classification,
        max(0.0, min(1.0, similarity)),
        str(parsed.get("reason") or "LLM classification"),
    )


class LLMRelationClassifier:
    """Three-class classifier backed by the text generator."""

    strategy = "llm"

    def __init__(self, generator: TextGenerator, fallback: HeuristicRelationClassifier | None = None):
        self.generator = generator
        self.fallback = fallback or HeuristicRelationClassifier()

    async def classify(self, a: ComparableSuggestion, b: ComparableSuggestion) -> Relation:
        try:
            raw = await self.generator.complete(
                SYSTEM_PROMPT,
                "Compare these two suggestions.\n\n"
                f"Suggestion A:\n{format_suggestion_for_prompt(a)}\n\n"
                f"Suggestion B:\n{format_suggestion_for_prompt(b)}\n\n"
                "Classify as (A) COMBINE, (B) RELATED, or (C) DIFFERENT.",
                temperature=0.2,
                max_tokens=256,
            )
            return parse_relation(raw)
        except (LLMRequestError, TypeError, ValueError) as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"LLM relation check failed for {a.id} vs {b.id}, using heuristic: {e}",
                stage="deduplication",
            )
            return self.fallback.classify_sync(a, b)


# =============================================================================
# Deduplicator
# =============================================================================


class Deduplicator:
    """Apply a relation classifier across a batch. O(batch x (existing + batch))."""

    def __init__(self, classifier: RelationClassifier):
        self.classifier = classifier

    async def deduplicate(
        self,
        batch_id: str,
        suggestions: list[ScoredSuggestion],
        existing: list[Suggestion],
    ) -> DeduplicationResult:
        anchors = [s.as_comparable() for s in existing if s.status == "active"]

        unique: list[ScoredSuggestion] = []
        duplicates: list[DuplicateRecord] = []
        related: list[RelatedRecord] = []
        clusters: dict[str, list[int]] = {}
        comparisons: list[PairComparison] = []

        for index, suggestion in enumerate(suggestions):
            current = suggestion.as_comparable()
            duplicate_of: tuple[str, float] | None = None
            best_related: tuple[str, float] | None = None

            candidates = [(a, "existing") for a in anchors] + [(u.as_comparable(), "batch") for u in unique]
            for other, against in candidates:
                relation = await self.classifier.classify(current, other)
                comparisons.append(
                    PairComparison(
                        suggestion_id=current.id,
                        other_id=other.id,
                        classification=relation.classification,
                        similarity=relation.similarity,
                        reason=relation.reason,
                        against=against,
                    )
                )
                if relation.classification == "COMBINE":
                    duplicate_of = (other.id, relation.similarity)
                    break
                if relation.classification == "RELATED" and (
                    best_related is None or relation.similarity > best_related[1]
                ):
                    best_related = (other.id, relation.similarity)

            if duplicate_of is not None:
                anchor_id, similarity = duplicate_of
                duplicates.append(
                    DuplicateRecord(suggestion=suggestion, duplicate_of_id=anchor_id, similarity_score=similarity)
                )
                clusters.setdefault(anchor_id, []).append(index)
                continue

            unique.append(suggestion)
            clusters.setdefault(current.id, []).append(index)
            if best_related is not None:
                related.append(
                    RelatedRecord(
                        suggestion_id=current.id,
                        related_to_id=best_related[0],
                        similarity_score=best_related[1],
                    )
                )

        log_with_context(
            logger,
            logging.INFO,
            f"Deduplicated {len(suggestions)} suggestions: {len(unique)} unique, "
            f"{len(duplicates)} duplicates, {len(related)} related",
            batch_id=batch_id,
            stage="deduplication",
        )

        return DeduplicationResult(
            batch_id=batch_id,
            suggestions=list(suggestions),
            unique=unique,
            duplicates_removed=duplicates,
            related=related,
            clusters=clusters,
            comparisons=comparisons,
            strategy=self.classifier.strategy,
        )
