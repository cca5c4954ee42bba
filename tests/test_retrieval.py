"""Tests for BM25 search, MMR reranking and retrieval helpers."""

import numpy as np
import pytest

from suggestion_engine.core.bm25 import BM25Index, bm25_search
from suggestion_engine.core.mmr import extract_timestamp_span, maximal_marginal_relevance, mmr_select
from suggestion_engine.core.retrieval import (
    LIKERT_10,
    likert,
    retrieve_and_rerank,
    retrieve_similar_observations,
    stringify_suggestion,
)
from suggestion_engine.core.schemas_observations import Observation
from suggestion_engine.core.tfidf import build_tfidf_matrix, cosine_similarity_matrix

DAY = 86400.0


class TestBM25:
    def test_ranks_by_relevance(self):
        corpus = ["python testing guide", "cooking recipes", "python python"]
        indices, scores = bm25_search(corpus, "python")

        assert indices[0] == 2
        assert indices[-1] == 1
        assert scores[-1] == 0.0
        assert scores == sorted(scores, reverse=True)

    def test_ties_keep_corpus_order(self):
        indices, scores = bm25_search(["alpha beta", "alpha beta"], "alpha")
        assert indices == [0, 1]
        assert scores[0] == scores[1]

    def test_empty_query_returns_zero_scores(self):
        indices, scores = bm25_search(["python", "cooking"], "the and of")
        assert indices == [0, 1]
        assert scores == [0.0, 0.0]

    def test_empty_corpus(self):
        assert bm25_search([], "python") == ([], [])

    def test_idf_positive_for_term_in_every_document(self):
        index = BM25Index.build(["python one", "python two"])
        assert index.idf("python") > 0

    def test_all_empty_documents(self):
        index = BM25Index.build(["", "the"])
        assert index.avg_doc_length == 0.0
        assert index.score(["python"], 0) == 0.0


class TestTfidf:
    def test_identical_documents_have_unit_similarity(self):
        sims = cosine_similarity_matrix(build_tfidf_matrix(["python testing", "python testing", "garden"]))
        assert sims[0, 1] == pytest.approx(1.0)
        assert sims[0, 2] == pytest.approx(0.0)

    def test_empty_vocabulary(self):
        matrix = build_tfidf_matrix(["the and", "of"])
        assert matrix.shape == (2, 0)
        assert np.array_equal(cosine_similarity_matrix(matrix), np.zeros((2, 2)))


class TestMMR:
    def test_rejects_lambda_out_of_range(self):
        with pytest.raises(ValueError):
            mmr_select(["a doc"], [1.0], lambda_param=1.5)

    def test_rejects_timestamp_length_mismatch(self):
        with pytest.raises(ValueError):
            mmr_select(["python", "garden"], [1.0, 0.5], [1.0])

    def test_pure_relevance(self):
        selected = mmr_select(["python", "garden", "cooking"], [0.1, 0.9, 0.5], lambda_param=1.0, top_n=2)
        assert selected == [1, 2]

    def test_penalizes_redundant_documents(self):
        docs = ["python testing", "python testing", "gardening tips"]
        selected = mmr_select(docs, [1.0, 0.95, 0.5], lambda_param=0.5, top_n=2)
        assert selected == [0, 2]

    def test_recency_decay_prefers_newer(self):
        now = 1_700_000_000.0
        selected = mmr_select(
            ["python", "garden"],
            [1.0, 1.0],
            [now - 10 * DAY, now],
            lambda_param=1.0,
            alpha=0.1,
            now=now,
        )
        assert selected == [1, 0]

    def test_span_filename_timestamps(self):
        now = 1_700_000_000.0
        old = f"{int(now - 30 * DAY)}-{int(now - 30 * DAY + 60)}.json"
        new = f"{int(now - 60)}-{int(now)}.json"
        selected = mmr_select(["python", "garden"], [1.0, 1.0], [old, new], lambda_param=1.0, now=now)
        assert selected[0] == 1

    def test_returns_original_scores(self):
        docs, scores = maximal_marginal_relevance(["python", "garden"], [0.3, 0.7], lambda_param=1.0)
        assert docs == ["garden", "python"]
        assert scores == [0.7, 0.3]

    def test_empty_documents(self):
        assert mmr_select([], []) == []

    @pytest.mark.parametrize("lambda_param", [0.1, 0.3, 0.5, 0.7, 0.9])
    def test_single_pick_is_most_relevant(self, lambda_param):
        docs = ["python parser", "garden roses", "cooking pasta", "python testing"]
        assert mmr_select(docs, [0.4, 0.2, 0.9, 0.6], lambda_param=lambda_param, top_n=1) == [2]

    @pytest.mark.parametrize(("lower", "higher"), [(0.3, 0.5), (0.5, 0.7), (0.7, 0.9), (0.9, 1.0)])
    def test_higher_lambda_keeps_relevance_order(self, lower, higher):
        docs = ["python parser", "python parser", "garden roses", "cooking pasta"]
        scores = [1.0, 0.9, 0.6, 0.3]

        def rank_agreement(lambda_param):
            selected = mmr_select(docs, scores, lambda_param=lambda_param, top_n=4)
            pairs = [(a, b) for i, a in enumerate(selected) for b in selected[i + 1:]]
            return sum(scores[a] > scores[b] for a, b in pairs) / len(pairs)

        assert rank_agreement(higher) >= rank_agreement(lower)

    def test_lambda_trades_relevance_for_diversity(self):
        docs = ["python parser", "python parser", "garden roses", "cooking pasta"]
        scores = [1.0, 0.9, 0.6, 0.3]
        assert mmr_select(docs, scores, lambda_param=0.9) == [0, 1, 2, 3]
        assert mmr_select(docs, scores, lambda_param=0.7) == [0, 2, 1, 3]
        assert mmr_select(docs, scores, lambda_param=0.3) == [0, 2, 3, 1]


def test_extract_timestamp_span():
    assert extract_timestamp_span("1700000000-1700000060.json") == (1700000000.0, 1700000060.0)
    assert extract_timestamp_span("notes.json") is None
    assert extract_timestamp_span("a-b.json") is None


class TestRetrieveAndRerank:
    def test_pure_relevance_skips_mmr(self):
        corpus = ["python testing guide", "cooking recipes", "python python"]
        docs, scores = retrieve_and_rerank(corpus, "python", lambda_param=1.0, top_n=2)
        assert docs == ["python python", "python testing guide"]
        assert len(scores) == 2

    def test_empty_corpus(self):
        assert retrieve_and_rerank([], "python") == ([], [])


class TestRetrieveSimilarObservations:
    def _observations(self) -> list[Observation]:
        return [
            Observation(id="o1", text="python parser tests", timestamp=1000.0),
            Observation(id="o2", text="gardening notes", timestamp=1010.0),
            Observation(id="o3", text="python fixtures", timestamp=1020.0),
        ]

    def test_excludes_ids_and_unrelated(self):
        result = retrieve_similar_observations(
            self._observations(), "python tests", exclude_ids=["o3"], now=2000.0
        )
        assert [o.id for o in result] == ["o1"]

    def test_empty_query(self):
        assert retrieve_similar_observations(self._observations(), "   ") == []

    def test_respects_top_n(self):
        result = retrieve_similar_observations(self._observations(), "python", top_n=1, now=2000.0)
        assert len(result) == 1


class TestLikert:
    def test_ten_point_scale(self):
        assert LIKERT_10[1] == 0.05
        assert LIKERT_10[10] == 0.95
        assert len(LIKERT_10) == 10

    def test_five_point_scale(self):
        assert likert(5) == {1: 0.1, 2: 0.3, 3: 0.5, 4: 0.7, 5: 0.9}

    def test_rejects_degenerate_scale(self):
        with pytest.raises(ValueError):
            likert(1)


def test_stringify_suggestion():
    text = stringify_suggestion("Add tests", "Cover the parser", ["python", "pytest"], "Write them")
    assert text == (
        "title: Add tests\n"
        "description: Cover the parser\n"
        "keywords: python, pytest\n"
        "approach: Write them"
    )
    assert stringify_suggestion("Add tests", "Cover the parser") == "title: Add tests\ndescription: Cover the parser"
