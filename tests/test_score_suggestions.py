"""Tests for utility scoring and filter policies."""

import json

import pytest

from suggestion_engine.chains.score_suggestions import (
    CompositeFilterPolicy,
    CutoffFilterPolicy,
    HeuristicUtilityScorer,
    LLMUtilityScorer,
    SuggestionScorer,
    composite_score,
    decision_cutoff,
    get_filter_policy,
    parse_llm_scores,
    support_probability,
)
from suggestion_engine.core.llm import LLMRequestError
from suggestion_engine.core.schemas_suggestions import CandidateSuggestion, UtilityScores


def _candidate(**overrides) -> CandidateSuggestion:
    fields = {
        "id": "sug_1",
        "title": "Add pytest fixtures for the parser tests",
        "description": "Reduce repeated setup.",
        "approach": "1. Extract a fixture",
        "keywords": ["pytest"],
        "category": "efficiency",
        "confidence": 0.8,
    }
    fields.update(overrides)
    return CandidateSuggestion(**fields)


def _scores(**overrides) -> UtilityScores:
    fields = {
        "benefit": 0.7,
        "confidence": 0.8,
        "timeliness": 0.7,
        "actionability": 0.8,
        "disruption_cost": 0.3,
        "miss_cost": 0.4,
        "decay": 0.4,
    }
    fields.update(overrides)
    return UtilityScores(**fields)


class TestHeuristicUtilityScorer:
    scorer = HeuristicUtilityScorer()

    def test_category_and_decay_tables(self):
        scores = self.scorer.score_sync(_candidate(category="problem", decay_profile="ephemeral"))
        assert scores.benefit == 0.8
        assert scores.disruption_cost == 0.2
        assert scores.miss_cost == 0.7
        assert scores.timeliness == 0.9
        assert scores.decay == 0.1

    def test_actionability_prefers_approach(self):
        assert self.scorer.score_sync(_candidate()).actionability == 0.8
        assert self.scorer.score_sync(_candidate(approach="  ")).actionability == 0.7
        assert self.scorer.score_sync(_candidate(approach="", keywords=[])).actionability == 0.6

    def test_title_only_candidate_passes_composite(self):
        candidate = CandidateSuggestion(id="sug_1", title="Refactor auth module for clarity", confidence=0.8)
        decision = CompositeFilterPolicy().decide(candidate, self.scorer.score_sync(candidate))
        assert decision.passed
        assert decision.composite_score == pytest.approx(0.73)

    def test_confidence_passes_through(self):
        assert self.scorer.score_sync(_candidate(confidence=0.65)).confidence == 0.65


class TestParseLLMScores:
    def test_normalizes_ten_point_scale(self):
        raw = json.dumps(
            {
                "scores": {
                    "importance": 7,
                    "confidence": 8,
                    "timeliness": 6,
                    "actionability": 9,
                    "disruptionCost": 3,
                    "missCost": 6,
                    "decay": 8,
                }
            }
        )
        scores = parse_llm_scores(raw)
        assert scores.benefit == pytest.approx(0.7)
        assert scores.disruption_cost == pytest.approx(0.3)
        assert scores.miss_cost == pytest.approx(0.6)

    def test_missing_dimensions_default_to_midpoint(self):
        scores = parse_llm_scores('{"scores": {"confidence": 9}}')
        assert scores.confidence == pytest.approx(0.9)
        assert scores.benefit == pytest.approx(0.5)

    def test_clamps_out_of_range(self):
        scores = parse_llm_scores('{"scores": {"importance": 15, "decay": -2}}')
        assert scores.benefit == 1.0
        assert scores.decay == 0.0

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_llm_scores("[1, 2, 3]")


class TestLLMUtilityScorer:
    @pytest.mark.asyncio
    async def test_uses_llm_scores(self, fake_generator_factory):
        scorer = LLMUtilityScorer(fake_generator_factory(['{"scores": {"importance": 2}}']))
        scores = await scorer.score(_candidate(), user_context="- likes tests")
        assert scores.benefit == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_falls_back_to_heuristic(self, fake_generator_factory):
        scorer = LLMUtilityScorer(fake_generator_factory([LLMRequestError("down")]))
        scores = await scorer.score(_candidate())
        assert scores == HeuristicUtilityScorer().score_sync(_candidate())


class TestCompositeFilterPolicy:
    policy = CompositeFilterPolicy(dimension_floor=0.5, composite_cutoff=0.6)

    def test_composite_weights(self):
        assert composite_score(_scores()) == pytest.approx(0.75)

    def test_passes(self):
        decision = self.policy.decide(_candidate(), _scores())
        assert decision.passed
        assert decision.policy == "composite"
        assert decision.composite_score == pytest.approx(0.75)

    def test_dimension_below_floor_fails(self):
        decision = self.policy.decide(_candidate(), _scores(actionability=0.4))
        assert not decision.passed
        assert "actionability" in decision.reason

    def test_composite_below_cutoff_fails(self):
        scores = _scores(benefit=0.5, confidence=0.5, timeliness=0.5, actionability=0.5)
        decision = self.policy.decide(_candidate(), scores)
        assert not decision.passed
        assert decision.composite_score == pytest.approx(0.5)

    def test_cost_dimensions_do_not_gate(self):
        decision = self.policy.decide(_candidate(), _scores(disruption_cost=0.9, miss_cost=0.0))
        assert decision.passed


class TestCutoffFilterPolicy:
    policy = CutoffFilterPolicy()

    def test_decision_cutoff(self):
        assert decision_cutoff(1.0, 0.1, 0.1) == pytest.approx(0.1 / 1.201)

    @pytest.mark.parametrize("benefit", [0.1, 0.3, 0.5, 0.9])
    def test_cutoff_falls_as_benefit_rises(self, benefit):
        assert decision_cutoff(benefit + 0.1, 0.4, 0.3) < decision_cutoff(benefit, 0.4, 0.3)

    @pytest.mark.parametrize("false_positive_cost", [0.0, 0.2, 0.5, 0.9])
    def test_cutoff_rises_with_false_positive_cost(self, false_positive_cost):
        assert decision_cutoff(0.6, false_positive_cost + 0.1, 0.3) > decision_cutoff(0.6, false_positive_cost, 0.3)

    def test_support_probability_from_raw_support(self):
        assert support_probability(_candidate(raw_support=10)) == 0.95
        assert support_probability(_candidate(raw_support=None, confidence=0.3)) == 0.25

    def test_strong_support_passes(self):
        decision = self.policy.decide(
            _candidate(raw_support=10),
            _scores(benefit=1.0, disruption_cost=0.1, miss_cost=0.1),
        )
        assert decision.passed
        assert decision.support_probability == 0.95
        assert decision.cutoff == pytest.approx(0.083264, abs=1e-6)

    def test_costly_weak_suggestion_fails(self):
        decision = self.policy.decide(
            _candidate(raw_support=1),
            _scores(benefit=0.1, disruption_cost=1.0, miss_cost=0.1),
        )
        assert not decision.passed
        assert decision.policy == "cutoff"


def test_get_filter_policy():
    assert isinstance(get_filter_policy("cutoff"), CutoffFilterPolicy)
    assert isinstance(get_filter_policy("composite", dimension_floor=0.4), CompositeFilterPolicy)
    with pytest.raises(ValueError):
        get_filter_policy("majority")


class TestSuggestionScorer:
    @pytest.mark.asyncio
    async def test_splits_passed_and_filtered(self):
        scorer = SuggestionScorer(HeuristicUtilityScorer(), CompositeFilterPolicy())
        good = _candidate(id="good")
        weak = _candidate(id="weak", confidence=0.45)

        result = await scorer.score_and_filter("batch_1", [good, weak])

        assert [s.id for s in result.passed] == ["good"]
        assert [s.id for s in result.filtered_out] == ["weak"]
        assert result.scored[0].scorer == "heuristic"

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        scorer = SuggestionScorer(HeuristicUtilityScorer(), CutoffFilterPolicy())
        result = await scorer.score_and_filter("batch_1", [])
        assert result.scored == []
