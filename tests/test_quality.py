"""
Unit tests for response quality scoring.
"""

import pytest

from draftstream.core.quality import (
    BASE_WEIGHTS,
    DIMENSIONS,
    CandidateResponse,
    ContentGoal,
    QualityContext,
    QualityScorer,
    get_weights,
    score_engagement,
    score_platform_optimization,
    score_relevance,
    score_tone,
)
from draftstream.storage.models import ConversationTurn

POOR = "The sky looked grey."

GOOD = (
    "Here are three ways to improve your launch post:\n"
    "1. Add a concrete benefit, for example \"Cut reporting time in half\", because specifics convert.\n"
    "2. Use one focused hashtag like #analytics and tag @yourteam.\n"
    "3. End with a question: what do you think?\n"
    "Alternatively, you can try a short poll. I recommend testing both versions."
)


class TestScoreResponse:
    """Test the aggregate report."""

    def setup_method(self):
        self.scorer = QualityScorer()

    def test_short_plain_response_scores_low(self):
        """A 20-character answer with no action verbs and no platform."""
        assert len(POOR) == 20

        report = self.scorer.score_response(POOR, QualityContext())

        assert report.overall_score < 0.5
        assert "Needs improvement: completeness" in report.weaknesses
        assert "Needs improvement: actionability" in report.weaknesses

    def test_short_response_scores_low_on_twitter_too(self):
        report = self.scorer.score_response(POOR, QualityContext(platform="twitter"))
        assert report.overall_score < 0.5

    def test_detailed_response_beats_short_one(self):
        context = QualityContext(platform="twitter", user_prompt="Improve my launch post")
        good = self.scorer.score_response(GOOD, context)
        poor = self.scorer.score_response(POOR, context)

        assert good.overall_score > poor.overall_score
        assert "Provides actionable suggestions" in good.strengths
        assert "Comprehensive response" in good.strengths

    def test_scores_are_bounded(self):
        for text in ("", POOR, GOOD, "!" * 5000):
            report = self.scorer.score_response(text)
            assert 0 <= report.overall_score <= 1
            for value in report.dimensions.as_dict().values():
                assert 0 <= value <= 1

    def test_deterministic(self):
        context = QualityContext(platform="linkedin", user_prompt="Write a post")
        assert self.scorer.score_response(GOOD, context) == self.scorer.score_response(GOOD, context)

    def test_overall_score_is_rounded(self):
        report = self.scorer.score_response(GOOD)
        assert report.overall_score == round(report.overall_score, 2)

    def test_suggestions_target_weak_dimensions(self):
        report = self.scorer.score_response(POOR, QualityContext(platform="twitter"))
        assert "Add more specific, actionable recommendations" in report.suggestions
        assert "Optimize for twitter best practices" in report.suggestions

    def test_metadata(self):
        report = self.scorer.score_response(POOR)
        assert report.metadata.response_length == 20
        assert 0 <= report.metadata.readability_score <= 100

    def test_confidence_grows_with_context(self):
        bare = self.scorer.score_response(POOR)
        full = self.scorer.score_response(POOR, QualityContext(
            platform="twitter",
            user_prompt="Improve this",
            conversation_history=(ConversationTurn.user("hi"),),
            target_audience="founders",
            goals=(ContentGoal.ENGAGEMENT,),
        ))
        assert bare.confidence == 0.5
        assert full.confidence == pytest.approx(1.0)


class TestDimensionHeuristics:
    """Test individual dimension strategies."""

    def test_relevance_without_prompt_is_neutral(self):
        assert score_relevance("anything", QualityContext()) == 0.5

    def test_relevance_with_blank_prompt_is_neutral(self):
        context = QualityContext(user_prompt="   \n\t")

        assert score_relevance("Some answer text here.", context) == 0.5
        report = QualityScorer().score_response("Some answer text here.", context)
        assert 0.0 <= report.overall_score <= 1.0

    def test_relevance_keyword_overlap(self):
        context = QualityContext(user_prompt="improve my launch post")
        score = score_relevance("Improved launch post: shorter and sharper.", context)
        # 3 of 4 prompt words matched plus the improvement echo
        assert score == pytest.approx(0.3 + 0.75 * 0.5 + 0.1)

    def test_platform_optimization_twitter(self):
        twitter = QualityContext(platform="twitter")
        assert score_platform_optimization("a" * 140 + " #launch", twitter) == 1.0
        assert score_platform_optimization("a" * 300, twitter) == pytest.approx(0.3)

    def test_platform_optimization_unknown_platform(self):
        assert score_platform_optimization("text", QualityContext(platform="myspace")) == 0.5

    def test_platform_optimization_linkedin_paragraphs(self):
        linkedin = QualityContext(platform="linkedin")
        text = "a" * 200 + "\n\n" + "b" * 200
        assert score_platform_optimization(text, linkedin) == 1.0
        assert score_platform_optimization("a" * 400, linkedin) == pytest.approx(0.9)

    def test_engagement_questions_and_cta(self):
        assert score_engagement("What do you think? Share it!", QualityContext()) == pytest.approx(0.7)

    def test_casual_tone_on_linkedin(self):
        assert score_tone("hey folks, big news.", QualityContext(platform="linkedin")) == pytest.approx(0.4)


class TestWeights:
    """Test context-sensitive weighting."""

    def test_base_weights_sum_to_one(self):
        weights = get_weights(QualityContext())
        assert sum(weights.values()) == pytest.approx(1.0)
        assert weights == pytest.approx(BASE_WEIGHTS)

    @pytest.mark.parametrize("context,boosted", [
        (QualityContext(goals=(ContentGoal.ENGAGEMENT,)), "engagement"),
        (QualityContext(goals=(ContentGoal.CONVERSION,)), "actionability"),
        (QualityContext(platform="twitter"), "platform_optimization"),
    ])
    def test_boosts_are_renormalized(self, context, boosted):
        weights = get_weights(context)
        assert sum(weights.values()) == pytest.approx(1.0)
        assert weights[boosted] > BASE_WEIGHTS[boosted]
        assert set(weights) == set(DIMENSIONS)


class TestCustomScorers:
    """Test swapping dimension strategies."""

    def test_override_one_dimension(self):
        scorer = QualityScorer(scorers={"relevance": lambda response, context: 1.0})
        report = scorer.score_response(POOR)
        assert report.dimensions.relevance == 1.0
        assert "Highly relevant to the request" in report.strengths

    def test_unknown_dimension_rejected(self):
        with pytest.raises(ValueError, match="Unknown quality dimensions"):
            QualityScorer(scorers={"vibes": lambda response, context: 1.0})


class TestCompareResponses:
    """Test A/B ranking."""

    def test_ranked_best_first(self):
        ranked = QualityScorer().compare_responses([
            CandidateResponse(id="a", response=POOR),
            CandidateResponse(id="b", response=GOOD),
        ])

        assert [r.id for r in ranked] == ["b", "a"]
        assert [r.rank for r in ranked] == [1, 2]
        assert ranked[0].score >= ranked[1].score

    def test_empty(self):
        assert QualityScorer().compare_responses([]) == []
