"""Tests for summary generation."""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from commentlens.analysis.summary import (
    EMPTY_STATE_SUMMARY,
    FALLBACK_QUALITY,
    GeneratedSummary,
    SummaryGenerator,
    SummaryInput,
    clean_summary,
)
from commentlens.config import SummaryConfig
from commentlens.models import Sentiment, SentimentBreakdown, Theme

NARRATIVE = (
    "The audience responded warmly to this recipe tutorial, with 70% of comments "
    "expressing positive sentiment and only 20% voicing criticism. Viewers repeatedly "
    "praised the pasta sauce, describing it as easy to follow and saying their families "
    "enjoyed the results at dinner. The most discussed theme, Pasta & Sauce, shows that "
    "clear steps and good lighting make the content approachable for home cooks of every "
    "level. Negative remarks focused on poor audio during the sauce section and an awkward "
    "camera angle that hid one of the pasta steps."
)

FAST = SummaryConfig(max_retries=3, retry_delay=0)


@pytest.fixture
def summary_input(make_comments):
    """Ten valid comments, one positive theme of six."""
    members = make_comments([
        "Love this pasta sauce",
        "Amazing sauce, love it",
        "The pasta sauce was great",
        "Pasta sauce turned out well",
        "Nice pasta sauce recipe",
        "Best pasta sauce so far",
    ])
    theme = Theme(
        theme_id="theme_1",
        name="Pasta & Sauce",
        comments=members,
        sentiment=Sentiment.POSITIVE,
        representative_comments=members[:3],
    )
    return SummaryInput(
        sentiment_breakdown=SentimentBreakdown(0.7, 0.2, 0.1),
        themes=[theme],
        keywords=[],
        total_comments=10,
        filtered_comments=0,
    )


class TestCleanSummary:
    """Tests for text cleanup."""

    def test_strips_markdown_and_terminates(self):
        assert clean_summary("**great** results.Next steps") == "Great results. Next steps."

    def test_abbreviations_stay_intact(self):
        assert clean_summary("Fans from the U.S.A loved it") == "Fans from the U.S.A loved it."
        assert clean_summary("Made in the U.S.A.Great work") == "Made in the U.S.A. Great work."

    def test_keeps_existing_terminator(self):
        assert clean_summary("  done   here!  ") == "Done here!"

    def test_empty(self):
        assert clean_summary("   ") == ""


class TestGenerate:
    """Tests for generation, retries and fallback."""

    def test_valid_narrative(self, summary_input, scripted_llm):
        llm = scripted_llm(NARRATIVE)
        generated = asyncio.run(SummaryGenerator(llm, FAST).generate(summary_input))

        assert llm.calls == 1
        assert not generated.used_fallback
        assert generated.quality_score >= 0.6
        assert 75 <= generated.word_count <= 150
        assert "%" in generated.summary
        assert generated.emotions[0].name == "excitement"
        assert generated.key_insights
        assert generated.recommendations

    def test_prompt_carries_statistics(self, summary_input, scripted_llm):
        llm = scripted_llm(NARRATIVE)
        asyncio.run(SummaryGenerator(llm, FAST).generate(summary_input))

        prompt = llm.prompts[0]
        assert "Analysis of 10 comments" in prompt
        assert "Positive: 70.0%" in prompt
        assert "- Pasta & Sauce: 6 comments, mostly positive" in prompt

    def test_short_output_retried(self, summary_input, scripted_llm):
        llm = scripted_llm("Mostly positive, 70% liked the sauce a lot.", NARRATIVE)
        generated = asyncio.run(SummaryGenerator(llm, FAST).generate(summary_input))

        assert llm.calls == 2
        assert generated.attempts == 2
        assert not generated.used_fallback

    def test_persistently_short_output_falls_back(self, summary_input, scripted_llm):
        llm = scripted_llm("Mostly positive, 70% liked the sauce a lot.")
        generated = asyncio.run(SummaryGenerator(llm, FAST).generate(summary_input))

        assert llm.calls == 3
        assert generated.used_fallback
        assert generated.quality_score == FALLBACK_QUALITY

    def test_model_failure_falls_back(self, summary_input, failing_llm):
        generated = asyncio.run(SummaryGenerator(failing_llm, FAST).generate(summary_input))

        assert failing_llm.calls == 3
        assert generated.used_fallback
        assert generated.quality_score == pytest.approx(0.4)
        assert generated.summary.startswith("Analysis of 10 comments shows a positive")
        assert "70% positive" in generated.summary

    def test_no_model_uses_template(self, summary_input):
        generated = asyncio.run(SummaryGenerator(None, FAST).generate(summary_input))

        assert generated.used_fallback
        assert [e.name for e in generated.emotions] == ["satisfaction"]
        assert generated.emotions[0].prevalence == pytest.approx(70.0)
        assert len(generated.key_insights) == 2
        assert len(generated.recommendations) == 2

    def test_empty_state_skips_model(self, failing_llm):
        data = SummaryInput(SentimentBreakdown(), [], [], total_comments=4, filtered_comments=4)
        generated = asyncio.run(SummaryGenerator(failing_llm, FAST).generate(data))

        assert failing_llm.calls == 0
        assert generated.summary == EMPTY_STATE_SUMMARY
        assert generated.quality_score == 0.5
        assert generated.key_insights
        assert generated.recommendations


class TestDerivedContent:
    """Tests for emotions, insights and recommendations."""

    def test_emotion_prevalence_bounded(self, summary_input, make_comments):
        negative = make_comments(["The audio was broken", "Audio is so annoying"], post_id="p2")
        summary_input.themes.append(Theme(
            theme_id="theme_2",
            name="Audio",
            comments=negative,
            sentiment=Sentiment.NEGATIVE,
            representative_comments=negative,
        ))
        emotions = SummaryGenerator(None, FAST).infer_emotions(summary_input)

        assert [e.name for e in emotions] == ["excitement", "frustration"]
        assert all(0 <= e.prevalence <= 100 for e in emotions)
        assert sum(e.prevalence for e in emotions) <= 100
        assert emotions[0].examples == ["Love this pasta sauce", "Amazing sauce, love it",
                                        "The pasta sauce was great"]

    def test_emotions_without_themes_follow_breakdown(self, summary_input):
        summary_input.themes = []
        emotions = SummaryGenerator(None, FAST).infer_emotions(summary_input)

        assert [(e.name, e.prevalence) for e in emotions] == [("joy", 70.0), ("concern", 20.0)]

    def test_insights_and_recommendations(self, summary_input):
        generator = SummaryGenerator(None, FAST)
        insights = generator.build_insights(summary_input)
        recommendations = generator.build_recommendations(summary_input)

        assert insights[0].startswith("Strong positive reception: 70%")
        assert '"Pasta & Sauce" is the most discussed theme, covering 60%' in insights[1]
        assert len(insights) <= 4
        assert recommendations[0].startswith('Expand on "Pasta & Sauce"')
        assert len(recommendations) <= 3

    def test_rubric_reports_every_issue(self, summary_input):
        candidate = GeneratedSummary(summary="Too short.", word_count=2, quality_score=0.0)
        report = SummaryGenerator(None, FAST).validate(candidate, summary_input)

        assert not report.is_valid
        assert len(report.issues) == 6
        assert report.quality_score == pytest.approx(0.05)
