"""Narrative summary generation with quality scoring and a template fallback.

The narrative comes from the language model. Emotions, insights and
recommendations are derived from the aggregated statistics directly, so they
are identical whether the narrative is generated or falls back to the
template.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace

from commentlens.config import SummaryConfig
from commentlens.errors import ExternalServiceError, QualityBelowThreshold
from commentlens.llm_client import CompletionModel
from commentlens.models import EmotionAnalysis, Keyword, Sentiment, SentimentBreakdown, Theme
from commentlens.prompts import SUMMARY_NARRATIVE, build_summary_params

logger = logging.getLogger(__name__)

FALLBACK_QUALITY = 0.4
EMPTY_STATE_QUALITY = 0.5

EMPTY_STATE_SUMMARY = (
    "No comments available for analysis. Consider encouraging audience "
    "engagement through questions or calls-to-action."
)
EMPTY_STATE_INSIGHTS = ["No comment data available for analysis"]
EMPTY_STATE_RECOMMENDATIONS = [
    "Ask your audience a direct question to start a conversation",
    "Share the post when your audience is most active",
    "Reply to early comments to encourage further discussion",
]

MAX_EMOTIONS = 3
MAX_INSIGHTS = 4
MAX_RECOMMENDATIONS = 3

# Emotion lexicon: name -> (description, trigger words)
EMOTION_LEXICON = {
    "excitement": (
        "Enthusiasm and eagerness about the content",
        {"amazing", "awesome", "excited", "exciting", "incredible", "wow", "wait", "epic", "love"},
    ),
    "satisfaction": (
        "Contentment with the quality or usefulness of the content",
        {"helpful", "useful", "clear", "quality", "worth", "perfect", "solid", "learned", "explained"},
    ),
    "joy": (
        "Happiness and positive feelings",
        set(),
    ),
    "anger": (
        "Strong displeasure or hostility",
        {"angry", "furious", "ridiculous", "unacceptable", "outrageous", "scam"},
    ),
    "disappointment": (
        "Unmet expectations",
        {"disappointed", "disappointing", "expected", "boring", "waste", "worse", "letdown"},
    ),
    "frustration": (
        "Annoyance with problems or obstacles",
        {"confusing", "broken", "annoying", "slow", "bug", "bugs", "crash", "error", "stuck"},
    ),
    "concern": (
        "Worry or unease about the topic",
        set(),
    ),
    "curiosity": (
        "Interest and questions about the topic",
        {"how", "why", "wonder", "question", "curious", "anyone", "explain", "source"},
    ),
}


@dataclass
class SummaryInput:
    """Aggregated statistics a summary is generated from."""
    sentiment_breakdown: SentimentBreakdown
    themes: list[Theme]
    keywords: list[Keyword]
    total_comments: int
    filtered_comments: int

    @property
    def valid_comments(self) -> int:
        """Comments that passed preprocessing."""
        return max(0, self.total_comments - self.filtered_comments)


@dataclass
class GeneratedSummary:
    """Summary text plus the derived emotions, insights and recommendations."""
    summary: str
    word_count: int
    quality_score: float
    emotions: list[EmotionAnalysis] = field(default_factory=list)
    key_insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    used_fallback: bool = False
    attempts: int = 0


@dataclass
class QualityReport:
    """Outcome of the quality rubric."""
    is_valid: bool
    issues: list[str]
    quality_score: float


def clean_summary(text: str) -> str:
    """Strip markdown, normalize spacing, capitalize and terminate the text."""
    text = re.sub(r"[*_`#]", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    text = re.sub(r"([.!?])([A-Z][a-z])", r"\1 \2", text)
    if not text:
        return text
    text = text[0].upper() + text[1:]
    if text[-1] not in ".!?":
        text += "."
    return text


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


class SummaryGenerator:
    """Generates the narrative part of an analysis result."""

    def __init__(
        self,
        llm: CompletionModel | None,
        config: SummaryConfig | None = None,
    ):
        """Initialize the generator.

        Args:
            llm: Completion model. None means the template summary is always used.
            config: Retry, length and quality settings.
        """
        self.llm = llm
        self.config = config or SummaryConfig()

    async def generate(self, data: SummaryInput) -> GeneratedSummary:
        """Generate a summary, retrying on errors or low quality.

        Args:
            data: Aggregated statistics of the analysis.

        Returns:
            GeneratedSummary. Never raises for model failures: after the last
            attempt the template fallback is returned.
        """
        if data.valid_comments == 0:
            logger.info("[Summary] No eligible comments, returning empty-state summary")
            return self.empty_state()

        if self.llm is None:
            return self.fallback(data)

        emotions = self.infer_emotions(data)
        insights = self.build_insights(data)
        recommendations = self.build_recommendations(data)

        prompt = SUMMARY_NARRATIVE.render(build_summary_params(
            data.sentiment_breakdown,
            data.themes,
            data.keywords,
            data.valid_comments,
            self.config.min_words,
            self.config.max_words,
        ))

        for attempt in range(1, self.config.max_retries + 1):
            try:
                text = clean_summary(await self._complete(prompt))
                candidate = GeneratedSummary(
                    summary=text,
                    word_count=len(text.split()),
                    quality_score=0.0,
                    emotions=emotions,
                    key_insights=insights,
                    recommendations=recommendations,
                    attempts=attempt,
                )
                report = self.validate(candidate, data)
                if not report.is_valid:
                    raise QualityBelowThreshold(report.quality_score, report.issues)
                logger.info(
                    f"[Summary] Generated {candidate.word_count} words, "
                    f"quality {report.quality_score:.2f} (attempt {attempt})"
                )
                return replace(candidate, quality_score=report.quality_score)
            except (ExternalServiceError, QualityBelowThreshold) as e:
                logger.warning(
                    f"[Summary] Attempt {attempt}/{self.config.max_retries} rejected: {e}"
                )
            if attempt < self.config.max_retries:
                await asyncio.sleep(self.config.retry_delay * attempt)

        logger.warning("[Summary] Retries exhausted, using template summary")
        return self.fallback(data)

    async def _complete(self, prompt: str) -> str:
        try:
            text = await self.llm.complete(prompt)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise ExternalServiceError(f"Summary model call failed: {e}") from e
        if not text or len(text.strip()) < 10:
            raise ExternalServiceError("Summary model returned an empty response")
        return text

    # -------------------------------------------------------------------------
    # Quality rubric
    # -------------------------------------------------------------------------

    def validate(self, candidate: GeneratedSummary, data: SummaryInput) -> QualityReport:
        """Score a summary against the quality rubric."""
        issues = []
        quality = 1.0

        if candidate.word_count < self.config.min_words:
            issues.append(f"Too short: {candidate.word_count} words")
            quality -= 0.2
        elif candidate.word_count > self.config.max_words:
            issues.append(f"Too long: {candidate.word_count} words")
            quality -= 0.1

        if len(candidate.summary) < 50:
            issues.append("Summary text under 50 characters")
            quality -= 0.3

        if "%" not in candidate.summary:
            issues.append("No percentage figure in summary")
            quality -= 0.1

        if not candidate.emotions and data.valid_comments > 5:
            issues.append("No emotions detected")
            quality -= 0.15

        if sum(e.prevalence for e in candidate.emotions) > 100:
            issues.append("Emotion prevalence exceeds 100%")
            quality -= 0.2

        if not candidate.key_insights:
            issues.append("No key insights")
            quality -= 0.1

        if not candidate.recommendations and data.valid_comments > 0:
            issues.append("No recommendations")
            quality -= 0.1

        quality = round(max(0.0, quality), 2)
        return QualityReport(
            is_valid=not issues and quality >= self.config.min_quality,
            issues=issues,
            quality_score=quality,
        )

    # -------------------------------------------------------------------------
    # Derived content
    # -------------------------------------------------------------------------

    def infer_emotions(self, data: SummaryInput) -> list[EmotionAnalysis]:
        """Infer up to three emotions from theme sentiment and keywords.

        Each theme contributes to exactly one emotion and themes are disjoint,
        so prevalences never sum past 100.
        """
        valid = data.valid_comments
        if valid == 0:
            return []

        counts: dict[str, int] = {}
        examples: dict[str, list[str]] = {}
        for theme in data.themes:
            name = self._theme_emotion(theme)
            if name is None:
                continue
            counts[name] = counts.get(name, 0) + theme.frequency
            samples = examples.setdefault(name, [])
            for comment in theme.representative_comments:
                if len(samples) < 3:
                    samples.append(comment.text)

        if not counts:
            breakdown = data.sentiment_breakdown
            if breakdown.positive > 0:
                counts["joy"] = round(breakdown.positive * valid)
            if breakdown.negative > 0:
                counts["concern"] = round(breakdown.negative * valid)

        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [
            EmotionAnalysis(
                name=name,
                prevalence=min(100.0, round(count / valid * 100, 1)),
                description=EMOTION_LEXICON[name][0],
                examples=examples.get(name, []),
            )
            for name, count in ranked[:MAX_EMOTIONS]
            if count > 0
        ]

    @staticmethod
    def _theme_emotion(theme: Theme) -> str | None:
        words = {k.word for k in theme.keywords}
        words.update(w.lower() for w in re.findall(r"[A-Za-z]+", theme.name))
        for comment in theme.representative_comments:
            words.update(re.findall(r"[a-z]+", comment.text.lower()))

        def matches(name: str) -> bool:
            return bool(words & EMOTION_LEXICON[name][1])

        if theme.sentiment == Sentiment.POSITIVE:
            for name in ("excitement", "satisfaction"):
                if matches(name):
                    return name
            return "joy"
        if theme.sentiment == Sentiment.NEGATIVE:
            for name in ("anger", "disappointment", "frustration"):
                if matches(name):
                    return name
            return "concern"
        questions = sum(1 for c in theme.comments if "?" in c.text)
        if matches("curiosity") or questions * 2 >= len(theme.comments):
            return "curiosity"
        return None

    def build_insights(self, data: SummaryInput) -> list[str]:
        """Templated observations about the comment set."""
        insights = []
        breakdown = data.sentiment_breakdown

        if breakdown.positive > 0.6:
            insights.append(
                f"Strong positive reception: {_pct(breakdown.positive)} of comments are positive"
            )
        elif breakdown.negative > 0.4:
            insights.append(
                f"Significant negative feedback: {_pct(breakdown.negative)} of comments are negative"
            )
        elif breakdown.neutral > 0.5:
            insights.append(
                f"Mixed or neutral reaction: {_pct(breakdown.neutral)} of comments are neutral"
            )

        if data.themes and data.valid_comments:
            top = data.themes[0]
            insights.append(
                f'"{top.name}" is the most discussed theme, covering '
                f"{_pct(top.frequency / data.valid_comments)} of analyzed comments"
            )

        if data.keywords:
            keyword = data.keywords[0]
            insights.append(
                f'"{keyword.word}" is the most distinctive keyword, '
                f"mentioned {keyword.frequency} times"
            )

        if data.total_comments and data.filtered_comments / data.total_comments > 0.2:
            insights.append(
                f"{_pct(data.filtered_comments / data.total_comments)} of comments were "
                f"filtered out as spam, toxic or duplicate"
            )

        return insights[:MAX_INSIGHTS]

    def build_recommendations(self, data: SummaryInput) -> list[str]:
        """Templated next steps for the post author."""
        recommendations = []
        breakdown = data.sentiment_breakdown

        if breakdown.positive > 0.7:
            recommendations.append(
                "Build on the positive momentum with follow-up content in the same style"
            )
        if breakdown.negative > 0.4:
            recommendations.append("Address the main concerns raised in negative comments directly")
            recommendations.append(
                "Consider a follow-up post clarifying the points that drew criticism"
            )

        if data.themes:
            top = data.themes[0]
            if top.sentiment == Sentiment.POSITIVE:
                recommendations.append(f'Expand on "{top.name}", which resonates with your audience')
            elif top.sentiment == Sentiment.NEGATIVE:
                recommendations.append(f'Respond to the feedback around "{top.name}"')

        if data.valid_comments < 10:
            recommendations.append(
                "Encourage more discussion by ending posts with a question or call to action"
            )

        if data.total_comments and data.filtered_comments / data.total_comments > 0.3:
            recommendations.append("Moderate comments more actively to reduce spam and toxic replies")

        return recommendations[:MAX_RECOMMENDATIONS]

    # -------------------------------------------------------------------------
    # Fixed outputs
    # -------------------------------------------------------------------------

    @staticmethod
    def empty_state() -> GeneratedSummary:
        """Result for a comment set with nothing left to analyze."""
        return GeneratedSummary(
            summary=EMPTY_STATE_SUMMARY,
            word_count=len(EMPTY_STATE_SUMMARY.split()),
            quality_score=EMPTY_STATE_QUALITY,
            key_insights=list(EMPTY_STATE_INSIGHTS),
            recommendations=list(EMPTY_STATE_RECOMMENDATIONS),
        )

    def fallback(self, data: SummaryInput) -> GeneratedSummary:
        """Template summary built only from the statistics."""
        breakdown = data.sentiment_breakdown
        if breakdown.positive > 0.5:
            tone = "positive"
        elif breakdown.negative > 0.4:
            tone = "negative"
        elif breakdown.neutral > 0.5:
            tone = "neutral"
        else:
            tone = "mixed"

        text = (
            f"Analysis of {data.valid_comments} comments shows a {tone} overall response, "
            f"with {_pct(breakdown.positive)} positive, {_pct(breakdown.negative)} negative "
            f"and {_pct(breakdown.neutral)} neutral reactions."
        )
        if data.themes:
            top = data.themes[0]
            text += (
                f' The most discussed theme was "{top.name}" with {top.frequency} comments.'
            )
        text = clean_summary(text)

        emotions = []
        if breakdown.positive > 0.3:
            emotions.append(EmotionAnalysis(
                "satisfaction",
                round(breakdown.positive * 100, 1),
                EMOTION_LEXICON["satisfaction"][0],
            ))
        if breakdown.negative > 0.2:
            emotions.append(EmotionAnalysis(
                "concern",
                round(breakdown.negative * 100, 1),
                EMOTION_LEXICON["concern"][0],
            ))

        insights = [
            f"Overall sentiment is {tone} ({_pct(breakdown.positive)} positive, "
            f"{_pct(breakdown.negative)} negative)",
        ]
        if data.themes:
            insights.append(f'"{data.themes[0].name}" is the most common discussion topic')
        else:
            insights.append(f"{data.valid_comments} comments were analyzed")

        if tone == "negative":
            recommendations = [
                "Address the main concerns raised in negative comments directly",
                "Monitor follow-up comments to see whether sentiment improves",
            ]
        else:
            recommendations = [
                "Keep engaging with commenters to sustain the conversation",
                "Use recurring topics from the comments to plan future content",
            ]

        return GeneratedSummary(
            summary=text,
            word_count=len(text.split()),
            quality_score=FALLBACK_QUALITY,
            emotions=emotions,
            key_insights=insights,
            recommendations=recommendations,
            used_fallback=True,
        )
