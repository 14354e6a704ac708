"""Batched sentiment classification with retries and a lexical fallback.

Comments are sent to the model in fixed-size batches, one prompt per batch.
A batch whose model calls keep failing is classified with word lists instead,
so classification always terminates with a result for every comment.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field

from commentlens.config import SentimentConfig
from commentlens.errors import ExternalServiceError
from commentlens.llm_client import CompletionModel
from commentlens.models import (
    Comment,
    EmotionScore,
    Sentiment,
    SentimentBreakdown,
    SentimentResult,
)
from commentlens.prompts import SENTIMENT_BATCH, VALID_EMOTIONS, build_sentiment_params

logger = logging.getLogger(__name__)

POSITIVE_WORDS = {
    "good", "great", "awesome", "love", "like", "amazing", "excellent",
    "fantastic", "wonderful",
}
NEGATIVE_WORDS = {
    "bad", "hate", "terrible", "awful", "horrible", "disgusting", "stupid", "worst",
}

MAX_EMOTIONS = 3
JSON_OBJECT = re.compile(r"\{.*\}")


@dataclass
class SentimentSummary:
    """Aggregate figures for a classified batch."""
    total_analyzed: int = 0
    average_confidence: float = 0.0
    distribution: SentimentBreakdown = field(default_factory=SentimentBreakdown)
    fallback_count: int = 0


@dataclass
class ValidationReport:
    """Outcome of a consistency check over classification results."""
    is_valid: bool
    issues: list[str]
    quality_score: float


@dataclass
class BatchSentimentResult:
    """Output of ``SentimentClassifier.analyze_batch``."""
    results: list[SentimentResult]
    summary: SentimentSummary
    validation: ValidationReport | None = None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def neutral_fallback() -> SentimentResult:
    """Result used for a comment the model response did not cover."""
    return SentimentResult(Sentiment.NEUTRAL, 0.0, [], is_fallback=True)


def heuristic_classify(text: str) -> SentimentResult:
    """Classify a comment by counting polarity words."""
    words = re.findall(r"[a-z']+", text.lower())
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)

    if positive > negative:
        confidence = min(0.6, 0.3 + 0.1 * positive)
        return SentimentResult(
            Sentiment.POSITIVE, confidence, [EmotionScore("joy", confidence)], is_fallback=True
        )
    if negative > positive:
        confidence = min(0.6, 0.3 + 0.1 * negative)
        return SentimentResult(
            Sentiment.NEGATIVE, confidence, [EmotionScore("anger", confidence)], is_fallback=True
        )
    return SentimentResult(Sentiment.NEUTRAL, 0.3, [], is_fallback=True)


def _parse_emotions(raw) -> list[EmotionScore]:
    if not isinstance(raw, list):
        return []
    emotions = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).lower().strip()
        if name not in VALID_EMOTIONS:
            continue
        try:
            score = _clamp(float(item.get("score", 0)))
        except (TypeError, ValueError):
            continue
        emotions.append(EmotionScore(name, score))
    emotions.sort(key=lambda e: e.score, reverse=True)
    return emotions[:MAX_EMOTIONS]


def parse_response(text: str, count: int) -> list[SentimentResult]:
    """Parse a line-delimited JSON model response.

    Args:
        text: Raw model output.
        count: Number of comments in the batch.

    Returns:
        One result per comment, in batch order. Comments without a usable
        line get ``neutral_fallback()``.

    Raises:
        ExternalServiceError: If no line of the response could be used.
    """
    parsed: dict[int, SentimentResult] = {}

    for line in text.splitlines():
        match = JSON_OBJECT.search(line)
        if not match:
            continue
        try:
            obj = json.loads(match.group(0))
            index = int(obj["commentIndex"])
            sentiment = Sentiment(str(obj["sentiment"]).upper())
            confidence = _clamp(float(obj.get("confidence", 0)))
        except (ValueError, KeyError, TypeError):
            continue
        if not 1 <= index <= count or index in parsed:
            continue
        parsed[index] = SentimentResult(sentiment, confidence, _parse_emotions(obj.get("emotions")))

    if count and not parsed:
        raise ExternalServiceError("Model response contained no usable sentiment lines")

    return [parsed.get(i, neutral_fallback()) for i in range(1, count + 1)]


class SentimentClassifier:
    """Classifies comment sentiment through a language model."""

    def __init__(
        self,
        llm: CompletionModel | None,
        config: SentimentConfig | None = None,
    ):
        """Initialize the classifier.

        Args:
            llm: Completion model. None means word-list heuristics only.
            config: Batch size, retry and low-confidence settings.
        """
        self.llm = llm
        self.config = config or SentimentConfig()

    async def analyze_batch(self, comments: list[Comment]) -> BatchSentimentResult:
        """Classify every comment.

        Args:
            comments: Comments that passed preprocessing.

        Returns:
            BatchSentimentResult with one result per comment, in input order.
        """
        results: list[SentimentResult] = []
        size = max(1, self.config.batch_size)

        for start in range(0, len(comments), size):
            batch = comments[start:start + size]
            results.extend(await self._classify_chunk(batch, start // size + 1))

        if self.config.retry_low_confidence and self.llm is not None:
            await self._retry_low_confidence(comments, results)

        summary = self.summarize(results)
        logger.info(
            f"[Sentiment] Classified {summary.total_analyzed} comments "
            f"(avg confidence {summary.average_confidence:.2f}, "
            f"{summary.fallback_count} fallback)"
        )

        validation = None
        if results:
            validation = self.validate_results(results)
            for issue in validation.issues:
                logger.warning(f"[Sentiment] Validation: {issue}")

        return BatchSentimentResult(results=results, summary=summary, validation=validation)

    async def analyze_single(self, comment: Comment) -> SentimentResult:
        """Classify one comment."""
        results = await self._classify_chunk([comment], 1)
        return results[0]

    async def _classify_chunk(self, batch: list[Comment], number: int) -> list[SentimentResult]:
        """Classify one batch, retrying with linear backoff before falling back."""
        if self.llm is None:
            return [heuristic_classify(c.text) for c in batch]

        prompt = SENTIMENT_BATCH.render(build_sentiment_params(batch))

        for attempt in range(1, self.config.max_retries + 1):
            try:
                text = await self.llm.complete(prompt)
                return parse_response(text, len(batch))
            except Exception as e:
                logger.warning(
                    f"[Sentiment] Batch {number} attempt {attempt}/{self.config.max_retries} failed: {e}"
                )
            if attempt < self.config.max_retries:
                await asyncio.sleep(self.config.retry_delay * attempt)

        logger.warning(f"[Sentiment] Batch {number} exhausted retries, using heuristics")
        return [heuristic_classify(c.text) for c in batch]

    async def _retry_low_confidence(
        self, comments: list[Comment], results: list[SentimentResult]
    ) -> None:
        """Re-classify low-confidence comments one by one, keeping the better result."""
        threshold = self.config.low_confidence_threshold
        for i, (comment, result) in enumerate(zip(comments, results)):
            if result.confidence >= threshold:
                continue
            retried = await self.analyze_single(comment)
            if retried.confidence > result.confidence:
                results[i] = retried

    @staticmethod
    def summarize(results: list[SentimentResult]) -> SentimentSummary:
        """Aggregate classification results."""
        if not results:
            return SentimentSummary()
        return SentimentSummary(
            total_analyzed=len(results),
            average_confidence=sum(r.confidence for r in results) / len(results),
            distribution=SentimentBreakdown.from_results(results),
            fallback_count=sum(1 for r in results if r.is_fallback),
        )

    @staticmethod
    def validate_results(results: list[SentimentResult]) -> ValidationReport:
        """Check classification results for consistency.

        Never raises; problems are reported as issues with a lowered score.
        """
        if not results:
            return ValidationReport(False, ["No sentiment results to validate"], 0.0)

        issues = []
        quality = 1.0
        total = len(results)
        distribution = SentimentBreakdown.from_results(results)

        if abs(distribution.total() - 1.0) > 0.01:
            issues.append(f"Sentiment distribution sums to {distribution.total():.3f}")
            quality -= 0.2

        if any(not 0.0 <= r.confidence <= 1.0 for r in results):
            issues.append("Confidence values outside [0, 1]")
            quality -= 0.2

        low = sum(1 for r in results if r.confidence < 0.5)
        if low / total > 0.5:
            issues.append(f"{low} of {total} results have low confidence")
            quality -= 0.3

        largest = max(distribution.positive, distribution.negative, distribution.neutral)
        if largest > 0.9 and total > 1:
            issues.append(f"Distribution heavily skewed ({largest:.0%} one class)")
            quality -= 0.2

        without_emotions = sum(1 for r in results if not r.emotions)
        if without_emotions / total > 0.3:
            issues.append(f"{without_emotions} of {total} results have no emotions")
            quality -= 0.1

        scores = [e.score for r in results for e in r.emotions]
        if scores and sum(scores) / len(scores) < 0.3:
            issues.append("Emotion scores are weak on average")
            quality -= 0.05

        average_confidence = sum(r.confidence for r in results) / total
        quality = max(0.0, quality) * average_confidence

        return ValidationReport(not issues, issues, round(quality, 4))
