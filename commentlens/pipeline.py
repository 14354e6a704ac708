"""The five-step analysis pipeline bound to the job orchestrator.

Steps: preprocess, classify, cluster, summarize, persist. Model failures are
absorbed inside the classifier and the summarizer; store errors and bugs
propagate to the orchestrator, which retries the job.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Protocol

from commentlens.analysis.preprocessor import CommentPreprocessor
from commentlens.analysis.sentiment import SentimentClassifier
from commentlens.analysis.summary import SummaryGenerator, SummaryInput
from commentlens.analysis.themes import ThemeAnalyzer
from commentlens.errors import JobCancelled
from commentlens.jobs import ProgressReporter
from commentlens.models import (
    PIPELINE_STEPS,
    AnalysisJob,
    AnalysisResult,
    Comment,
    KeywordSummary,
    ThemeSummary,
)

logger = logging.getLogger(__name__)


class CommentStore(Protocol):
    """Store operations the pipeline needs."""

    def find_comments(self, post_id: str) -> list[Comment]: ...

    def get_comments(self, comment_ids: list[str]) -> list[Comment]: ...

    def save_analysis_result(self, result: AnalysisResult) -> None: ...

    def delete_result(self, result_id: str) -> bool: ...


class AnalysisPipeline:
    """Turns one job's comments into a persisted AnalysisResult."""

    def __init__(
        self,
        store: CommentStore,
        preprocessor: CommentPreprocessor,
        classifier: SentimentClassifier,
        theme_analyzer: ThemeAnalyzer,
        summarizer: SummaryGenerator,
    ):
        self.store = store
        self.preprocessor = preprocessor
        self.classifier = classifier
        self.theme_analyzer = theme_analyzer
        self.summarizer = summarizer

    async def __call__(self, job: AnalysisJob, report: ProgressReporter) -> AnalysisResult:
        """Run every step for a job.

        Raises:
            JobCancelled: If the job stopped running between steps.
        """
        self._enter_step(job, report, 1)
        comments = await asyncio.to_thread(self._load_comments, job)
        filtered = self.preprocessor.filter(comments)
        kept = filtered.filtered

        self._enter_step(job, report, 2)
        sentiment = await self.classifier.analyze_batch(kept)

        self._enter_step(job, report, 3)
        themes = self.theme_analyzer.analyze_themes(kept, sentiment.results)

        self._enter_step(job, report, 4)
        summary = await self.summarizer.generate(SummaryInput(
            sentiment_breakdown=sentiment.summary.distribution,
            themes=themes.themes,
            keywords=themes.keywords,
            total_comments=filtered.stats.total,
            filtered_comments=filtered.stats.total - filtered.stats.filtered,
        ))

        self._enter_step(job, report, 5)
        result = AnalysisResult(
            result_id=f"result_{uuid.uuid4().hex[:12]}",
            job_id=job.job_id,
            post_id=job.post_id,
            user_id=job.user_id,
            summary=summary.summary,
            word_count=summary.word_count,
            quality_score=summary.quality_score,
            emotions=tuple(summary.emotions),
            key_insights=tuple(summary.key_insights),
            recommendations=tuple(summary.recommendations),
            sentiment_breakdown=sentiment.summary.distribution,
            themes=tuple(ThemeSummary.from_theme(t) for t in themes.themes),
            keywords=tuple(
                KeywordSummary(k.word, k.frequency, k.sentiment.value, round(k.tfidf, 6))
                for k in themes.keywords
            ),
            total_comments=filtered.stats.total,
            filtered_comments=filtered.stats.total - filtered.stats.filtered,
            analyzed_at=datetime.now().timestamp(),
            used_fallback=summary.used_fallback or sentiment.summary.fallback_count > 0,
        )
        await asyncio.to_thread(self.store.save_analysis_result, result)
        if not report(5, PIPELINE_STEPS[4][1]):
            # Cancelled while saving
            await asyncio.to_thread(self.store.delete_result, result.result_id)
            raise JobCancelled(f"Job {job.job_id} was cancelled while saving its result")

        logger.info(
            f"[Pipeline] {job.job_id}: {len(kept)}/{filtered.stats.total} comments, "
            f"{len(themes.themes)} themes, quality {result.quality_score:.2f}"
        )
        return result

    def _load_comments(self, job: AnalysisJob) -> list[Comment]:
        if job.comment_ids:
            return self.store.get_comments(job.comment_ids)
        return self.store.find_comments(job.post_id)

    @staticmethod
    def _enter_step(job: AnalysisJob, report: ProgressReporter, step: int) -> None:
        _, description = PIPELINE_STEPS[step - 1]
        if not report(step, description):
            raise JobCancelled(f"Job {job.job_id} is no longer running")
