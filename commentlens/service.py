"""Service facade for Comment Lens.

``build_service`` constructs every component once from config and wires them
together; the resulting ``AnalysisService`` is the only object the enclosing
application (CLI, HTTP layer) talks to.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime

from commentlens.analysis.preprocessor import CommentPreprocessor
from commentlens.analysis.sentiment import SentimentClassifier
from commentlens.analysis.summary import SummaryGenerator
from commentlens.analysis.themes import ThemeAnalyzer
from commentlens.cache import ResultCache, job_key, post_key
from commentlens.config import AnalysisConfig, Config
from commentlens.database import Database
from commentlens.errors import CommentLensError, NotFoundError, ValidationError
from commentlens.jobs import JobOrchestrator
from commentlens.llm_client import CompletionModel, get_llm_client
from commentlens.models import AnalysisJob, AnalysisResult, JobStatus
from commentlens.pipeline import AnalysisPipeline

logger = logging.getLogger(__name__)

# Trend thresholds for result comparison
SENTIMENT_TREND_DELTA = 0.1
ENGAGEMENT_TREND_DELTA = 0.2


@dataclass
class AnalysisOptions:
    """Per-request options."""
    force_refresh: bool = False
    comment_ids: list[str] = field(default_factory=list)


@dataclass
class PrerequisiteCheck:
    """Whether a post can be analyzed."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    comment_count: int = 0


@dataclass
class AnalysisResponse:
    """Answer to ``request_analysis``: a job to poll or a cached result."""
    validation: PrerequisiteCheck
    job_id: str | None = None
    cached_result: AnalysisResult | None = None
    cache_hit: bool = False
    estimated_time: int = 0


@dataclass
class ComparisonReport:
    """Side-by-side view of several results."""
    entries: list[dict]
    averages: dict
    sentiment_trend: str
    engagement_trend: str


def estimate_analysis_time(comment_count: int) -> int:
    """Rough wall-clock estimate in seconds (10s + 0.1s per comment, at most 300s)."""
    return min(300, 10 + math.ceil(comment_count * 0.1))


class AnalysisService:
    """Entry point for requesting and inspecting analyses."""

    def __init__(
        self,
        store: Database,
        orchestrator: JobOrchestrator,
        cache: ResultCache,
        config: AnalysisConfig | None = None,
        job_retention_hours: int = 24,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.cache = cache
        self.config = config or AnalysisConfig()
        self.job_retention_hours = job_retention_hours
        orchestrator.add_listener(self._on_job_finished)

    async def start(self) -> None:
        await self.orchestrator.start()

    async def stop(self) -> None:
        await self.orchestrator.stop()

    async def __aenter__(self) -> "AnalysisService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def request_analysis(
        self,
        post_id: str,
        user_id: str,
        options: AnalysisOptions | None = None,
    ) -> AnalysisResponse:
        """Return a fresh cached result or start (or join) an analysis job.

        Raises:
            ValidationError: If the post cannot be analyzed for this user.
        """
        options = options or AnalysisOptions()

        validation = await self.validate_prerequisites(post_id, user_id)
        if not validation.is_valid:
            raise ValidationError(
                f"Cannot analyze post {post_id}: {'; '.join(validation.errors)}",
                validation.errors,
            )

        if not options.force_refresh:
            cached = await self.cache.get(post_key(post_id))
            if cached is not None:
                logger.info(f"[Service] Cache hit for post {post_id}")
                return AnalysisResponse(
                    validation=validation, cached_result=cached, cache_hit=True
                )

            active = self.orchestrator.find_active(post_id)
            if active is not None:
                logger.info(f"[Service] Post {post_id} already queued as {active.job_id}")
                return AnalysisResponse(
                    validation=validation,
                    job_id=active.job_id,
                    estimated_time=estimate_analysis_time(validation.comment_count),
                )

        job_id = self.orchestrator.submit(post_id, user_id, options.comment_ids)
        count = len(options.comment_ids) or validation.comment_count
        return AnalysisResponse(
            validation=validation,
            job_id=job_id,
            estimated_time=estimate_analysis_time(count),
        )

    async def validate_prerequisites(self, post_id: str, user_id: str) -> PrerequisiteCheck:
        """Check the post exists, belongs to the user and has enough comments."""
        post = await asyncio.to_thread(self.store.get_post, post_id)
        if post is None:
            return PrerequisiteCheck(False, [f"Post not found: {post_id}"])
        if post.user_id != user_id:
            return PrerequisiteCheck(False, [f"Post {post_id} does not belong to user {user_id}"])

        count = await asyncio.to_thread(self.store.count_comments, post_id)
        if count < self.config.min_comments:
            return PrerequisiteCheck(
                False,
                [f"Post has {count} comments, at least {self.config.min_comments} required"],
                count,
            )
        return PrerequisiteCheck(True, [], count)

    def get_status(self, job_id: str) -> AnalysisJob:
        """Current state of a job.

        Raises:
            NotFoundError: If the job is unknown.
        """
        return self.orchestrator.status(job_id)

    async def get_result(self, job_id: str) -> AnalysisResult:
        """Result of a completed job, from cache or store.

        Raises:
            NotFoundError: If the job has no result.
        """
        result = await self.cache.get(job_key(job_id))
        if result is None:
            result = await asyncio.to_thread(self.store.get_result_by_job, job_id)
        if result is None:
            raise NotFoundError(f"No result for job {job_id}")
        return result

    def cancel(self, job_id: str) -> bool:
        """Cancel a queued or running job."""
        return self.orchestrator.cancel(job_id)

    async def wait_for_result(self, job_id: str, timeout: float | None = None) -> AnalysisResult:
        """Wait for a job to finish and return its result.

        Raises:
            CommentLensError: If the job failed or was cancelled.
            asyncio.TimeoutError: If the timeout expires first.
        """
        job = await self.orchestrator.wait_for(job_id, timeout)
        if job.status == JobStatus.COMPLETED:
            return await self.get_result(job_id)
        detail = f": {job.error_message}" if job.error_message else ""
        raise CommentLensError(f"Job {job_id} ended {job.status.value}{detail}")

    # -------------------------------------------------------------------------
    # History and comparison
    # -------------------------------------------------------------------------

    async def get_user_history(self, user_id: str, limit: int = 10) -> list[AnalysisResult]:
        """A user's most recent results."""
        return await asyncio.to_thread(self.store.list_results, user_id, limit)

    async def compare_results(self, job_ids: list[str]) -> ComparisonReport:
        """Compare results of several jobs, oldest first.

        Raises:
            ValidationError: If fewer than two job IDs are given.
            NotFoundError: If any job has no result.
        """
        if len(job_ids) < 2:
            raise ValidationError("At least two analyses are required for comparison")

        results = [await self.get_result(job_id) for job_id in job_ids]
        results.sort(key=lambda r: r.analyzed_at)

        entries = [
            {
                "job_id": r.job_id,
                "post_id": r.post_id,
                "analyzed_at": r.analyzed_at,
                "positive": r.sentiment_breakdown.positive,
                "negative": r.sentiment_breakdown.negative,
                "neutral": r.sentiment_breakdown.neutral,
                "quality_score": r.quality_score,
                "total_comments": r.total_comments,
                "themes": len(r.themes),
            }
            for r in results
        ]
        count = len(entries)
        averages = {
            key: sum(e[key] for e in entries) / count
            for key in ("positive", "negative", "neutral", "quality_score", "total_comments")
        }

        first, last = entries[0], entries[-1]
        delta = last["positive"] - first["positive"]
        if delta > SENTIMENT_TREND_DELTA:
            sentiment_trend = "improving"
        elif delta < -SENTIMENT_TREND_DELTA:
            sentiment_trend = "declining"
        else:
            sentiment_trend = "stable"

        growth = (last["total_comments"] - first["total_comments"]) / max(first["total_comments"], 1)
        if growth > ENGAGEMENT_TREND_DELTA:
            engagement_trend = "increasing"
        elif growth < -ENGAGEMENT_TREND_DELTA:
            engagement_trend = "decreasing"
        else:
            engagement_trend = "stable"

        return ComparisonReport(entries, averages, sentiment_trend, engagement_trend)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def system_stats(self) -> dict:
        """Job, cache and database figures."""
        return {
            "jobs": self.orchestrator.stats(),
            "cache": self.cache.stats(),
            "database": await asyncio.to_thread(self.store.get_stats),
        }

    async def maintenance(self) -> dict:
        """Purge expired cache entries, stale job records and old results."""
        retention_seconds = self.job_retention_hours * 3600
        cutoff = datetime.now().timestamp() - retention_seconds

        expired = self.cache.purge_expired()
        purged_jobs = self.orchestrator.purge_finished(retention_seconds)
        deleted_jobs = await asyncio.to_thread(self.store.delete_finished_jobs, cutoff)
        deleted_results = await asyncio.to_thread(
            self.store.delete_results_older_than, self.config.result_retention_days
        )

        report = {
            "expired_cache_entries": expired,
            "purged_jobs": purged_jobs,
            "deleted_job_records": deleted_jobs,
            "deleted_results": deleted_results,
        }
        logger.info(f"[Service] Maintenance: {report}")
        return report

    def _on_job_finished(self, job: AnalysisJob, result: AnalysisResult | None) -> None:
        if job.status != JobStatus.COMPLETED or result is None:
            return
        self.cache.put(post_key(job.post_id), result, inserted_at=result.analyzed_at)
        self.cache.put(job_key(job.job_id), result, inserted_at=result.analyzed_at)


def build_service(
    config: Config,
    llm: CompletionModel | None = None,
    store: Database | None = None,
) -> AnalysisService:
    """Construct and wire every component.

    Args:
        config: Full configuration.
        llm: Completion model. None builds one from ``config.llm`` (which
            itself yields None, meaning heuristics only, when disabled or
            without an API key).
        store: Database. None opens ``config.database.path``.

    Returns:
        A ready-to-start AnalysisService.
    """
    if llm is None:
        llm = get_llm_client(config.llm, config.llm_credentials)

    if store is None:
        store = Database(config.database.path)
    store.initialize()

    pipeline = AnalysisPipeline(
        store=store,
        preprocessor=CommentPreprocessor(),
        classifier=SentimentClassifier(llm, config.sentiment),
        theme_analyzer=ThemeAnalyzer(config.themes),
        summarizer=SummaryGenerator(llm, config.summary),
    )

    orchestrator = JobOrchestrator(
        store=store,
        max_concurrent=config.jobs.max_concurrent_jobs,
        max_attempts=config.jobs.max_attempts,
        tick_interval=config.jobs.tick_interval,
        shutdown_timeout=config.jobs.shutdown_timeout,
    )
    orchestrator.register_pipeline(pipeline)

    cache = ResultCache(
        store=store,
        ttl_seconds=config.cache.ttl_seconds,
        max_entries=config.cache.max_entries,
        enabled=config.cache.enabled,
    )

    return AnalysisService(
        store=store,
        orchestrator=orchestrator,
        cache=cache,
        config=config.analysis,
        job_retention_hours=config.jobs.finished_job_retention_hours,
    )
