"""End-to-end tests for the analysis service."""

import asyncio
import json
import sys
import threading
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from commentlens.errors import CommentLensError, NotFoundError, ValidationError
from commentlens.models import AnalysisJob, JobStatus
from commentlens.service import AnalysisOptions, build_service, estimate_analysis_time

from test_summary import NARRATIVE

# Sentiment labels matching MIXED_COMMENTS, in order
MIXED_LABELS = ["POSITIVE"] * 7 + ["NEGATIVE"] * 2 + ["NEUTRAL"]


def sentiment_reply(labels: list[str]) -> str:
    return "\n".join(
        json.dumps({
            "commentIndex": i,
            "sentiment": label,
            "confidence": 0.9,
            "emotions": [{"name": "joy" if label == "POSITIVE" else "anger", "score": 0.7}],
        })
        for i, label in enumerate(labels, 1)
    )


def run_service(service, body):
    """Run ``body(service)`` with the scheduler started."""
    async def scenario():
        async with service:
            return await body(service)
    return asyncio.run(scenario())


class TestScenarios:
    """Full request-to-result flows."""

    def test_post_without_comments(self, fast_config, temp_db, seed_post, scripted_llm):
        seed_post("empty", "user1", [])
        llm = scripted_llm("unused")
        service = build_service(fast_config, llm=llm, store=temp_db)

        async def body(svc):
            response = await svc.request_analysis("empty", "user1")
            return await svc.wait_for_result(response.job_id, timeout=5)

        result = run_service(service, body)

        assert llm.calls == 0
        assert result.quality_score == 0.5
        assert result.total_comments == 0
        assert result.summary.startswith("No comments available for analysis")
        assert result.recommendations

    def test_mixed_comments(self, fast_config, temp_db, seed_post, scripted_llm, mixed_texts):
        seed_post("post1", "user1", mixed_texts)
        llm = scripted_llm(sentiment_reply(MIXED_LABELS), NARRATIVE)
        service = build_service(fast_config, llm=llm, store=temp_db)

        async def body(svc):
            response = await svc.request_analysis("post1", "user1")
            assert response.job_id is not None
            assert not response.cache_hit
            result = await svc.wait_for_result(response.job_id, timeout=5)
            return result, svc.get_status(response.job_id)

        result, job = run_service(service, body)

        breakdown = result.sentiment_breakdown
        assert breakdown.positive == pytest.approx(0.7)
        assert breakdown.negative == pytest.approx(0.2)
        assert breakdown.neutral == pytest.approx(0.1)
        assert len(result.themes) >= 1
        assert "%" in result.summary
        assert result.quality_score >= 0.6
        assert not result.used_fallback
        assert llm.calls == 2
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result_id == result.result_id

    def test_model_outage_falls_back(
        self, fast_config, temp_db, seed_post, failing_llm, mixed_texts
    ):
        seed_post("post1", "user1", mixed_texts)
        service = build_service(fast_config, llm=failing_llm, store=temp_db)

        async def body(svc):
            response = await svc.request_analysis("post1", "user1")
            result = await svc.wait_for_result(response.job_id, timeout=5)
            return result, svc.get_status(response.job_id)

        result, job = run_service(service, body)

        assert job.status == JobStatus.COMPLETED
        assert result.quality_score == pytest.approx(0.4)
        assert result.used_fallback
        assert result.summary
        assert failing_llm.calls == 6

    def test_stale_result_triggers_new_job(
        self, fast_config, temp_db, seed_post, make_result, mixed_texts
    ):
        seed_post("post1", "user1", mixed_texts)
        stale = make_result("old_job", "post1", "user1", analyzed_at=time.time() - 7200)
        temp_db.save_analysis_result(stale)
        service = build_service(fast_config, store=temp_db)

        async def body(svc):
            response = await svc.request_analysis("post1", "user1")
            assert not response.cache_hit
            assert response.job_id is not None
            await svc.wait_for_result(response.job_id, timeout=5)
            return response.job_id

        job_id = run_service(service, body)

        latest = temp_db.find_latest_result("post1")
        assert latest.job_id == job_id
        assert latest.result_id != stale.result_id

    def test_repeat_request_is_cache_hit(self, fast_config, temp_db, seed_post, mixed_texts):
        seed_post("post1", "user1", mixed_texts)
        service = build_service(fast_config, store=temp_db)

        async def body(svc):
            first = await svc.request_analysis("post1", "user1")
            result = await svc.wait_for_result(first.job_id, timeout=5)
            second = await svc.request_analysis("post1", "user1")
            return result, second, svc.orchestrator.stats()

        result, second, stats = run_service(service, body)

        assert second.cache_hit
        assert second.job_id is None
        assert second.cached_result == result
        assert stats["total"] == 1

    def test_force_refresh_starts_new_job(self, fast_config, temp_db, seed_post, mixed_texts):
        seed_post("post1", "user1", mixed_texts)
        service = build_service(fast_config, store=temp_db)

        async def body(svc):
            first = await svc.request_analysis("post1", "user1")
            await svc.wait_for_result(first.job_id, timeout=5)
            second = await svc.request_analysis(
                "post1", "user1", AnalysisOptions(force_refresh=True)
            )
            await svc.wait_for_result(second.job_id, timeout=5)
            return first.job_id, second.job_id

        first_id, second_id = run_service(service, body)
        assert first_id != second_id

    def test_selected_comments_only(self, fast_config, temp_db, seed_post, mixed_texts):
        comments = seed_post("post1", "user1", mixed_texts)
        service = build_service(fast_config, store=temp_db)
        options = AnalysisOptions(comment_ids=[comments[0].comment_id, comments[7].comment_id])

        async def body(svc):
            response = await svc.request_analysis("post1", "user1", options)
            return await svc.wait_for_result(response.job_id, timeout=5)

        result = run_service(service, body)
        assert result.total_comments == 2


class TestRequests:
    """Validation, deduplication and lookups."""

    def test_unknown_post(self, fast_config, temp_db):
        service = build_service(fast_config, store=temp_db)
        with pytest.raises(ValidationError) as exc:
            asyncio.run(service.request_analysis("missing", "user1"))
        assert "Post not found: missing" in exc.value.errors

    def test_post_of_another_user(self, fast_config, temp_db, seed_post):
        seed_post("post1", "owner", ["a perfectly ordinary comment"])
        service = build_service(fast_config, store=temp_db)
        with pytest.raises(ValidationError):
            asyncio.run(service.request_analysis("post1", "intruder"))

    def test_minimum_comments(self, fast_config, temp_db, seed_post):
        seed_post("post1", "user1", ["just one comment here"])
        fast_config.analysis.min_comments = 5
        service = build_service(fast_config, store=temp_db)

        check = asyncio.run(service.validate_prerequisites("post1", "user1"))
        assert not check.is_valid
        assert check.comment_count == 1

    def test_in_flight_request_is_joined(self, fast_config, temp_db, seed_post, mixed_texts):
        seed_post("post1", "user1", mixed_texts)
        service = build_service(fast_config, store=temp_db)

        async def body():
            first = await service.request_analysis("post1", "user1")
            second = await service.request_analysis("post1", "user1")
            return first, second

        # Scheduler not started, so the first job stays pending
        first, second = asyncio.run(body())
        assert second.job_id == first.job_id
        assert first.estimated_time == estimate_analysis_time(10)

    def test_cancelled_job_has_no_result(self, fast_config, temp_db, seed_post, mixed_texts):
        seed_post("post1", "user1", mixed_texts)
        service = build_service(fast_config, store=temp_db)

        async def body():
            response = await service.request_analysis("post1", "user1")
            assert service.cancel(response.job_id) is True
            await service.wait_for_result(response.job_id, timeout=1)

        with pytest.raises(CommentLensError, match="CANCELLED"):
            asyncio.run(body())

    def test_cancel_while_saving_discards_stored_result(
        self, fast_config, temp_db, seed_post, mixed_texts, monkeypatch
    ):
        seed_post("post1", "user1", mixed_texts)
        saving = threading.Event()
        release = threading.Event()
        save = temp_db.save_analysis_result

        def slow_save(result):
            save(result)
            saving.set()
            release.wait(5)

        monkeypatch.setattr(temp_db, "save_analysis_result", slow_save)
        service = build_service(fast_config, store=temp_db)

        async def body(svc):
            response = await svc.request_analysis("post1", "user1")
            assert await asyncio.to_thread(saving.wait, 5)
            assert temp_db.get_result_by_job(response.job_id) is not None
            assert svc.cancel(response.job_id) is True
            release.set()

            for _ in range(200):
                if temp_db.get_result_by_job(response.job_id) is None:
                    break
                await asyncio.sleep(0.01)
            again = await svc.request_analysis("post1", "user1")
            return response.job_id, again, svc.get_status(response.job_id)

        job_id, again, job = run_service(service, body)

        assert job.status == JobStatus.CANCELLED
        assert temp_db.get_result_by_job(job_id) is None
        assert not again.cache_hit
        assert again.job_id != job_id

    def test_unknown_job(self, fast_config, temp_db):
        service = build_service(fast_config, store=temp_db)
        with pytest.raises(NotFoundError):
            service.get_status("missing")
        with pytest.raises(NotFoundError):
            asyncio.run(service.get_result("missing"))

    def test_estimate_analysis_time(self):
        assert estimate_analysis_time(0) == 10
        assert estimate_analysis_time(25) == 13
        assert estimate_analysis_time(10_000) == 300


class TestHistoryAndOperations:
    """History, comparison, stats and maintenance."""

    def test_compare_results(self, fast_config, temp_db, make_result):
        now = time.time()
        temp_db.save_analysis_result(
            make_result("j2", positive=0.7, total_comments=15, analyzed_at=now)
        )
        temp_db.save_analysis_result(
            make_result("j1", positive=0.4, total_comments=10, analyzed_at=now - 100)
        )
        service = build_service(fast_config, store=temp_db)

        report = asyncio.run(service.compare_results(["j2", "j1"]))

        assert [e["job_id"] for e in report.entries] == ["j1", "j2"]
        assert report.sentiment_trend == "improving"
        assert report.engagement_trend == "increasing"
        assert report.averages["positive"] == pytest.approx(0.55)

    def test_compare_needs_two(self, fast_config, temp_db):
        service = build_service(fast_config, store=temp_db)
        with pytest.raises(ValidationError):
            asyncio.run(service.compare_results(["j1"]))

    def test_user_history(self, fast_config, temp_db, make_result):
        temp_db.save_analysis_result(make_result("j1"))
        temp_db.save_analysis_result(make_result("j2", user_id="user2"))
        service = build_service(fast_config, store=temp_db)

        history = asyncio.run(service.get_user_history("user1"))
        assert [r.job_id for r in history] == ["j1"]

    def test_system_stats(self, fast_config, temp_db, seed_post):
        seed_post("post1", "user1", ["a perfectly ordinary comment"])
        service = build_service(fast_config, store=temp_db)

        stats = asyncio.run(service.system_stats())
        assert set(stats) == {"jobs", "cache", "database"}
        assert stats["database"]["posts"] == 1
        assert stats["jobs"]["total"] == 0
        assert stats["cache"]["enabled"] is True

    def test_maintenance(self, fast_config, temp_db, make_result):
        now = time.time()
        temp_db.save_analysis_result(make_result("old", analyzed_at=now - 30 * 86400))
        temp_db.save_analysis_result(make_result("new", analyzed_at=now))
        temp_db.save_job(AnalysisJob(
            job_id="old", post_id="post1", user_id="user1",
            status=JobStatus.COMPLETED, completed_at=now - 48 * 3600,
        ))
        service = build_service(fast_config, store=temp_db)

        report = asyncio.run(service.maintenance())

        assert report["deleted_results"] == 1
        assert report["deleted_job_records"] == 1
        assert temp_db.get_result_by_job("new") is not None
