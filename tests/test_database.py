"""Tests for the database module."""

import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from commentlens.database import Database
from commentlens.models import AnalysisJob, JobStatus, Post


@pytest.fixture
def sample_post() -> Post:
    """Create a sample post for testing."""
    return Post(
        post_id="abc123",
        user_id="user1",
        platform="youtube",
        title="Weeknight pasta",
        created_at=time.time(),
    )


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_create_database(self, temp_db):
        """Test database creation."""
        assert temp_db.db_path.exists()

    def test_initialize_is_idempotent(self, temp_db):
        temp_db.initialize()
        assert temp_db.get_stats() == {
            "posts": 0, "comments": 0, "analysis_jobs": 0, "analysis_results": 0,
        }

    def test_creates_parent_directory(self, tmp_path):
        db = Database(tmp_path / "nested" / "dir" / "test.db")
        db.initialize()
        assert db.db_path.exists()


class TestPostsAndComments:
    """Tests for post and comment operations."""

    def test_insert_and_get_post(self, temp_db, sample_post):
        temp_db.insert_post(sample_post)
        assert temp_db.get_post("abc123") == sample_post
        assert temp_db.get_post("missing") is None

    def test_list_posts_by_user(self, temp_db, sample_post):
        temp_db.insert_post(sample_post)
        temp_db.insert_post(Post("other", "user2", created_at=time.time()))

        assert [p.post_id for p in temp_db.list_posts("user1")] == ["abc123"]
        assert len(temp_db.list_posts()) == 2

    def test_comments_ordered_by_publication(self, temp_db, make_comments):
        comments = make_comments(["first", "second", "third"])
        temp_db.insert_comments(list(reversed(comments)))

        found = temp_db.find_comments("post1")
        assert [c.comment_id for c in found] == ["post1_c0", "post1_c1", "post1_c2"]
        assert temp_db.count_comments("post1") == 3
        assert temp_db.count_comments("post2") == 0

    def test_get_comments_keeps_requested_order(self, temp_db, make_comments):
        temp_db.insert_comments(make_comments(["first", "second", "third"]))

        found = temp_db.get_comments(["post1_c2", "unknown", "post1_c0"])
        assert [c.text for c in found] == ["third", "first"]
        assert temp_db.get_comments([]) == []


class TestJobs:
    """Tests for job records."""

    def test_save_and_update_job(self, temp_db):
        job = AnalysisJob(job_id="job1", post_id="abc123", user_id="user1", comment_ids=["c1"])
        temp_db.save_job(job)

        job.status = JobStatus.FAILED
        job.error_message = "model unavailable"
        job.attempts = 3
        temp_db.save_job(job)

        stored = temp_db.get_job("job1")
        assert stored == job
        assert temp_db.get_stats()["analysis_jobs"] == 1

    def test_list_jobs_newest_first(self, temp_db):
        for i in range(3):
            temp_db.save_job(AnalysisJob(
                job_id=f"job{i}", post_id="p", user_id="user1", created_at=1000.0 + i,
            ))
        temp_db.save_job(AnalysisJob(job_id="other", post_id="p", user_id="user2"))

        jobs = temp_db.list_jobs("user1", limit=2)
        assert [j.job_id for j in jobs] == ["job2", "job1"]

    def test_delete_finished_jobs(self, temp_db):
        now = time.time()
        temp_db.save_job(AnalysisJob(
            job_id="old", post_id="p", user_id="u",
            status=JobStatus.COMPLETED, completed_at=now - 7200,
        ))
        temp_db.save_job(AnalysisJob(job_id="queued", post_id="p", user_id="u"))

        assert temp_db.delete_finished_jobs(now - 3600) == 1
        assert temp_db.get_job("old") is None
        assert temp_db.get_job("queued") is not None


class TestResults:
    """Tests for analysis result records."""

    def test_latest_result_per_post(self, temp_db, make_result):
        now = time.time()
        temp_db.save_analysis_result(make_result("job1", analyzed_at=now - 100))
        temp_db.save_analysis_result(make_result("job2", analyzed_at=now))

        assert temp_db.find_latest_result("post1").job_id == "job2"
        assert temp_db.get_result_by_job("job1").job_id == "job1"
        assert temp_db.find_latest_result("post9") is None

    def test_result_round_trip(self, temp_db, make_result):
        result = make_result("job1", positive=0.75)
        temp_db.save_analysis_result(result)
        assert temp_db.get_result_by_job("job1") == result

    def test_list_and_expire_results(self, temp_db, make_result):
        now = time.time()
        temp_db.save_analysis_result(make_result("old", analyzed_at=now - 10 * 86400))
        temp_db.save_analysis_result(make_result("new", analyzed_at=now))
        temp_db.save_analysis_result(make_result("mine", user_id="user2", analyzed_at=now))

        assert [r.job_id for r in temp_db.list_results("user1")] == ["new", "old"]
        assert temp_db.delete_results_older_than(7) == 1
        assert [r.job_id for r in temp_db.list_results("user1")] == ["new"]

    def test_delete_result(self, temp_db, make_result):
        temp_db.save_analysis_result(make_result("job1"))

        assert temp_db.delete_result("result_job1") is True
        assert temp_db.delete_result("result_job1") is False
        assert temp_db.get_result_by_job("job1") is None
