"""Shared fixtures for the Comment Lens test suite."""

import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from commentlens.config import Config
from commentlens.database import Database
from commentlens.models import (
    AnalysisResult,
    Comment,
    Post,
    SentimentBreakdown,
)


# Seven lexically positive, two negative, one neutral. None of them trips
# the spam, toxicity or duplicate checks.
MIXED_COMMENTS = [
    "This recipe tutorial was great, the sauce turned out perfect",
    "Love the recipe, my family enjoyed the pasta tonight",
    "Amazing pasta recipe, clear steps and great lighting",
    "The sauce recipe is excellent and easy to follow",
    "Fantastic tutorial, the pasta sauce tasted wonderful",
    "Awesome recipe, I made the pasta twice this week",
    "Good pacing in this tutorial and the sauce looked amazing",
    "The audio was terrible during the sauce section",
    "Awful camera angle, the worst part was missing the pasta step",
    "Which brand of tomatoes did you use for the sauce?",
]


class ScriptedLLM:
    """Returns canned responses in order, repeating the last one."""

    def __init__(self, *responses: str):
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.responses)) - 1
        return self.responses[index]

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FailingLLM:
    """Raises on every call."""

    def __init__(self):
        self.calls = 0

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        raise RuntimeError("model endpoint unavailable")


@pytest.fixture
def mixed_texts() -> list[str]:
    return list(MIXED_COMMENTS)


@pytest.fixture
def scripted_llm():
    """Factory for a ScriptedLLM."""
    return ScriptedLLM


@pytest.fixture
def failing_llm() -> FailingLLM:
    return FailingLLM()


@pytest.fixture
def temp_db(tmp_path) -> Database:
    """Create a temporary database for testing."""
    db = Database(tmp_path / "test.db")
    db.initialize()
    return db


@pytest.fixture
def fast_config(tmp_path) -> Config:
    """Config with no retry delays, a fast scheduler tick and no model."""
    config = Config()
    config.llm.enabled = False
    config.sentiment.retry_delay = 0
    config.summary.retry_delay = 0
    config.jobs.tick_interval = 0.01
    config.jobs.shutdown_timeout = 2
    config.database.path = str(tmp_path / "service.db")
    return config


@pytest.fixture
def make_comments():
    """Factory building comments for a post from plain texts."""
    def _make(texts: list[str], post_id: str = "post1", likes: list[int] | None = None) -> list[Comment]:
        now = time.time()
        return [
            Comment(
                comment_id=f"{post_id}_c{i}",
                post_id=post_id,
                text=text,
                like_count=likes[i] if likes else 0,
                author=f"user{i}",
                published_at=now + i,
            )
            for i, text in enumerate(texts)
        ]
    return _make


@pytest.fixture
def seed_post(temp_db, make_comments):
    """Factory storing a post and its comments in ``temp_db``."""
    def _seed(post_id: str, user_id: str, texts: list[str]) -> list[Comment]:
        temp_db.insert_post(Post(post_id=post_id, user_id=user_id, created_at=time.time()))
        comments = make_comments(texts, post_id=post_id)
        temp_db.insert_comments(comments)
        return comments
    return _seed


@pytest.fixture
def make_result():
    """Factory building a minimal AnalysisResult."""
    def _make(
        job_id: str = "job1",
        post_id: str = "post1",
        user_id: str = "user1",
        analyzed_at: float | None = None,
        positive: float = 0.5,
        total_comments: int = 10,
    ) -> AnalysisResult:
        return AnalysisResult(
            result_id=f"result_{job_id}",
            job_id=job_id,
            post_id=post_id,
            user_id=user_id,
            summary="Analysis of 10 comments shows a positive overall response.",
            word_count=10,
            quality_score=0.4,
            emotions=(),
            key_insights=("Insight",),
            recommendations=("Recommendation",),
            sentiment_breakdown=SentimentBreakdown(positive, 1 - positive, 0.0),
            themes=(),
            keywords=(),
            total_comments=total_comments,
            filtered_comments=0,
            analyzed_at=time.time() if analyzed_at is None else analyzed_at,
        )
    return _make
