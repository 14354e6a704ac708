"""Shared data model for Comment Lens.

Records passed between the pipeline stages, the orchestrator, the cache and
the store. Storage rows map onto these dataclasses one to one.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class Sentiment(str, Enum):
    """Sentiment class of a single comment."""
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class JobStatus(str, Enum):
    """Lifecycle state of an analysis job."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

# Pipeline steps in execution order
PIPELINE_STEPS = [
    ("preprocess", "Preprocessing comments and filtering spam"),
    ("classify", "Analyzing sentiment and emotions"),
    ("cluster", "Extracting themes and keywords"),
    ("summarize", "Generating summary and insights"),
    ("persist", "Saving results to database"),
]


# =============================================================================
# STORE ENTITIES
# =============================================================================

@dataclass
class Post:
    """A social media post whose comments can be analyzed."""
    post_id: str
    user_id: str
    platform: str = "generic"
    title: str = ""
    created_at: float = 0.0


@dataclass
class Comment:
    """A comment on a post.

    The pipeline never mutates a Comment; the preprocessor returns flagged
    copies via ``with_flags``.
    """
    comment_id: str
    post_id: str
    text: str
    like_count: int = 0
    author: str = ""
    published_at: float = 0.0
    is_spam: bool = False
    is_toxic: bool = False
    is_duplicate: bool = False
    reasons: list[str] = field(default_factory=list)

    def with_flags(self, **changes: Any) -> "Comment":
        """Return a copy with the given flag fields replaced."""
        return replace(self, **changes)


# =============================================================================
# SENTIMENT
# =============================================================================

@dataclass
class EmotionScore:
    """A named emotion with an intensity in [0, 1]."""
    name: str
    score: float


@dataclass
class SentimentResult:
    """Per-comment sentiment classification."""
    sentiment: Sentiment
    confidence: float
    emotions: list[EmotionScore] = field(default_factory=list)
    is_fallback: bool = False


@dataclass
class SentimentBreakdown:
    """Fractions of positive, negative and neutral comments."""
    positive: float = 0.0
    negative: float = 0.0
    neutral: float = 0.0

    @classmethod
    def from_results(cls, results: list[SentimentResult]) -> "SentimentBreakdown":
        """Build a breakdown from classification results."""
        total = len(results)
        if total == 0:
            return cls()
        counts = {s: 0 for s in Sentiment}
        for result in results:
            counts[result.sentiment] += 1
        return cls(
            positive=counts[Sentiment.POSITIVE] / total,
            negative=counts[Sentiment.NEGATIVE] / total,
            neutral=counts[Sentiment.NEUTRAL] / total,
        )

    def total(self) -> float:
        return self.positive + self.negative + self.neutral

    def dominant(self) -> Sentiment:
        """Sentiment with the largest share (ties favour positive, then negative)."""
        shares = [
            (self.positive, Sentiment.POSITIVE),
            (self.negative, Sentiment.NEGATIVE),
            (self.neutral, Sentiment.NEUTRAL),
        ]
        best = max(share for share, _ in shares)
        for share, sentiment in shares:
            if share == best:
                return sentiment
        return Sentiment.NEUTRAL


# =============================================================================
# THEMES
# =============================================================================

@dataclass
class Keyword:
    """An extracted keyword with its sentiment profile."""
    word: str
    frequency: int
    sentiment: Sentiment
    tfidf: float
    sentiment_score: float
    contexts: list[str] = field(default_factory=list)


@dataclass
class Theme:
    """A cluster of lexically similar comments."""
    theme_id: str
    name: str
    comments: list[Comment]
    sentiment: Sentiment
    representative_comments: list[Comment] = field(default_factory=list)
    keywords: list[Keyword] = field(default_factory=list)
    coherence: float = 0.5

    @property
    def frequency(self) -> int:
        """Number of member comments."""
        return len(self.comments)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class EmotionAnalysis:
    """An emotion detected across the comment set."""
    name: str
    prevalence: float
    description: str
    examples: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ThemeSummary:
    """Persisted view of a theme."""
    theme_id: str
    name: str
    frequency: int
    sentiment: str
    coherence: float
    keywords: tuple[str, ...] = ()
    examples: tuple[str, ...] = ()

    @classmethod
    def from_theme(cls, theme: Theme) -> "ThemeSummary":
        return cls(
            theme_id=theme.theme_id,
            name=theme.name,
            frequency=theme.frequency,
            sentiment=theme.sentiment.value,
            coherence=round(theme.coherence, 4),
            keywords=tuple(k.word for k in theme.keywords),
            examples=tuple(c.text for c in theme.representative_comments),
        )


@dataclass(frozen=True)
class KeywordSummary:
    """Persisted view of a keyword."""
    word: str
    frequency: int
    sentiment: str
    tfidf: float


@dataclass(frozen=True)
class AnalysisResult:
    """The terminal artifact of one analysis run.

    Immutable once built. A re-run produces a new record with a new id.
    """
    result_id: str
    job_id: str
    post_id: str
    user_id: str
    summary: str
    word_count: int
    quality_score: float
    emotions: tuple[EmotionAnalysis, ...]
    key_insights: tuple[str, ...]
    recommendations: tuple[str, ...]
    sentiment_breakdown: SentimentBreakdown
    themes: tuple[ThemeSummary, ...]
    keywords: tuple[KeywordSummary, ...]
    total_comments: int
    filtered_comments: int
    analyzed_at: float
    used_fallback: bool = False

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dictionary."""
        data = asdict(self)
        for key in ("emotions", "key_insights", "recommendations", "themes", "keywords"):
            data[key] = list(data[key])
        for theme in data["themes"]:
            theme["keywords"] = list(theme["keywords"])
            theme["examples"] = list(theme["examples"])
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        """Rebuild a result from ``to_dict`` output."""
        return cls(
            result_id=data["result_id"],
            job_id=data["job_id"],
            post_id=data["post_id"],
            user_id=data["user_id"],
            summary=data["summary"],
            word_count=data["word_count"],
            quality_score=data["quality_score"],
            emotions=tuple(EmotionAnalysis(**e) for e in data.get("emotions", [])),
            key_insights=tuple(data.get("key_insights", [])),
            recommendations=tuple(data.get("recommendations", [])),
            sentiment_breakdown=SentimentBreakdown(**data["sentiment_breakdown"]),
            themes=tuple(
                ThemeSummary(
                    theme_id=t["theme_id"],
                    name=t["name"],
                    frequency=t["frequency"],
                    sentiment=t["sentiment"],
                    coherence=t["coherence"],
                    keywords=tuple(t.get("keywords", [])),
                    examples=tuple(t.get("examples", [])),
                )
                for t in data.get("themes", [])
            ),
            keywords=tuple(KeywordSummary(**k) for k in data.get("keywords", [])),
            total_comments=data["total_comments"],
            filtered_comments=data["filtered_comments"],
            analyzed_at=data["analyzed_at"],
            used_fallback=data.get("used_fallback", False),
        )


# =============================================================================
# JOBS
# =============================================================================

@dataclass
class AnalysisJob:
    """One request to analyze a single post's comments."""
    job_id: str
    post_id: str
    user_id: str
    comment_ids: list[str] = field(default_factory=list)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    current_step: int = 0
    total_steps: int = len(PIPELINE_STEPS)
    step_description: str = "Queued"
    error_message: str | None = None
    attempts: int = 0
    max_attempts: int = 3
    result_id: str | None = None
    created_at: float = field(default_factory=lambda: datetime.now().timestamp())
    started_at: float | None = None
    completed_at: float | None = None

    def snapshot(self) -> "AnalysisJob":
        """Return a detached copy safe to hand out to callers."""
        return replace(self, comment_ids=list(self.comment_ids))
