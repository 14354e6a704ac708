"""Prompt templates for Comment Lens.

Each prompt is a template plus a parameter record. Rendering is a pure
function, so prompt content can be tested without a model call.
"""

from dataclasses import asdict, dataclass

from commentlens.models import Comment, Keyword, SentimentBreakdown, Theme

VALID_EMOTIONS = (
    "joy", "anger", "sadness", "fear", "surprise", "disgust", "trust", "anticipation",
)


@dataclass
class PromptTemplate:
    """A named prompt with ``str.format`` placeholders."""
    id: str
    description: str
    template: str

    def render(self, params) -> str:
        """Fill the template from a parameter dataclass."""
        return self.template.format(**asdict(params))


# ============================================================================
# Sentiment
# ============================================================================

@dataclass
class SentimentPromptParams:
    """Parameters for the batch sentiment prompt."""
    comment_count: int
    emotions: str
    comments_block: str


SENTIMENT_BATCH = PromptTemplate(
    id="sentiment_batch",
    description="Classify the sentiment and emotions of a numbered batch of comments",
    template="""Classify the sentiment of each of the following {comment_count} social media comments.

For every comment decide:
- sentiment: POSITIVE, NEGATIVE or NEUTRAL
- confidence: a number between 0 and 1
- emotions: up to 3 of [{emotions}], each with a score between 0 and 1

Comments:
{comments_block}

Answer with exactly one JSON object per line and nothing else, for example:
{{"commentIndex": 1, "sentiment": "POSITIVE", "confidence": 0.85, "emotions": [{{"name": "joy", "score": 0.8}}]}}
""",
)


def build_sentiment_params(comments: list[Comment]) -> SentimentPromptParams:
    """Number the comments (1-based) into a prompt block."""
    lines = []
    for i, comment in enumerate(comments, 1):
        text = " ".join(comment.text.split())
        lines.append(f'{i}. "{text}"')
    return SentimentPromptParams(
        comment_count=len(comments),
        emotions=", ".join(VALID_EMOTIONS),
        comments_block="\n".join(lines),
    )


# ============================================================================
# Summary
# ============================================================================

@dataclass
class SummaryPromptParams:
    """Parameters for the narrative summary prompt."""
    comment_count: int
    positive_pct: float
    negative_pct: float
    neutral_pct: float
    themes_block: str
    keywords_block: str
    min_words: int
    max_words: int


SUMMARY_NARRATIVE = PromptTemplate(
    id="summary_narrative",
    description="Write a short narrative summary of a comment analysis",
    template="""You are an expert content analyst writing a brief report for a creator about how their audience responded to a post.

Analysis of {comment_count} comments:

Sentiment distribution:
- Positive: {positive_pct:.1f}%
- Negative: {negative_pct:.1f}%
- Neutral: {neutral_pct:.1f}%

Top themes:
{themes_block}

Top keywords: {keywords_block}

REQUIREMENTS:
- Write 3-5 sentences, between {min_words} and {max_words} words
- Mention at least one sentiment percentage
- Refer to the most discussed themes by name
- Use plain prose without markdown, headings or bullet points
- Be specific and actionable, do not invent facts beyond the data above
""",
)


def build_summary_params(
    breakdown: SentimentBreakdown,
    themes: list[Theme],
    keywords: list[Keyword],
    comment_count: int,
    min_words: int = 75,
    max_words: int = 150,
) -> SummaryPromptParams:
    """Collect the statistics embedded in the summary prompt."""
    theme_lines = [
        f"- {theme.name}: {theme.frequency} comments, mostly {theme.sentiment.value.lower()}"
        for theme in themes[:3]
    ]
    return SummaryPromptParams(
        comment_count=comment_count,
        positive_pct=breakdown.positive * 100,
        negative_pct=breakdown.negative * 100,
        neutral_pct=breakdown.neutral * 100,
        themes_block="\n".join(theme_lines) or "- (no recurring themes)",
        keywords_block=", ".join(k.word for k in keywords[:5]) or "(none)",
        min_words=min_words,
        max_words=max_words,
    )
