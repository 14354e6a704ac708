"""Analysis stages for Comment Lens.

Preprocessing, sentiment classification, theme clustering and summary
generation. Each stage is a plain class constructed once and shared by all
jobs.
"""

from commentlens.analysis.preprocessor import (
    CommentPreprocessor,
    FilterResult,
    FilterStats,
    clean_text,
    normalize_text,
)

from commentlens.analysis.sentiment import (
    BatchSentimentResult,
    SentimentClassifier,
    SentimentSummary,
    ValidationReport,
    heuristic_classify,
    parse_response,
)

from commentlens.analysis.themes import (
    ThemeAnalysisResult,
    ThemeAnalyzer,
    ThemeStats,
    tokenize,
)

from commentlens.analysis.summary import (
    GeneratedSummary,
    QualityReport,
    SummaryGenerator,
    SummaryInput,
    clean_summary,
)

__all__ = [
    # Preprocessing
    "CommentPreprocessor",
    "FilterResult",
    "FilterStats",
    "clean_text",
    "normalize_text",
    # Sentiment
    "BatchSentimentResult",
    "SentimentClassifier",
    "SentimentSummary",
    "ValidationReport",
    "heuristic_classify",
    "parse_response",
    # Themes
    "ThemeAnalysisResult",
    "ThemeAnalyzer",
    "ThemeStats",
    "tokenize",
    # Summary
    "GeneratedSummary",
    "QualityReport",
    "SummaryGenerator",
    "SummaryInput",
    "clean_summary",
]
