"""Comment preprocessing: cleaning, spam/toxicity filtering and deduplication.

Deterministic and side-effect free. Flagged comments are returned as copies;
the input list and its comments are never modified.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from commentlens.models import Comment

logger = logging.getLogger(__name__)

# =============================================================================
# HEURISTIC WORD LISTS AND PATTERNS
# =============================================================================

SPAM_KEYWORDS = [
    "subscribe", "follow me", "check out my", "click here", "free money",
    "make money fast", "work from home", "get rich quick", "buy now",
    "limited time", "act now", "call now", "visit my channel",
]

TOXIC_KEYWORDS = [
    "hate", "stupid", "idiot", "moron", "loser", "pathetic", "disgusting",
    "trash", "garbage", "worthless", "useless", "kill yourself", "die",
]

MIN_LENGTH = 3
MAX_LENGTH = 5000
MAX_CAPS_RATIO = 0.7
MAX_EMOJI_RATIO = 0.5
DUPLICATE_THRESHOLD = 0.9
MAX_WORD_SHARE = 0.3
MIN_WORD_REPEATS = 3

URL_PATTERN = re.compile(r"(https?://\S+|www\.\S+|\b[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b)")
CHAR_RUN_PATTERN = re.compile(r"(.)\1{4,}")
EMOJI_PATTERN = re.compile(
    "[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F1E6-\U0001F1FF]"
)
TOXIC_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in TOXIC_KEYWORDS) + r")\b"
)
PROFANITY_PATTERNS = [
    re.compile(r"\*{3,}"),
    re.compile(r"@#\$%"),
    re.compile(r"f\*+k", re.IGNORECASE),
    re.compile(r"\b\w+\*+\w*\b"),
]
HATE_PATTERNS = [
    re.compile(r"you (should|need to|must) (die|kill yourself)"),
    re.compile(r"i hate you"),
    re.compile(r"go (die|kill yourself)"),
]


@dataclass
class FilterStats:
    """Counts produced by one filter pass."""
    total: int = 0
    spam: int = 0
    toxic: int = 0
    duplicate: int = 0
    filtered: int = 0

    @property
    def removed(self) -> int:
        return self.spam + self.toxic + self.duplicate


@dataclass
class FilterResult:
    """Output of ``CommentPreprocessor.filter``."""
    filtered: list[Comment] = field(default_factory=list)
    spam: list[Comment] = field(default_factory=list)
    toxic: list[Comment] = field(default_factory=list)
    duplicates: list[Comment] = field(default_factory=list)
    stats: FilterStats = field(default_factory=FilterStats)


# =============================================================================
# TEXT HELPERS
# =============================================================================

def clean_text(text: str) -> str:
    """Drop unusual symbols, squash punctuation runs and collapse whitespace."""
    text = re.sub(r"[^\w\s.,!?@#-]", "", text)
    text = re.sub(r"[.,!?]{3,}", "...", text)
    return re.sub(r"\s+", " ", text).strip()


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace for comparisons."""
    return re.sub(r"\s+", " ", text.lower()).strip()


def jaccard_words(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of two normalized texts."""
    words_a = set(a.split())
    words_b = set(b.split())
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


# =============================================================================
# PREPROCESSOR
# =============================================================================

class CommentPreprocessor:
    """Filters spam, toxic and near-duplicate comments."""

    def __init__(self, duplicate_threshold: float = DUPLICATE_THRESHOLD):
        self.duplicate_threshold = duplicate_threshold

    def spam_reasons(self, raw: str, normalized: str) -> list[str]:
        """Return the spam heuristics a comment trips."""
        reasons = []
        length = len(raw.strip())

        if length < MIN_LENGTH:
            reasons.append("too short")
        elif length > MAX_LENGTH:
            reasons.append("too long")

        letters = [ch for ch in raw if ch.isalpha()]
        if letters:
            caps_ratio = sum(1 for ch in letters if ch.isupper()) / len(letters)
            if caps_ratio > MAX_CAPS_RATIO and len(letters) >= MIN_LENGTH:
                reasons.append("excessive capitalization")

        for keyword in SPAM_KEYWORDS:
            if keyword in normalized:
                reasons.append(f"spam phrase: {keyword}")
                break

        if CHAR_RUN_PATTERN.search(normalized):
            reasons.append("repeated characters")
        elif self._has_word_repetition(normalized):
            reasons.append("repeated words")

        if URL_PATTERN.search(raw):
            reasons.append("contains link")

        if raw and len(EMOJI_PATTERN.findall(raw)) / len(raw) > MAX_EMOJI_RATIO:
            reasons.append("excessive emoji")

        return reasons

    @staticmethod
    def _has_word_repetition(normalized: str) -> bool:
        words = normalized.split()
        counts = Counter(w for w in words if len(w) > 2)
        return any(
            n >= MIN_WORD_REPEATS and n / len(words) > MAX_WORD_SHARE
            for n in counts.values()
        )

    @staticmethod
    def toxic_reasons(raw: str, normalized: str) -> list[str]:
        """Return the toxicity heuristics a comment trips."""
        reasons = []

        match = TOXIC_PATTERN.search(normalized)
        if match:
            reasons.append(f"toxic language: {match.group(1)}")

        if any(p.search(raw) for p in PROFANITY_PATTERNS):
            reasons.append("masked profanity")

        if any(p.search(normalized) for p in HATE_PATTERNS):
            reasons.append("hate speech")

        return reasons

    def filter(self, comments: list[Comment]) -> FilterResult:
        """Split comments into kept, spam, toxic and duplicate groups.

        Precedence is spam, then toxic, then duplicate. The first of a set of
        near-duplicates is kept; later ones are flagged.

        Args:
            comments: Raw comments in their original order.

        Returns:
            FilterResult with cleaned copies of kept comments and flagged
            copies of the rest.
        """
        result = FilterResult(stats=FilterStats(total=len(comments)))
        kept_normalized: list[str] = []

        for comment in comments:
            raw = comment.text or ""
            normalized = normalize_text(raw)

            reasons = self.spam_reasons(raw, normalized)
            if reasons:
                result.spam.append(comment.with_flags(is_spam=True, reasons=reasons))
                continue

            reasons = self.toxic_reasons(raw, normalized)
            if reasons:
                result.toxic.append(comment.with_flags(is_toxic=True, reasons=reasons))
                continue

            if any(
                jaccard_words(normalized, other) > self.duplicate_threshold
                for other in kept_normalized
            ):
                result.duplicates.append(
                    comment.with_flags(is_duplicate=True, reasons=["near duplicate"])
                )
                continue

            kept_normalized.append(normalized)
            result.filtered.append(comment.with_flags(text=clean_text(raw), reasons=[]))

        stats = result.stats
        stats.spam = len(result.spam)
        stats.toxic = len(result.toxic)
        stats.duplicate = len(result.duplicates)
        stats.filtered = len(result.filtered)

        logger.info(
            f"[Preprocess] {stats.total} comments: kept {stats.filtered}, "
            f"spam {stats.spam}, toxic {stats.toxic}, duplicates {stats.duplicate}"
        )
        return result
