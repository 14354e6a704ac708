"""Theme clustering for Comment Lens.

Provides lightweight topic grouping without an LLM:
- TF-IDF keyword extraction with per-keyword sentiment
- Greedy Jaccard clustering over comment token sets
- Deterministic theme naming from frequent member tokens
"""

import logging
import math
import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field

from commentlens.config import ThemeConfig
from commentlens.models import Comment, Keyword, Sentiment, SentimentResult, Theme

logger = logging.getLogger(__name__)

# Tie order when two sentiments have the same weight
SENTIMENT_PRIORITY = (Sentiment.POSITIVE, Sentiment.NEGATIVE, Sentiment.NEUTRAL)

FALLBACK_THEME_NAME = "Miscellaneous"

# =============================================================================
# TOKENIZATION
# =============================================================================

STOPWORDS = {
    # Articles, pronouns, prepositions, auxiliaries
    'the', 'and', 'for', 'are', 'but', 'not', 'you', 'all', 'any', 'can',
    'had', 'her', 'was', 'one', 'our', 'out', 'has', 'have', 'him', 'his',
    'how', 'its', 'may', 'new', 'now', 'old', 'see', 'two', 'who', 'did',
    'she', 'use', 'way', 'man', 'too', 'own', 'get', 'got', 'let', 'put',
    'say', 'said', 'this', 'that', 'with', 'from', 'they', 'them', 'their',
    'there', 'then', 'than', 'these', 'those', 'what', 'when', 'where',
    'which', 'while', 'will', 'would', 'could', 'should', 'been', 'being',
    'were', 'into', 'onto', 'over', 'under', 'about', 'after', 'before',
    'again', 'also', 'just', 'only', 'very', 'much', 'more', 'most', 'some',
    'such', 'each', 'other', 'your', 'yours', 'mine', 'myself', 'yourself',
    'does', 'doing', 'done', 'here', 'because', 'until', 'why', 'whom',
    'both', 'few', 'nor', 'same', 'so', 'off', 'once', 'ever', 'even',
    'still', 'yet', 'really', 'actually', 'maybe', 'well', 'make', 'made',
    'know', 'think', 'thing', 'things', 'lot', 'lots', 'going', 'gonna',
    'want', 'wanna', 'dont', 'didnt', 'doesnt', 'cant', 'wont', 'isnt',
    'arent', 'wasnt', 'ive', 'youre', 'thats',
    # Filler common in comments
    'good', 'bad', 'great', 'like', 'yeah', 'yes', 'lol', 'omg', 'haha',
    'please', 'thanks', 'thank', 'post', 'comment', 'comments', 'video',
    'https', 'http', 'www', 'com',
}


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop stopwords, numerals and short tokens."""
    if not text:
        return []
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return [
        token for token in text.split()
        if len(token) >= 3 and token not in STOPWORDS and not token.isdigit()
    ]


def jaccard(a: set[str], b: set[str]) -> float:
    """Intersection over union of two token sets (0 when both are empty)."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def similarity_matrix(token_sets: list[set[str]]) -> list[list[float]]:
    """Symmetric pairwise Jaccard matrix (diagonal left at 0)."""
    n = len(token_sets)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            matrix[i][j] = matrix[j][i] = jaccard(token_sets[i], token_sets[j])
    return matrix


def dominant_sentiment(counts: Counter) -> Sentiment:
    """Pick the sentiment with the highest count, ties by priority."""
    best = max((counts.get(s, 0) for s in SENTIMENT_PRIORITY), default=0)
    for sentiment in SENTIMENT_PRIORITY:
        if counts.get(sentiment, 0) == best:
            return sentiment
    return Sentiment.NEUTRAL


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ThemeStats:
    """Aggregate figures over the produced themes."""
    total_themes: int = 0
    total_keywords: int = 0
    average_coherence: float = 0.0
    dominant_sentiment: Sentiment = Sentiment.NEUTRAL


@dataclass
class ThemeAnalysisResult:
    """Output of ``ThemeAnalyzer.analyze_themes``."""
    themes: list[Theme] = field(default_factory=list)
    keywords: list[Keyword] = field(default_factory=list)
    summary: ThemeStats = field(default_factory=ThemeStats)


# =============================================================================
# ANALYZER
# =============================================================================

class ThemeAnalyzer:
    """Extracts keywords and clusters comments into themes."""

    def __init__(self, config: ThemeConfig | None = None):
        self.config = config or ThemeConfig()

    def analyze_themes(
        self,
        comments: list[Comment],
        sentiment_results: list[SentimentResult],
    ) -> ThemeAnalysisResult:
        """Extract keywords and themes from a comment set.

        Args:
            comments: Comments that passed preprocessing.
            sentiment_results: Classification for each comment, same order.
                Missing entries count as neutral.

        Returns:
            ThemeAnalysisResult with themes sorted by descending size.
        """
        if not comments:
            return ThemeAnalysisResult()

        sentiments = [
            sentiment_results[i].sentiment if i < len(sentiment_results) else Sentiment.NEUTRAL
            for i in range(len(comments))
        ]
        doc_tokens = [tokenize(c.text) for c in comments]

        keywords = self.extract_keywords(doc_tokens, sentiments)
        similarity = similarity_matrix([set(tokens) for tokens in doc_tokens])
        clusters = self.cluster(doc_tokens, sentiments, similarity)
        themes = self._build_themes(
            clusters, comments, doc_tokens, sentiments, keywords, similarity
        )

        summary = self._summarize(themes, keywords)
        logger.info(
            f"[Themes] {summary.total_themes} themes, {summary.total_keywords} keywords "
            f"from {len(comments)} comments"
        )
        return ThemeAnalysisResult(themes=themes, keywords=keywords, summary=summary)

    # -------------------------------------------------------------------------
    # Keywords
    # -------------------------------------------------------------------------

    def extract_keywords(
        self,
        doc_tokens: list[list[str]],
        sentiments: list[Sentiment],
    ) -> list[Keyword]:
        """Score tokens by TF-IDF and attach sentiment and context."""
        num_docs = len(doc_tokens)
        total_tokens = sum(len(tokens) for tokens in doc_tokens)
        if total_tokens == 0:
            return []

        term_freq: Counter = Counter()
        doc_freq: Counter = Counter()
        sentiment_counts: dict[str, Counter] = defaultdict(Counter)
        contexts: dict[str, list[str]] = defaultdict(list)

        for tokens, sentiment in zip(doc_tokens, sentiments):
            for i, token in enumerate(tokens):
                term_freq[token] += 1
                sentiment_counts[token][sentiment] += 1
                if len(contexts[token]) < 5:
                    context = " ".join(tokens[max(0, i - 2):i + 3])
                    if context not in contexts[token]:
                        contexts[token].append(context)
            doc_freq.update(set(tokens))

        keywords = []
        for token, frequency in term_freq.items():
            if frequency < self.config.min_keyword_frequency:
                continue
            tf = frequency / total_tokens
            idf = math.log(num_docs / doc_freq[token])
            counts = sentiment_counts[token]
            dominant = dominant_sentiment(counts)
            keywords.append(Keyword(
                word=token,
                frequency=frequency,
                sentiment=dominant,
                tfidf=tf * idf,
                sentiment_score=counts[dominant] / frequency,
                contexts=contexts[token],
            ))

        keywords.sort(key=lambda k: (k.tfidf, k.frequency), reverse=True)
        return keywords[:self.config.max_keywords]

    # -------------------------------------------------------------------------
    # Clustering
    # -------------------------------------------------------------------------

    def cluster(
        self,
        doc_tokens: list[list[str]],
        sentiments: list[Sentiment],
        similarity: list[list[float]] | None = None,
    ) -> list[list[int]]:
        """Group comment indexes by greedy Jaccard similarity.

        Returns:
            Retained clusters (lists of comment indexes), largest first.
        """
        token_sets = [set(tokens) for tokens in doc_tokens]
        n = len(token_sets)
        if similarity is None:
            similarity = similarity_matrix(token_sets)

        assigned = [False] * n
        clusters: list[list[int]] = []

        for i in range(n):
            if assigned[i]:
                continue
            assigned[i] = True
            members = [i]

            for j in range(n):
                if not assigned[j] and similarity[i][j] >= self.config.similarity_threshold:
                    assigned[j] = True
                    members.append(j)

            # Relaxed pass for comments nothing else matched
            if len(members) == 1:
                for j in range(n):
                    if assigned[j]:
                        continue
                    shared = len(token_sets[i] & token_sets[j])
                    if shared >= 2 or (shared == 1 and sentiments[i] == sentiments[j]):
                        assigned[j] = True
                        members.append(j)

            clusters.append(members)

        small_set = n <= self.config.small_set_size
        retained = [
            members for members in clusters
            if len(members) >= self.config.min_cluster_size
            or (small_set and any(token_sets[m] for m in members))
        ]
        retained.sort(key=len, reverse=True)
        return retained[:self.config.max_clusters]

    @staticmethod
    def coherence(members: list[int], similarity: list[list[float]]) -> float:
        """Mean pairwise similarity of cluster members (0.5 for singletons)."""
        if len(members) < 2:
            return 0.5
        pairs = [
            similarity[a][b]
            for idx, a in enumerate(members)
            for b in members[idx + 1:]
        ]
        return sum(pairs) / len(pairs)

    # -------------------------------------------------------------------------
    # Theme assembly
    # -------------------------------------------------------------------------

    def _build_themes(
        self,
        clusters: list[list[int]],
        comments: list[Comment],
        doc_tokens: list[list[str]],
        sentiments: list[Sentiment],
        keywords: list[Keyword],
        similarity: list[list[float]],
    ) -> list[Theme]:
        keyword_words = {k.word for k in keywords}
        themes = []
        unnamed = 0

        for number, members in enumerate(clusters, 1):
            member_comments = [comments[m] for m in members]
            member_tokens = [t for m in members for t in doc_tokens[m]]

            name = self.theme_name(member_tokens, keyword_words)
            if name is None:
                unnamed += 1
                name = FALLBACK_THEME_NAME if unnamed == 1 else f"{FALLBACK_THEME_NAME} {unnamed}"

            token_set = set(member_tokens)
            representatives = sorted(
                member_comments,
                key=lambda c: len(c.text) * 0.7 + c.like_count * 0.3,
                reverse=True,
            )[:3]

            themes.append(Theme(
                theme_id=f"theme_{number}",
                name=name,
                comments=member_comments,
                sentiment=dominant_sentiment(Counter(sentiments[m] for m in members)),
                representative_comments=representatives,
                keywords=[k for k in keywords if k.word in token_set][:5],
                coherence=self.coherence(members, similarity),
            ))

        return themes

    @staticmethod
    def theme_name(member_tokens: list[str], keyword_words: set[str]) -> str | None:
        """Name a theme from its most frequent tokens.

        Uses whichever of the top three tokens are also extracted keywords,
        otherwise the top two tokens. Returns None when the theme has no
        tokens at all.
        """
        top = [word for word, _ in Counter(member_tokens).most_common(3)]
        if not top:
            return None
        chosen = [w for w in top if w in keyword_words] or top[:2]
        return " & ".join(w.title() for w in chosen)

    @staticmethod
    def _summarize(themes: list[Theme], keywords: list[Keyword]) -> ThemeStats:
        if not themes:
            return ThemeStats(total_keywords=len(keywords))
        weights: Counter = Counter()
        for theme in themes:
            weights[theme.sentiment] += theme.frequency
        return ThemeStats(
            total_themes=len(themes),
            total_keywords=len(keywords),
            average_coherence=sum(t.coherence for t in themes) / len(themes),
            dominant_sentiment=dominant_sentiment(weights),
        )
