import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from common.contracts.models import Article
from answer_service.domain import ScoredCandidate


@dataclass(frozen=True)
class ScoringWeights:
    phrase_in_headline: int = 10
    token_in_headline: int = 3
    token_in_detail: int = 1
    token_in_category: int = 1
    age_under_day: int = 2
    age_under_week: int = 1
    min_token_length: int = 3


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def tokenize(query: str, min_length: int) -> List[str]:
    tokens: List[str] = []
    for raw in query.lower().split():
        token = raw.strip(string.punctuation)
        if len(token) >= min_length and token not in tokens:
            tokens.append(token)
    return tokens


class RelevanceRanker:
    """Lexical scoring plus per-category diversification.

    Pure: no I/O, and the clock is a parameter of `rank`.
    """

    def __init__(self, weights: ScoringWeights = ScoringWeights(), category_cap: int = 2, top_k: int = 10) -> None:
        self._w = weights
        self._category_cap = category_cap
        self._top_k = top_k

    def score(self, query: str, article: Article, category: str, now: datetime) -> int:
        w = self._w
        phrase = query.strip().lower()
        headline = article.headline.lower()
        detail = article.detail.lower()
        label = category.lower()

        score = 0
        if phrase and phrase in headline:
            score += w.phrase_in_headline
        for token in tokenize(query, w.min_token_length):
            if token in headline:
                score += w.token_in_headline
            if token in detail:
                score += w.token_in_detail
            if token in label:
                score += w.token_in_category

        # recency only boosts articles that already match
        if score > 0 and article.timestamp is not None:
            age_h = (now - as_utc(article.timestamp)).total_seconds() / 3600.0
            if age_h < 24:
                score += w.age_under_day
            elif age_h < 168:
                score += w.age_under_week
        return score

    def score_all(self, query: str, corpus: Mapping[str, Sequence[Article]], now: datetime) -> List[ScoredCandidate]:
        out: List[ScoredCandidate] = []
        for category, articles in corpus.items():
            for article in articles:
                s = self.score(query, article, category, now)
                if s > 0:
                    out.append(ScoredCandidate(article=article, score=s, category=category))
        return out

    def diversify(self, candidates: Sequence[ScoredCandidate], top_k: int) -> List[ScoredCandidate]:
        by_category: Dict[str, List[ScoredCandidate]] = {}
        for c in candidates:
            by_category.setdefault(c.category, []).append(c)

        capped: List[ScoredCandidate] = []
        for group in by_category.values():
            group.sort(key=lambda c: c.score, reverse=True)
            capped.extend(group[: self._category_cap])

        capped.sort(key=lambda c: c.score, reverse=True)
        return capped[:top_k]

    def rank(
        self,
        query: str,
        corpus: Mapping[str, Sequence[Article]],
        top_k: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Article]:
        now = as_utc(now) if now else datetime.now(timezone.utc)
        k = self._top_k if top_k is None else top_k
        ranked = self.diversify(self.score_all(query, corpus, now), k)
        return [c.article for c in ranked]
