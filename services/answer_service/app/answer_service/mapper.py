import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from common.contracts.models import AggregationRun, Article, AskResponse, SourceItem


logger = logging.getLogger(__name__)


class ContractMapper:
    def sources(self, articles: Sequence[Article]) -> List[SourceItem]:
        """Citable sources, indexed by the article's 1-based position in the prompt.

        Articles without a headline or an http(s) URL are skipped but still
        consume their index, so numbering stays aligned with the context.
        """
        out = []
        for i, a in enumerate(articles, start=1):
            url = (a.url or "").strip()
            if a.headline and url.lower().startswith(("http://", "https://")):
                out.append(SourceItem(title=a.headline, url=url, index=i))
        return out

    def to_contract(self, text: str, articles: Sequence[Article], entities: Sequence[str]) -> AskResponse:
        return AskResponse(text=text, sources=self.sources(articles), entities=list(entities))


class DocumentAdapter:
    """Maps the stored shapes of a daily news document onto AggregationRun.

    Known shapes: {"categories": {...}}, {"newsData": {...}}, {"news": {...}},
    {"data": {"categories": {...}}}, and a bare {category: [articles]} map.
    """

    CATEGORY_KEYS = ("categories", "newsData", "news")

    def _categories(self, doc: Mapping[str, Any]) -> Mapping[str, Any]:
        for key in self.CATEGORY_KEYS:
            if isinstance(doc.get(key), dict):
                return doc[key]
        data = doc.get("data")
        if isinstance(data, dict) and isinstance(data.get("categories"), dict):
            return data["categories"]
        return {k: v for k, v in doc.items() if isinstance(v, list)}

    @staticmethod
    def _article(category: str, idx: int, raw: Any) -> Optional[Article]:
        if not isinstance(raw, dict):
            return None
        fields = dict(raw)
        fields.setdefault("headline", raw.get("title"))
        if not fields.get("detail"):
            fields["detail"] = raw.get("summary") or raw.get("description") or ""
        fields["category"] = raw.get("category") or category
        fields["id"] = str(raw.get("id") or f"{category[:1].upper()}{idx + 1:02d}")
        try:
            return Article.model_validate(fields)
        except ValidationError:
            logger.debug("Skipping malformed article", extra={"trace_id": "", "category": category, "idx": idx})
            return None

    def articles(self, categories: Mapping[str, Any]) -> Dict[str, List[Article]]:
        """Load `{category: [raw article]}`, skipping entries that are not valid articles."""
        out: Dict[str, List[Article]] = {}
        for name, items in categories.items():
            if not isinstance(items, list):
                continue
            articles = [self._article(name, i, raw) for i, raw in enumerate(items)]
            out[name] = [a for a in articles if a is not None]
        return out

    def to_run(self, doc: Optional[Mapping[str, Any]], default_date: str, default_country: str) -> Optional[AggregationRun]:
        if not doc:
            return None
        run = AggregationRun(
            date=str(doc.get("date") or default_date),
            country=str(doc.get("country") or default_country),
            categories=self.articles(self._categories(doc)),
        )
        created_at = doc.get("createdAt")
        if isinstance(created_at, (str, int, float, datetime)):
            try:
                run.created_at = TypeAdapter(datetime).validate_python(created_at)
            except ValidationError:
                logger.debug("Ignoring unreadable createdAt", extra={"trace_id": "", "date": run.date})
        return run
