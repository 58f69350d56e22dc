import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from common.contracts.models import AggregateResponse, AggregationRun, Article
from common.document_store import DocumentStore, news_path
from aggregator_service.generator import CategoryNewsGenerator
from aggregator_service.retry import RetryScheduler


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CategoryAggregator:
    def __init__(
        self,
        generator: CategoryNewsGenerator,
        retry: RetryScheduler,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._generator = generator
        self._retry = retry
        self._clock = clock

    async def _collect(self, category: str, country: str, day: str, now: datetime, trace_id: str) -> List[Article]:
        items = await self._retry.execute(
            lambda: self._generator.fetch(category, country, trace_id),
            default=[],
            context={"trace_id": trace_id, "category": category, "country": country},
        )
        return [
            Article(
                id=uuid.uuid4().hex,
                category=category,
                headline=item.headline,
                detail=item.detail,
                source=item.source,
                url=item.url or None,
                date=day,
                timestamp=now,
            )
            for item in items
        ]

    async def aggregate(
        self,
        categories: Sequence[str],
        country: str,
        day: Optional[str] = None,
        trace_id: str = "",
    ) -> Dict[str, List[Article]]:
        """Fan out one request per category and wait for all of them.

        Every requested category is a key of the result; a category whose
        retries ran out maps to an empty list.
        """
        now = self._clock()
        day = day or now.date().isoformat()
        results = await asyncio.gather(
            *(self._collect(c, country, day, now, trace_id) for c in categories),
            return_exceptions=True,
        )

        out: Dict[str, List[Article]] = {}
        for category, result in zip(categories, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Category collection crashed",
                    extra={"trace_id": trace_id, "category": category, "error": repr(result)},
                )
                result = []
            out[category] = result
        return out


class AggregationJob:
    """One aggregation run: collect every category, persist unless all empty."""

    def __init__(
        self,
        aggregator: CategoryAggregator,
        store: DocumentStore,
        namespace: str,
        country: str,
        categories: Sequence[str],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._aggregator = aggregator
        self._store = store
        self._namespace = namespace
        self._country = country
        self._categories = list(categories)
        self._clock = clock

    async def run(self, day: Optional[str] = None, trace_id: str = "") -> AggregateResponse:
        now = self._clock()
        day = day or now.date().isoformat()
        log_extra = {"trace_id": trace_id, "date": day, "country": self._country}
        logger.info("Aggregation started", extra={**log_extra, "categories": self._categories})

        categories = await self._aggregator.aggregate(self._categories, self._country, day, trace_id)
        run = AggregationRun(date=day, country=self._country, categories=categories, created_at=now)
        total = run.total_articles()

        if total == 0:
            # keep the previous good run instead of overwriting it with nothing
            logger.error("Aggregation produced no articles, nothing written", extra=log_extra)
            return AggregateResponse(
                success=False,
                message="Failed to aggregate news",
                error="every category came back empty",
            )

        empty = [c for c, items in categories.items() if not items]
        if empty:
            logger.warning("Partial aggregation", extra={**log_extra, "empty_categories": empty})

        document = run.model_dump(mode="json", by_alias=True)
        document["timestamp"] = int(now.timestamp() * 1000)
        path = news_path(self._namespace, self._country, day)
        await asyncio.to_thread(self._store.set, path, document, True)

        logger.info("Aggregation stored", extra={**log_extra, "path": path, "total_articles": total})
        return AggregateResponse(
            success=True,
            date=day,
            categories=list(categories),
            total_articles=total,
            message="News aggregated successfully",
        )
