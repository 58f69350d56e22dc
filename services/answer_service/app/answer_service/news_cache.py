import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from common.contracts.models import AggregationRun, Article
from common.document_store import DocumentStore, Unsubscribe, news_path
from answer_service.mapper import DocumentAdapter


logger = logging.getLogger(__name__)


class NewsCache:
    """Latest aggregation run for the configured country.

    Subscribes to today's document (re-subscribing after the date changes)
    and falls back to yesterday's run while today's is not written yet.
    """

    def __init__(
        self,
        store: DocumentStore,
        namespace: str,
        country: str,
        adapter: DocumentAdapter,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._country = country
        self._adapter = adapter
        self._clock = clock

        self._latest: Optional[AggregationRun] = None
        self._subscribed_day: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None

    def _path(self, day: str) -> str:
        return news_path(self._namespace, self._country, day)

    def _on_change(self, day: str, doc) -> None:
        run = self._adapter.to_run(doc, day, self._country)
        if run is not None and run.total_articles():
            self._latest = run
            logger.info("News cache updated", extra={"trace_id": "", "date": day, "articles": run.total_articles()})

    def _on_error(self, e: Exception) -> None:
        logger.warning("News subscription error", extra={"trace_id": "", "err": repr(e)})

    def _ensure_subscribed(self, day: str) -> None:
        if self._subscribed_day == day:
            return
        self.stop()
        self._unsubscribe = self._store.subscribe(
            self._path(day),
            lambda doc: self._on_change(day, doc),
            self._on_error,
        )
        self._subscribed_day = day

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._subscribed_day = None

    async def corpus(self) -> Dict[str, List[Article]]:
        today = self._clock().date()
        today_s = today.isoformat()
        self._ensure_subscribed(today_s)

        if self._latest is not None and self._latest.date == today_s:
            return self._latest.categories

        for day in (today_s, (today - timedelta(days=1)).isoformat()):
            doc = await asyncio.to_thread(self._store.get, self._path(day))
            run = self._adapter.to_run(doc, day, self._country)
            if run is not None and run.total_articles():
                if day == today_s:
                    self._latest = run
                else:
                    logger.info("Today's news not ready, using previous day", extra={"trace_id": "", "date": day})
                return run.categories
        return {}
