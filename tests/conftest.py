from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest
from qdrant_client import QdrantClient

from common.contracts.models import Article, Opinion
from common.document_store import QdrantDocumentStore


NOW = datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)


class FakeLLM:
    """Scripted model: `reply(prompt)` decides each generate() result and
    `chunks` feeds stream()."""

    def __init__(
        self,
        reply: Optional[Callable[[str], str]] = None,
        chunks: Optional[List[str]] = None,
        fail_after: Optional[int] = None,
    ) -> None:
        self._reply = reply or (lambda prompt: "")
        self._chunks = chunks or []
        self._fail_after = fail_after
        self.calls: List[Dict] = []

    async def generate(self, prompt, system_instruction=None, history=None) -> str:
        self.calls.append({"prompt": prompt, "system_instruction": system_instruction, "history": history})
        return self._reply(prompt)

    async def stream(self, prompt, system_instruction=None, history=None):
        self.calls.append({"prompt": prompt, "system_instruction": system_instruction, "history": history})
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise RuntimeError("connection reset by model backend")
            yield chunk


def make_article(
    headline: str,
    detail: str = "",
    category: str = "Local",
    url: Optional[str] = None,
    age: Optional[timedelta] = None,
    id: Optional[str] = None,
) -> Article:
    return Article(
        id=id or headline[:12],
        category=category,
        headline=headline,
        detail=detail,
        source="The Herald",
        url=url,
        timestamp=NOW - age if age is not None else None,
    )


def make_opinion(n: int, published: bool = True, days_ago: int = 0, body: str = "Body text.") -> Opinion:
    return Opinion(
        id=f"op{n}",
        headline=f"Opinion {n}",
        body=body,
        is_published=published,
        published_at=NOW - timedelta(days=days_ago),
    )


@pytest.fixture
def store():
    s = QdrantDocumentStore(QdrantClient(":memory:"), "test_docs", poll_interval_s=0.01)
    s.ensure_collection()
    return s
