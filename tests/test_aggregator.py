import asyncio
import json
import logging

import pytest

from common.document_store import news_path
from common.llm import GroundedText, GroundingSource
from aggregator_service.aggregator import AggregationJob, CategoryAggregator
from aggregator_service.generator import CategoryNewsGenerator
from aggregator_service.retry import RetryScheduler
from conftest import NOW, FakeLLM


CATEGORIES = ["Local", "Business", "African Focus", "Global", "Sports", "Tech", "General"]


def five_items(prompt: str) -> str:
    return json.dumps([{"headline": f"Story {i}", "detail": "d", "source": "s", "url": f"https://n.co/{i}"} for i in range(5)])


def failing_for(*categories):
    def reply(prompt: str) -> str:
        for c in categories:
            if f"category: {c} " in prompt:
                raise RuntimeError("quota exceeded")
        return five_items(prompt)

    return reply


async def no_sleep(seconds):
    return None


def build_job(llm, store):
    aggregator = CategoryAggregator(
        generator=CategoryNewsGenerator(llm, articles_per_category=5),
        retry=RetryScheduler(max_attempts=3, delay_ms=2000, sleep=no_sleep),
        clock=lambda: NOW,
    )
    return AggregationJob(aggregator, store, "morning-pulse-app", "zimbabwe", CATEGORIES, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_partial_success_persists_every_category(store):
    llm = FakeLLM(reply=failing_for("Sports", "Tech"))
    result = await build_job(llm, store).run()

    assert result.success is True
    assert result.total_articles == 25
    assert result.date == "2025-03-14"
    assert result.categories == CATEGORIES

    doc = store.get(news_path("morning-pulse-app", "zimbabwe", "2025-03-14"))
    assert set(doc["categories"]) == set(CATEGORIES)
    assert doc["categories"]["Sports"] == []
    assert doc["categories"]["Tech"] == []
    assert len(doc["categories"]["Local"]) == 5
    assert doc["date"] == "2025-03-14"
    assert doc["timestamp"] == int(NOW.timestamp() * 1000)
    # 5 successful categories + 3 attempts for each failing one
    assert len(llm.calls) == 5 + 2 * 3


@pytest.mark.asyncio
async def test_total_failure_writes_nothing(store):
    path = news_path("morning-pulse-app", "zimbabwe", "2025-03-14")
    store.set(path, {"date": "2025-03-14", "categories": {"Local": [{"id": "old", "headline": "Old"}]}})

    result = await build_job(FakeLLM(reply=failing_for(*CATEGORIES)), store).run()

    assert result.success is False
    assert result.error
    assert store.get(path)["categories"]["Local"][0]["id"] == "old"


@pytest.mark.asyncio
async def test_articles_are_tagged_with_unique_ids():
    aggregator = CategoryAggregator(
        CategoryNewsGenerator(FakeLLM(reply=five_items), 5),
        RetryScheduler(1, 0, sleep=no_sleep),
        clock=lambda: NOW,
    )
    out = await aggregator.aggregate(CATEGORIES, "zimbabwe")

    ids = [a.id for items in out.values() for a in items]
    assert len(ids) == 35
    assert len(set(ids)) == 35
    local = out["Local"][0]
    assert local.category == "Local"
    assert local.date == "2025-03-14"
    assert local.timestamp == NOW


@pytest.mark.asyncio
async def test_categories_are_requested_concurrently():
    started = 0
    gate = asyncio.Event()

    class GatedLLM:
        async def generate(self, prompt, system_instruction=None, history=None):
            nonlocal started
            started += 1
            if started == len(CATEGORIES):
                gate.set()
            await asyncio.wait_for(gate.wait(), timeout=1)
            return five_items(prompt)

    aggregator = CategoryAggregator(CategoryNewsGenerator(GatedLLM(), 5), RetryScheduler(1, 0, sleep=no_sleep))
    out = await aggregator.aggregate(CATEGORIES, "zimbabwe")
    assert all(len(items) == 5 for items in out.values())


@pytest.mark.asyncio
async def test_malformed_output_is_retried():
    replies = iter(["sorry, I cannot browse", five_items("")])
    llm = FakeLLM(reply=lambda prompt: next(replies))
    aggregator = CategoryAggregator(CategoryNewsGenerator(llm, 3), RetryScheduler(3, 0, sleep=no_sleep))

    out = await aggregator.aggregate(["Local"], "zimbabwe")
    assert len(out["Local"]) == 3
    assert len(llm.calls) == 2


def test_search_hint_falls_back_for_unknown_category():
    assert CategoryNewsGenerator.search_hint("Local", "zimbabwe") == "latest local news Zimbabwe today"
    assert CategoryNewsGenerator.search_hint("Weather", "zimbabwe") == "Weather news today"


class GroundedLLM:
    def __init__(self, text, sources):
        self._result = GroundedText(text=text, sources=sources)
        self.generate_calls = 0

    async def generate(self, prompt, system_instruction=None, history=None):
        self.generate_calls += 1
        return "[]"

    async def search(self, prompt, system_instruction=None):
        return self._result


@pytest.mark.asyncio
async def test_grounded_fetch_fills_missing_urls_from_search_sources():
    text = json.dumps([
        {"headline": "Fuel prices cut", "url": ""},
        {"headline": "Mine reopens", "url": "https://mining.co.zw/a"},
        {"headline": "Rates held"},
    ])
    sources = [
        GroundingSource(uri="https://herald.co.zw/fuel", title="herald.co.zw"),
        GroundingSource(uri="https://other.co.zw/x", title="other.co.zw"),
    ]
    llm = GroundedLLM(text, sources)
    items = await CategoryNewsGenerator(llm, 5, grounded=True).fetch("Business", "zimbabwe")

    assert [i.url for i in items] == ["https://herald.co.zw/fuel", "https://mining.co.zw/a", ""]
    assert llm.generate_calls == 0


@pytest.mark.asyncio
async def test_generation_log_carries_trace_id(caplog):
    caplog.set_level(logging.INFO, logger="aggregator_service.generator")
    aggregator = CategoryAggregator(CategoryNewsGenerator(FakeLLM(reply=five_items), 5), RetryScheduler(1, 0, sleep=no_sleep))
    await aggregator.aggregate(["Local"], "zimbabwe", trace_id="run-42")

    [record] = [r for r in caplog.records if r.getMessage() == "Category generated"]
    assert record.trace_id == "run-42"
