import pytest

from common.document_store import news_path
from answer_service.mapper import ContractMapper, DocumentAdapter
from answer_service.news_cache import NewsCache
from answer_service.prompt_builder import PromptBuilder
from answer_service.ranker import RelevanceRanker
from answer_service.service import AnswerService
from answer_service.streamer import AnswerStreamer
from conftest import NOW, FakeLLM


NEWS = {
    "Local": [
        {"id": "L1", "headline": "Harare council approves water levy", "detail": "Residents object.", "url": "https://herald.co.zw/water"},
        {"id": "L2", "headline": "Water rationing extended", "detail": "Council says dams are low."},
    ],
    "Business": [
        {"id": "B1", "headline": "Water utility posts loss", "detail": "Tariffs blamed.", "url": "https://newsday.co.zw/loss"},
    ],
}


def build_service(llm, news_cache=None, config_error=None):
    streamer = None if config_error else AnswerStreamer(llm, ContractMapper())
    return AnswerService(RelevanceRanker(), PromptBuilder(), streamer, news_cache, config_error)


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"question": ""}, {"question": "   "}, {}, {"question": "ok", "newsData": "bad"}])
async def test_invalid_request_never_reaches_model(payload):
    llm = FakeLLM(reply=lambda p: "should not be called")
    reply = await build_service(llm).ask(payload)
    assert reply["code"] == "invalid_request"
    assert llm.calls == []


@pytest.mark.asyncio
async def test_missing_backend_is_a_configuration_error():
    reply = await build_service(None, config_error="GEMINI_API_KEY is not set").ask({"question": "water?"})
    assert reply["code"] == "configuration_error"
    assert "GEMINI_API_KEY" in reply["error"]


@pytest.mark.asyncio
async def test_buffered_sources_match_prompt_numbering():
    llm = FakeLLM(reply=lambda p: "The council approved a levy [1] and the utility lost money [3].")
    reply = await build_service(llm).ask({"question": "water", "newsData": NEWS})

    prompt = llm.calls[0]["prompt"]
    for source in reply["sources"]:
        assert f"[{source['index']}] {source['title']}" in prompt
    assert {s["url"] for s in reply["sources"]} == {"https://herald.co.zw/water", "https://newsday.co.zw/loss"}
    assert reply["text"].startswith("The council")


@pytest.mark.asyncio
async def test_model_failure_is_a_service_error():
    def boom(prompt):
        raise RuntimeError("deadline exceeded")

    reply = await build_service(FakeLLM(reply=boom)).ask({"question": "water", "newsData": NEWS})
    assert reply["code"] == "service_error"


@pytest.mark.asyncio
async def test_stream_yields_wire_frames():
    llm = FakeLLM(chunks=["Levy ", "approved [1]."])
    frames = await build_service(llm).ask({"question": "water levy", "newsData": NEWS, "stream": True})
    wire = [f async for f in frames]

    assert wire[0] == {"text": "Levy ", "done": False}
    assert wire[-1]["done"] is True
    assert wire[-1]["fullText"] == "Levy approved [1]."
    assert wire[-1]["sources"][0]["index"] == 1


@pytest.mark.asyncio
async def test_falls_back_to_stored_news(store):
    yesterday = "2025-03-13"
    store.set(news_path("morning-pulse-app", "zimbabwe", yesterday), {"date": yesterday, "categories": NEWS})
    cache = NewsCache(store, "morning-pulse-app", "zimbabwe", DocumentAdapter(), clock=lambda: NOW)
    llm = FakeLLM(reply=lambda p: "Answer [1].")

    try:
        reply = await build_service(llm, news_cache=cache).ask({"question": "water levy", "newsData": {}})
    finally:
        cache.stop()

    assert "Harare council approves water levy" in llm.calls[0]["prompt"]
    assert reply["sources"][0]["url"] == "https://herald.co.zw/water"


@pytest.mark.asyncio
async def test_blank_question_reports_the_field():
    reply = await build_service(FakeLLM()).ask({"question": "  "})
    assert reply["code"] == "invalid_request"
    assert "question" in reply["error"]


@pytest.mark.asyncio
async def test_malformed_article_is_skipped_not_fatal():
    news = {
        "Local": [
            {"id": "L1", "headline": "Harare council approves water levy", "url": "https://herald.co.zw/water"},
            {"detail": "an entry with no headline"},
            "not an article",
            {"headline": "Water levy explained"},
        ],
        "Business": "not a list",
    }
    llm = FakeLLM(reply=lambda p: "The levy was approved [1].")
    reply = await build_service(llm).ask({"question": "water levy", "newsData": news})

    assert "code" not in reply
    prompt = llm.calls[0]["prompt"]
    assert "[1] Harare council approves water levy" in prompt
    assert "Water levy explained" in prompt
    assert "an entry with no headline" not in prompt
    assert reply["sources"] == [{"title": "Harare council approves water levy", "url": "https://herald.co.zw/water", "index": 1}]
