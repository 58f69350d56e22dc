import asyncio
import logging
from typing import Optional

from common.config import AppSettings
from common.document_store import QdrantDocumentStore
from common.errors import ConfigurationError
from common.llm import build_llm
from common.logging import setup_logging
from common.rabbit.connection import connect
from common.rabbit.rpc_server import RpcServer

from answer_service.mapper import ContractMapper, DocumentAdapter
from answer_service.news_cache import NewsCache
from answer_service.prompt_builder import PromptBuilder
from answer_service.ranker import RelevanceRanker
from answer_service.service import AnswerService
from answer_service.streamer import AnswerStreamer


logger = logging.getLogger(__name__)


def build_service(settings: AppSettings) -> AnswerService:
    streamer: Optional[AnswerStreamer] = None
    config_error: Optional[str] = None
    try:
        streamer = AnswerStreamer(build_llm(settings), ContractMapper())
    except ConfigurationError as e:
        # keep serving so callers get a configuration_error reply instead of a timeout
        logger.error("LLM backend is not configured", extra={"trace_id": "", "err": str(e)})
        config_error = str(e)

    store = QdrantDocumentStore.connect(
        settings.qdrant_host,
        settings.qdrant_port,
        settings.qdrant_collection,
        settings.store_poll_interval_s,
    )
    store.ensure_collection()
    adapter = DocumentAdapter()
    news_cache = NewsCache(store, settings.app_id, settings.news_country, adapter)

    return AnswerService(
        ranker=RelevanceRanker(category_cap=settings.ranker_category_cap, top_k=settings.ranker_top_k),
        prompt_builder=PromptBuilder(),
        streamer=streamer,
        news_cache=news_cache,
        config_error=config_error,
        adapter=adapter,
    )


async def main() -> None:
    settings = AppSettings()
    setup_logging(settings.log_level, "answer-service")

    conn = await connect(settings.amqp_url, "answer-service")
    service = build_service(settings)

    async def ask_handler(payload: dict, meta: dict):
        return await service.ask(payload, trace_id=meta.get("trace_id", ""))

    server = RpcServer(
        conn,
        settings.pulse_rpc_exchange,
        "pulse.ask.q",
        settings.ask_routing_key,
        ask_handler,
        prefetch_count=8,
        required_api_key=settings.service_api_key,
    )
    await server.start()

    logger.info("answer-service running", extra={"trace_id": ""})
    # keep alive
    await asyncio.Event().wait()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
