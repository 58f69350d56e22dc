"""Aggregator entrypoint.

`run` performs one aggregation (meant for a daily scheduler) and prints the
trigger response; `serve` answers aggregation triggers over RPC.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from common.config import AppSettings
from common.contracts.models import AggregateResponse
from common.document_store import QdrantDocumentStore
from common.errors import ConfigurationError
from common.llm import GeminiLLM, build_llm
from common.logging import setup_logging
from common.rabbit.connection import connect
from common.rabbit.rpc_server import RpcServer

from aggregator_service.aggregator import AggregationJob, CategoryAggregator
from aggregator_service.generator import CategoryNewsGenerator
from aggregator_service.retry import RetryScheduler


logger = logging.getLogger(__name__)


def build_job(settings: AppSettings) -> AggregationJob:
    llm = build_llm(settings)
    grounded = bool(settings.gemini_search_tool)
    if grounded and not isinstance(llm, GeminiLLM):
        raise ConfigurationError("GEMINI_SEARCH_TOOL requires LLM_PROVIDER=gemini")
    store = QdrantDocumentStore.connect(
        settings.qdrant_host,
        settings.qdrant_port,
        settings.qdrant_collection,
        settings.store_poll_interval_s,
    )
    store.ensure_collection()

    aggregator = CategoryAggregator(
        generator=CategoryNewsGenerator(llm, settings.articles_per_category, grounded=grounded),
        retry=RetryScheduler(settings.aggregator_max_attempts, settings.aggregator_retry_delay_ms),
    )
    return AggregationJob(
        aggregator=aggregator,
        store=store,
        namespace=settings.app_id,
        country=settings.news_country,
        categories=settings.categories_list(),
    )


def not_configured(e: ConfigurationError) -> AggregateResponse:
    return AggregateResponse(success=False, message="Aggregator is not configured", error=f"configuration_error: {e}")


async def run_once(settings: AppSettings, day: Optional[str]) -> AggregateResponse:
    try:
        job = build_job(settings)
    except ConfigurationError as e:
        logger.error("Aggregator is not configured", extra={"trace_id": "", "err": str(e)})
        return not_configured(e)
    return await job.run(day)


async def serve(settings: AppSettings) -> None:
    conn = await connect(settings.amqp_url, "aggregator-service")

    try:
        job: Optional[AggregationJob] = build_job(settings)
        config_error: Optional[ConfigurationError] = None
    except ConfigurationError as e:
        logger.error("Aggregator is not configured", extra={"trace_id": "", "err": str(e)})
        job, config_error = None, e

    # one run at a time per process
    run_lock = asyncio.Lock()

    async def aggregate_handler(payload: dict, meta: dict) -> dict:
        if job is None:
            return not_configured(config_error).to_wire()
        async with run_lock:
            result = await job.run(payload.get("date"), trace_id=meta.get("trace_id", ""))
        return result.to_wire()

    server = RpcServer(
        conn,
        settings.pulse_rpc_exchange,
        "pulse.aggregate.q",
        settings.aggregate_routing_key,
        aggregate_handler,
        prefetch_count=1,
        required_api_key=settings.service_api_key,
    )
    await server.start()

    logger.info("aggregator-service running", extra={"trace_id": ""})
    await asyncio.Event().wait()


def cli(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(prog="pulse-aggregator", description="Daily news aggregation")
    sub = parser.add_subparsers(dest="command", required=True)
    run_p = sub.add_parser("run", help="aggregate once and exit")
    run_p.add_argument("--date", help="run date (YYYY-MM-DD), defaults to today in UTC")
    sub.add_parser("serve", help="answer aggregation triggers over RPC")
    args = parser.parse_args(argv)

    settings = AppSettings()
    setup_logging(settings.log_level, "aggregator-service")

    if args.command == "serve":
        asyncio.run(serve(settings))
        return 0

    result = asyncio.run(run_once(settings, args.date))
    print(json.dumps(result.to_wire(), ensure_ascii=False))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(cli())
