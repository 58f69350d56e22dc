import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

import aio_pika
from aio_pika.abc import AbstractRobustConnection

from common.contracts.models import ErrorReply


logger = logging.getLogger(__name__)

HandlerResult = Union[Dict[str, Any], AsyncIterator[Dict[str, Any]]]


class RpcServer:
    """Direct-exchange RPC consumer.

    A handler returns either one reply dict or an async iterator of frames;
    frames are published one message each to `reply_to` under the request's
    correlation id, with an `x-stream` header.
    """

    def __init__(
        self,
        conn: AbstractRobustConnection,
        exchange_name: str,
        queue_name: str,
        routing_key: str,
        handler: Callable[[dict, dict], Awaitable[HandlerResult]],
        prefetch_count: int = 1,
        required_api_key: Optional[str] = None,
    ) -> None:
        self._conn = conn
        self._exchange_name = exchange_name
        self._queue_name = queue_name
        self._routing_key = routing_key
        self._handler = handler
        self._prefetch_count = prefetch_count
        self._required_api_key = required_api_key

        # Keep strong refs (helps observability and avoids accidental GC/close).
        self._channel: Optional[aio_pika.abc.AbstractRobustChannel] = None
        self._queue: Optional[aio_pika.abc.AbstractRobustQueue] = None
        self._consumer_tag: Optional[str] = None

    async def _publish(self, message: aio_pika.abc.AbstractIncomingMessage, body: Dict[str, Any], stream: bool = False) -> None:
        assert self._channel is not None
        await self._channel.default_exchange.publish(
            aio_pika.Message(
                body=json.dumps(body, ensure_ascii=False).encode("utf-8"),
                correlation_id=message.correlation_id,
                content_type="application/json",
                headers={"x-stream": stream},
            ),
            routing_key=message.reply_to,
        )

    async def _publish_stream(self, message, frames: AsyncIterator[Dict[str, Any]], log_extra: dict) -> None:
        sent = 0
        try:
            async for frame in frames:
                await self._publish(message, frame, stream=True)
                sent += 1
        except Exception as e:
            logger.exception("Stream handler failed", extra={**log_extra, "frames_sent": sent})
            await self._publish(message, {"error": str(e), "done": True}, stream=True)

    async def on_message(self, message: aio_pika.abc.AbstractIncomingMessage) -> None:
        trace_id = (message.headers or {}).get("x-trace-id", "")
        log_extra = {"trace_id": trace_id, "routing_key": self._routing_key}

        try:
            if not message.reply_to or not message.correlation_id:
                logger.warning("RPC message missing reply_to/correlation_id", extra=log_extra)
                await message.ack()
                return

            if self._required_api_key:
                api_key = (message.headers or {}).get("x-api-key")
                if api_key != self._required_api_key:
                    logger.warning("Unauthorized RPC call", extra=log_extra)
                    await self._publish(message, ErrorReply(error="Unauthorized", code="unauthorized").model_dump())
                    await message.ack()
                    return

            try:
                payload = json.loads(message.body.decode("utf-8"))
            except ValueError:
                logger.warning("RPC body is not valid JSON", extra=log_extra)
                await self._publish(message, ErrorReply(error="Malformed request body", code="invalid_request").model_dump())
                await message.ack()
                return

            result = await self._handler(payload, {"trace_id": trace_id})
            if isinstance(result, dict):
                await self._publish(message, result)
            else:
                await self._publish_stream(message, result, log_extra)
            await message.ack()
        except Exception as e:
            logger.exception("RPC handler failed", extra=log_extra)
            try:
                if message.reply_to and message.correlation_id:
                    await self._publish(message, ErrorReply(error=f"Request failed: {e}", code="service_error").model_dump())
            finally:
                await message.ack()

    async def start(self) -> None:
        channel = await self._conn.channel()
        await channel.set_qos(prefetch_count=self._prefetch_count)
        self._channel = channel

        exchange = await channel.declare_exchange(self._exchange_name, aio_pika.ExchangeType.DIRECT, durable=True)
        queue = await channel.declare_queue(self._queue_name, durable=True)
        await queue.bind(exchange, routing_key=self._routing_key)
        self._queue = queue

        self._consumer_tag = await queue.consume(self.on_message)
        logger.info(
            "RPC server started",
            extra={
                "trace_id": "",
                "queue": self._queue_name,
                "exchange": self._exchange_name,
                "routing_key": self._routing_key,
                "prefetch": self._prefetch_count,
            },
        )
