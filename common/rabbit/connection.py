import logging

import aio_pika
from aio_pika.abc import AbstractRobustConnection


logger = logging.getLogger(__name__)


async def connect(amqp_url: str, service_name: str) -> AbstractRobustConnection:
    conn = await aio_pika.connect_robust(amqp_url, client_properties={"connection_name": service_name})
    logger.info("AMQP connected", extra={"trace_id": "", "service": service_name})
    return conn
