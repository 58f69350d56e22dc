import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger


def setup_logging(level: str, service: Optional[str] = None) -> None:
    logger = logging.getLogger()
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(trace_id)s",
        rename_fields={"levelname": "level", "asctime": "ts"},
        static_fields={"service": service} if service else None,
    )
    handler.setFormatter(formatter)

    logger.handlers = [handler]

    # transport clients are chatty at INFO
    for noisy in ("httpx", "urllib3", "aiormq", "aio_pika"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
