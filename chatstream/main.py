"""Entry point for chatstream-core: run the TurnService on the Event Bus."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from chatstream.config import get_config
from chatstream.core.errors import NoCredentialsError
from chatstream.core.logging_config import setup_logging

if TYPE_CHECKING:
    from chatstream.config.loader import Config

logger = logging.getLogger(__name__)


def main() -> None:
    config = get_config()
    setup_logging(config.logging.level, config.logging.json_format)
    if not config.redis.url:
        logger.error("REDIS_URL is required")
        sys.exit(1)
    if not config.provider.api_keys:
        logger.error("no API key configured: set CHATSTREAM_API_KEYS or CHATSTREAM_API_KEY_1..N")
        sys.exit(1)
    try:
        asyncio.run(run_service(config))
    except KeyboardInterrupt:
        logger.info("stopped")


async def run_service(config: Config) -> None:
    from chatstream.core.bus import EventBus
    from chatstream.core.service import TurnService
    from chatstream.core.turn_store import TurnStore
    from chatstream.models.gateway import build_orchestrator

    try:
        orchestrator = build_orchestrator(config)
    except NoCredentialsError as e:
        logger.error("cannot start: %s", e)
        return
    service = TurnService(
        EventBus(config.redis.url),
        orchestrator,
        TurnStore(config.redis.url),
    )
    await service.start()
    try:
        await service.run_forever()
    finally:
        await service.stop()


if __name__ == "__main__":
    main()
