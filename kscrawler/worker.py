from __future__ import annotations

import asyncio
import logging
from typing import Optional

from kscrawler.processor import process_job
from kscrawler.registry import session_registry
from kscrawler.store import job_store

logger = logging.getLogger("crawler-worker")


async def run_worker(stop_event: Optional[asyncio.Event] = None) -> None:
    logger.info("Crawler worker started")
    try:
        while stop_event is None or not stop_event.is_set():
            message = await job_store.pop(timeout=3)
            if not message:
                await asyncio.sleep(0.2)
                continue
            try:
                await process_job(message)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Job processing failed: %s", exc)
    finally:
        await session_registry.close()
        logger.info("Crawler worker stopped")
