"""
Event worker: turns queued lifecycle events into notifications.

Run with: python worker.py
"""

import asyncio
import json
import logging

import httpx
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

logger = logging.getLogger("worker")


async def process_event(raw: str, SessionMaker, client: httpx.AsyncClient) -> int:
    """Dispatch one serialized event. Returns the number of notifications written."""
    from cover.services.events import DomainEvent
    from cover.services.notifications import dispatch_event

    try:
        event = DomainEvent.from_payload(json.loads(raw))
    except (ValueError, KeyError) as exc:
        logger.error("Dropping malformed event %r: %s", raw, exc)
        return 0

    async with SessionMaker() as db:
        try:
            notifications = await dispatch_event(db, event, client)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return len(notifications)


async def handle_event(raw: str, SessionMaker, client: httpx.AsyncClient, r, dead_letter_queue: str) -> int:
    """Process one popped event; a failure parks the raw payload on the dead-letter list."""
    try:
        return await process_event(raw, SessionMaker, client)
    except Exception as exc:
        logger.error("Event dispatch failed, moving to %s: %s", dead_letter_queue, exc, exc_info=True)
        await r.lpush(dead_letter_queue, raw)
        return 0


async def main():
    """Main worker loop: block on the event queue and dispatch."""
    from cover.config import settings
    from cover.middleware.logging_config import setup_logging

    setup_logging(settings.log_level, json_output=settings.environment != "development")

    engine = create_async_engine(settings.database_url, echo=False)
    SessionMaker = async_sessionmaker(engine, expire_on_commit=False)

    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Worker started, listening on %s", settings.event_queue)

    async with httpx.AsyncClient(timeout=10.0) as client:
        while True:
            try:
                result = await r.brpop(settings.event_queue, timeout=5)
                if result is None:
                    continue
                _, raw = result
                await handle_event(raw, SessionMaker, client, r, settings.event_dead_letter_queue)
            except Exception as exc:
                logger.error("Worker loop error: %s", exc, exc_info=True)
                await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
