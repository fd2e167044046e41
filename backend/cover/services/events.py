"""
Lifecycle events.

Transition methods call ``emit`` inside the request transaction: the event
is written to the audit log and buffered on the session. ``get_db`` hands
the buffer to ``publish`` only after the commit succeeds, so listeners never
see an event for a change that was rolled back.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from cover.config import settings
from cover.services.audit_service import AuditService

logger = logging.getLogger(__name__)

_PENDING_KEY = "cover.pending_events"


class EventKind(str, Enum):
    ITEM_SUBMITTED = "api:item:submitted"
    ITEM_REVISION = "api:item:revision"
    ITEM_AUTO_APPROVED = "api:item:autoapproved"
    ITEM_APPROVED = "api:item:approved"
    ITEM_DENIED = "api:item:denied"

    CLAIM_SUBMITTED = "api:claim:submitted"
    CLAIM_REVIEW1 = "api:claim:review1"
    CLAIM_REVIEW2 = "api:claim:review2"
    CLAIM_REVIEW3 = "api:claim:review3"
    CLAIM_REVISION = "api:claim:revision"
    CLAIM_PREAPPROVED = "api:claim:preapproved"
    CLAIM_RECEIPT = "api:claim:receipt"
    CLAIM_APPROVED = "api:claim:approved"
    CLAIM_DENIED = "api:claim:denied"


@dataclass(frozen=True)
class DomainEvent:
    kind: EventKind
    resource_type: str
    resource_id: uuid.UUID
    policy_id: uuid.UUID | None = None
    reason: str = ""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_payload(self) -> dict:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "resource_type": self.resource_type,
            "id": str(self.resource_id),
            "policy_id": str(self.policy_id) if self.policy_id else None,
            "reason": self.reason,
        }

    @classmethod
    def from_payload(cls, data: dict) -> "DomainEvent":
        return cls(
            kind=EventKind(data["kind"]),
            resource_type=data["resource_type"],
            resource_id=uuid.UUID(data["id"]),
            policy_id=uuid.UUID(data["policy_id"]) if data.get("policy_id") else None,
            reason=data.get("reason") or "",
            event_id=data["event_id"],
        )


async def emit(session: AsyncSession, event: DomainEvent, actor: str = "system") -> DomainEvent:
    await AuditService(session).log_event(
        event_type=event.kind.value,
        actor=actor,
        action=f"Emitted {event.kind.value}",
        resource_type=event.resource_type,
        resource_id=str(event.resource_id),
        details=event.to_payload(),
    )
    session.info.setdefault(_PENDING_KEY, []).append(event)
    return event


def pending_events(session: AsyncSession) -> list[DomainEvent]:
    return list(session.info.get(_PENDING_KEY, []))


def take_pending(session: AsyncSession) -> list[DomainEvent]:
    return session.info.pop(_PENDING_KEY, [])


def discard_pending(session: AsyncSession) -> None:
    session.info.pop(_PENDING_KEY, None)


async def get_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.redis_url, decode_responses=True)


async def publish(events: list[DomainEvent]) -> int:
    """Push committed events onto the worker queue. Returns how many were queued.

    A Redis failure does not undo the committed change; the serialized
    events are logged so they can be replayed from the audit log.
    """
    if not events:
        return 0
    payloads = [json.dumps(e.to_payload()) for e in events]
    try:
        r = await get_redis()
        try:
            await r.lpush(settings.event_queue, *payloads)
        finally:
            await r.aclose()
    except (RedisError, OSError) as exc:
        logger.error("Failed to queue %d event(s): %s; payloads=%s", len(payloads), exc, payloads)
        return 0
    return len(payloads)
