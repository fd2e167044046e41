"""
Notification listeners.

The worker hands every queued lifecycle event to ``dispatch_event``. Each
event kind has one listener describing who hears about it: the members of
the policy, the review team that has to act next, or both. Listeners write
``Notification`` rows; when a webhook is configured each notification is
also POSTed there and marked sent on a 2xx answer.

Replaying an event is harmless: rows already written for its event id are
returned as they are.
"""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.auth.roles import ROLE_CAPABILITIES, AdminCapability
from cover.config import settings
from cover.database import utcnow
from cover.models import Claim, Item, Notification, PolicyUser, User
from cover.services.events import DomainEvent, EventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Listener:
    subject: str
    notify_members: bool = True
    review_team: AdminCapability | None = None


LISTENERS: dict[EventKind, Listener] = {
    # ── Items ──
    EventKind.ITEM_SUBMITTED: Listener("Item submitted for coverage review", review_team=AdminCapability.STEWARD),
    EventKind.ITEM_REVISION: Listener("Item coverage needs revisions"),
    EventKind.ITEM_AUTO_APPROVED: Listener("Item coverage approved"),
    EventKind.ITEM_APPROVED: Listener("Item coverage approved"),
    EventKind.ITEM_DENIED: Listener("Item coverage denied"),
    # ── Claims ──
    EventKind.CLAIM_SUBMITTED: Listener("Claim submitted", review_team=AdminCapability.STEWARD),
    EventKind.CLAIM_REVIEW1: Listener("Claim under review", review_team=AdminCapability.STEWARD),
    EventKind.CLAIM_REVIEW2: Listener("Claim ready for second review", notify_members=False,
                                      review_team=AdminCapability.STEWARD),
    EventKind.CLAIM_REVIEW3: Listener("Claim ready for final approval", notify_members=False,
                                      review_team=AdminCapability.SIGNATOR),
    EventKind.CLAIM_REVISION: Listener("Claim needs revisions"),
    EventKind.CLAIM_PREAPPROVED: Listener("Claim pre-approved, receipt needed"),
    EventKind.CLAIM_RECEIPT: Listener("Receipt needed for claim"),
    EventKind.CLAIM_APPROVED: Listener("Claim approved"),
    EventKind.CLAIM_DENIED: Listener("Claim denied"),
}


def roles_with(capability: AdminCapability) -> list:
    return [role for role, caps in ROLE_CAPABILITIES.items() if capability in caps]


async def _members(session: AsyncSession, policy_id) -> list[User]:
    if policy_id is None:
        return []
    result = await session.execute(
        select(User)
        .join(PolicyUser, PolicyUser.user_id == User.id)
        .where(PolicyUser.policy_id == policy_id, User.is_active.is_(True))
    )
    return list(result.scalars().all())


async def _review_team(session: AsyncSession, capability: AdminCapability) -> list[User]:
    result = await session.execute(
        select(User).where(User.app_role.in_(roles_with(capability)), User.is_active.is_(True))
    )
    return list(result.scalars().all())


async def _describe(session: AsyncSession, event: DomainEvent) -> str | None:
    if event.resource_type == "items":
        item = await session.get(Item, event.resource_id)
        return f"Item: {item.name}" if item else None
    if event.resource_type == "claims":
        claim = await session.get(Claim, event.resource_id)
        return f"Claim {claim.reference_number} ({claim.status.value})" if claim else None
    return f"{event.resource_type} {event.resource_id}"


async def recipients_for(session: AsyncSession, event: DomainEvent, listener: Listener) -> list[User]:
    users: dict = {}
    if listener.notify_members:
        for user in await _members(session, event.policy_id):
            users[user.id] = user
    if listener.review_team is not None:
        for user in await _review_team(session, listener.review_team):
            users[user.id] = user
    return list(users.values())


async def deliver(client: httpx.AsyncClient, notifications: list[Notification], recipients: dict) -> int:
    """POST each notification to the webhook. Returns how many were accepted."""
    sent = 0
    for n in notifications:
        payload = {
            "event_id": n.event_id,
            "kind": n.event_kind,
            "recipient": recipients[n.recipient_id].email,
            "subject": n.subject,
            "body": n.body,
            "resource_type": n.resource_type,
            "resource_id": n.resource_id,
        }
        try:
            resp = await client.post(settings.notification_webhook_url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Webhook delivery failed for notification %s: %s", n.id, exc)
            continue
        n.sent_at = utcnow()
        sent += 1
    return sent


async def dispatch_event(
    session: AsyncSession,
    event: DomainEvent,
    client: httpx.AsyncClient | None = None,
) -> list[Notification]:
    """Run the listener for ``event`` and return the notifications it produced."""
    existing = (await session.execute(
        select(Notification).where(Notification.event_id == event.event_id)
    )).scalars().all()
    if existing:
        logger.info("Event %s already dispatched, skipping", event.event_id)
        return list(existing)

    listener = LISTENERS.get(event.kind)
    if listener is None:
        logger.warning("No listener for event kind %s", event.kind.value)
        return []

    description = await _describe(session, event)
    if description is None:
        logger.warning("Event %s refers to missing %s %s", event.event_id, event.resource_type, event.resource_id)
        return []

    recipients = await recipients_for(session, event, listener)
    body = description if not event.reason else f"{description}\n\nReason: {event.reason}"
    notifications = [
        Notification(
            event_id=event.event_id,
            event_kind=event.kind.value,
            recipient_id=user.id,
            resource_type=event.resource_type,
            resource_id=str(event.resource_id),
            subject=listener.subject,
            body=body,
        )
        for user in recipients
    ]
    session.add_all(notifications)
    await session.flush()

    if client is not None and settings.notification_webhook_url and notifications:
        await deliver(client, notifications, {u.id: u for u in recipients})
        await session.flush()

    logger.info(
        "Event %s (%s): %d notification(s)", event.event_id, event.kind.value, len(notifications),
    )
    return notifications
