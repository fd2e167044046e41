"""Tests for request transactions: optimistic locking and commit-then-publish."""

import json

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from cover.api import deps
from cover.api.deps import get_db
from cover.lifecycle.items import ItemCoverageStatus
from cover.main import stale_data_handler
from cover.models import AuditLog, Item
from cover.services.events import DomainEvent, EventKind, emit, pending_events

from tests.conftest import make_item
from tests.test_authz import make_request


# ── Concurrent writers ───────────────────────────────────────────────────────

class TestOptimisticLocking:
    async def test_second_reviewer_gets_conflict(self, db_session, session_maker, policy, category):
        item = await make_item(db_session, policy, category, ItemCoverageStatus.PENDING)
        await db_session.commit()

        async with session_maker() as first, session_maker() as second:
            mine = await first.get(Item, item.id)
            theirs = await second.get(Item, item.id)

            mine.coverage_status = ItemCoverageStatus.APPROVED
            await first.commit()

            theirs.coverage_status = ItemCoverageStatus.DENIED
            with pytest.raises(StaleDataError) as excinfo:
                await second.flush()
            await second.rollback()

        resp = await stale_data_handler(make_request("POST", f"/items/{item.id}/deny"), excinfo.value)
        assert resp.status_code == 409
        body = json.loads(resp.body)
        assert body["key"] == "ErrorConflict"
        assert body["status"] == 409

        async with session_maker() as check:
            stored = await check.get(Item, item.id)
            assert stored.coverage_status == ItemCoverageStatus.APPROVED
            assert stored.version == 2


# ── get_db ───────────────────────────────────────────────────────────────────

def _event(item_id) -> DomainEvent:
    return DomainEvent(kind=EventKind.ITEM_SUBMITTED, resource_type="items", resource_id=item_id)


@pytest.fixture
def published(monkeypatch, session_maker):
    """Route get_db to the test engine and record what it hands to publish."""
    calls: list = []

    async def _publish(events):
        calls.append(list(events))
        return len(events)

    monkeypatch.setattr(deps, "async_session", session_maker)
    monkeypatch.setattr(deps, "publish", _publish)
    return calls


class TestGetDb:
    async def test_events_published_after_commit(self, published, session_maker, db_session, policy, category):
        item = await make_item(db_session, policy, category)
        await db_session.commit()

        gen = get_db()
        session = await gen.__anext__()
        event = await emit(session, _event(item.id))
        assert published == []

        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

        assert [[e.event_id for e in batch] for batch in published] == [[event.event_id]]
        assert pending_events(session) == []

        async with session_maker() as check:
            rows = (await check.execute(
                select(AuditLog).where(AuditLog.event_type == EventKind.ITEM_SUBMITTED.value)
            )).scalars().all()
        assert len(rows) == 1

    async def test_events_dropped_on_rollback(self, published, session_maker, db_session, policy, category):
        item = await make_item(db_session, policy, category)
        await db_session.commit()

        gen = get_db()
        session = await gen.__anext__()
        await emit(session, _event(item.id))

        with pytest.raises(RuntimeError):
            await gen.athrow(RuntimeError("handler failed"))

        assert published == []
        assert pending_events(session) == []

        async with session_maker() as check:
            rows = (await check.execute(
                select(AuditLog).where(AuditLog.event_type == EventKind.ITEM_SUBMITTED.value)
            )).scalars().all()
        assert rows == []
