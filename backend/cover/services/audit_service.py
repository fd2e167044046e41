"""
Audit Service

Immutable, hash-chained audit trail. Every status change, field edit and
emitted lifecycle event writes an entry in the same transaction as the
change itself.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cover.models import AuditLog


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _calculate_hash(self, content: dict, previous_hash: str | None) -> str:
        """SHA-256 hash of entry contents + previous hash."""
        payload = {
            "content": content,
            "previous_hash": previous_hash or "",
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _get_latest_hash(self) -> str | None:
        result = await self.session.execute(
            select(AuditLog.current_hash)
            .order_by(AuditLog.id.desc())
            .limit(1)
        )
        return result.scalar()

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        """
        Write an immutable audit entry.

        Args:
            event_type: e.g. "status_change", "field_change", "api:item:approved"
            actor: e.g. "system", "jane@example.org"
            action: Human-readable description
            resource_type: "items", "claims", "claim-items", ...
            resource_id: The ID of the affected resource
            details: Full event details as dict
        """
        previous_hash = await self._get_latest_hash()

        # Stored as plain JSON so the chain re-hashes identically on verify.
        entry_details = json.loads(json.dumps(details or {}, default=str))
        content_for_hash = {
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": entry_details,
        }
        current_hash = self._calculate_hash(content_for_hash, previous_hash)

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=entry_details,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_status_change(
        self, actor: str, resource_type: str, resource_id, old_status, new_status, note: str = "",
    ) -> AuditLog:
        old_value = getattr(old_status, "value", old_status)
        new_value = getattr(new_status, "value", new_status)
        return await self.log_event(
            event_type="status_change",
            actor=actor,
            action=note or f"{old_value} -> {new_value}",
            resource_type=resource_type,
            resource_id=str(resource_id),
            details={"old_status": old_value, "new_status": new_value},
        )

    async def log_field_changes(
        self, actor: str, resource_type: str, resource_id, changes: dict[str, tuple],
    ) -> AuditLog | None:
        """Record field history. ``changes`` maps field -> (old, new)."""
        if not changes:
            return None
        return await self.log_event(
            event_type="field_change",
            actor=actor,
            action=f"Updated {', '.join(sorted(changes))}",
            resource_type=resource_type,
            resource_id=str(resource_id),
            details={
                field: {"old": getattr(old, "value", old), "new": getattr(new, "value", new)}
                for field, (old, new) in changes.items()
            },
        )

    async def verify_chain(self, limit: int = 1000) -> dict:
        """Walk the chain oldest-first and report the first broken link, if any."""
        result = await self.session.execute(
            select(AuditLog).order_by(AuditLog.id.asc()).limit(limit)
        )
        previous_hash = None
        checked = 0
        for entry in result.scalars():
            expected = self._calculate_hash(
                {
                    "event_type": entry.event_type,
                    "actor": entry.actor,
                    "action": entry.action,
                    "resource_type": entry.resource_type,
                    "resource_id": entry.resource_id,
                    "details": entry.details,
                },
                previous_hash,
            )
            if entry.previous_hash != previous_hash or entry.current_hash != expected:
                return {"valid": False, "checked": checked, "broken_at": entry.event_id}
            previous_hash = entry.current_hash
            checked += 1
        return {"valid": True, "checked": checked, "broken_at": None}
