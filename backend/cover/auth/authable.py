"""
Authable: the capability every protected resource type implements.

The authorization dispatcher knows nothing about concrete models. It looks
the resource up through ``find_by_id`` and asks ``is_actor_allowed_to``;
each model answers for its own lifecycle and ownership rules.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from cover.auth.permissions import Permission, SubResource

if TYPE_CHECKING:
    from cover.models.user import User

logger = logging.getLogger(__name__)


class Authable:
    """Mixin for mapped classes that can be the target of an authorization decision."""

    id: uuid.UUID | None

    @classmethod
    async def find_by_id(cls, session: AsyncSession, resource_id: uuid.UUID):
        """Load by primary key. Raises NoResultFound when the row does not exist."""
        obj = await session.get(cls, resource_id)
        if obj is None:
            raise NoResultFound(f"{cls.__name__} {resource_id} not found")
        return obj

    def get_id(self) -> uuid.UUID:
        return self.id or uuid.UUID(int=0)

    async def is_actor_allowed_to(
        self,
        session: AsyncSession,
        actor: User,
        permission: Permission,
        sub_resource: SubResource,
        request: Request | None = None,
    ) -> bool:
        """Models override this with their own rules; anything else is denied."""
        logger.warning("%s has no authorization rules; denying", type(self).__name__)
        return False
