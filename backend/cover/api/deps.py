"""
API Dependencies: DB session, actor resolution, authorization.

Every protected router declares ``authorize`` as a router dependency, and
handlers that need the target row take it from ``authorized(name)``.
FastAPI caches dependencies per request, so the authorization decision
and its single lookup happen once.
"""

import logging
import uuid
from typing import AsyncGenerator

from fastapi import Depends, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from cover.api.authz import Authorizer
from cover.api.errors import AppError, ErrorCategory, ErrorKey
from cover.auth.authable import Authable
from cover.auth.jwt import decode_access_token
from cover.config import settings
from cover.database import async_session
from cover.models import User
from cover.services.events import discard_pending, publish, take_pending

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error.

    Lifecycle events buffered during the request are queued only once the
    commit has gone through.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending(session)
            raise
        await publish(take_pending(session))


# ── Actor (JWT authentication) ───────────────────────────────────────────────

def _not_authenticated(request: Request, message: str) -> AppError:
    redirect_url = None
    if "text/html" in request.headers.get("Accept", ""):
        redirect_url = f"{settings.ui_url}/login"
    return AppError(
        message,
        ErrorKey.NOT_AUTHENTICATED,
        ErrorCategory.UNAUTHORIZED,
        redirect_url=redirect_url,
    )


async def get_current_actor(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """Resolve the bearer token to an active User and store it on the request."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise _not_authenticated(request, "Missing or invalid Authorization header")

    try:
        claims = decode_access_token(auth_header[7:])
        user_id = uuid.UUID(str(claims.get("sub")))
    except (JWTError, ValueError) as e:
        logger.debug("JWT rejected: %s", e)
        raise _not_authenticated(request, "Invalid or expired token")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _not_authenticated(request, "Unknown or inactive user")

    request.state.actor = user
    return user


# ── Authorization ────────────────────────────────────────────────────────────

def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


async def authorize(
    request: Request,
    actor: User = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
) -> Authable:
    return await authorizer.authorize(request, db, actor)


def resource_from_context(request: Request, name: str) -> Authable:
    resources = getattr(request.state, "resources", None) or {}
    resource = resources.get(name)
    if resource is None:
        raise AppError(
            f"no authorized {name} resource on the request",
            ErrorKey.RESOURCE_FROM_CONTEXT,
            ErrorCategory.INTERNAL,
        )
    return resource


def authorized(name: str):
    """Dependency factory: the row the dispatcher loaded for ``name``."""

    async def _resource(request: Request, _: Authable = Depends(authorize)) -> Authable:
        return resource_from_context(request, name)

    return _resource
