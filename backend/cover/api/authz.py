"""
Authorization dispatcher.

Runs before every protected handler:

  1. parse the path into (resource, id, sub-resource)
  2. find the Authable class for the resource in the registry
  3. load the row when an id is present
  4. derive the Permission from the HTTP verb
  5. ask the resource whether the actor may do it

On success the loaded resource is published on ``request.state.resources``
under the resource name. A missing row and a refusal produce the same
not-found error so callers cannot probe for existence.

The registry is built once at startup and handed to ``Authorizer``; tests
construct their own Authorizer with whatever registry they need.
"""

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from cover.api.errors import AppError, ErrorCategory, ErrorKey, not_authorized
from cover.auth.authable import Authable
from cover.auth.ownership import OwnershipLookupError
from cover.auth.permissions import Permission, SubResource, permission_from_method
from cover.middleware.metrics import authz_decisions_total
from cover.models import (
    Claim,
    ClaimItem,
    Item,
    LedgerReport,
    Policy,
    PolicyDependent,
    PolicyUser,
    Strike,
    User,
)

logger = logging.getLogger(__name__)


class ResourceType(str, Enum):
    CLAIMS = "claims"
    CLAIM_ITEMS = "claim-items"
    ITEMS = "items"
    LEDGER_REPORTS = "ledger-reports"
    POLICIES = "policies"
    POLICY_DEPENDENTS = "policy-dependents"
    POLICY_USERS = "policy-users"
    STRIKES = "strikes"
    USERS = "users"


def build_registry() -> Mapping[str, type[Authable]]:
    return MappingProxyType({
        ResourceType.CLAIMS.value: Claim,
        ResourceType.CLAIM_ITEMS.value: ClaimItem,
        ResourceType.ITEMS.value: Item,
        ResourceType.LEDGER_REPORTS.value: LedgerReport,
        ResourceType.POLICIES.value: Policy,
        ResourceType.POLICY_DEPENDENTS.value: PolicyDependent,
        ResourceType.POLICY_USERS.value: PolicyUser,
        ResourceType.STRIKES.value: Strike,
        ResourceType.USERS.value: User,
    })


@dataclass(frozen=True)
class ResourcePath:
    resource: str
    resource_id: uuid.UUID | None
    sub_resource: str
    parts: int


def parse_resource_path(path: str) -> ResourcePath:
    """
    Split ``/resource/id/sub`` into its parts.

    A second segment that is not a UUID is ignored when it is the last
    segment (``/users/me``), but is rejected when a sub-resource follows it.
    """
    trimmed = path.strip("/")
    parts = trimmed.split("/") if trimmed else []
    resource = parts[0] if parts else ""

    resource_id = None
    if len(parts) > 1:
        try:
            resource_id = uuid.UUID(parts[1])
        except ValueError:
            if len(parts) > 2:
                raise AppError(
                    f"invalid resource id {parts[1]!r}",
                    ErrorKey.INVALID_RESOURCE_ID,
                    ErrorCategory.USER,
                )

    sub_resource = parts[2] if resource_id is not None and len(parts) > 2 else ""
    return ResourcePath(resource, resource_id, sub_resource, len(parts))


def publish_resource(request: Request, name: str, resource: Authable) -> None:
    resources = getattr(request.state, "resources", None)
    if resources is None:
        resources = {}
        request.state.resources = resources
    resources[name] = resource


class Authorizer:
    """Decides whether the current actor may perform the current request."""

    def __init__(self, registry: Mapping[str, type[Authable]]):
        self._registry = MappingProxyType(dict(registry))

    @property
    def registry(self) -> Mapping[str, type[Authable]]:
        return self._registry

    async def authorize(self, request: Request, session: AsyncSession, actor: User | None) -> Authable:
        if actor is None:
            raise RuntimeError("authorization ran before the actor was resolved")

        path = parse_resource_path(request.url.path)
        model = self._registry.get(path.resource)
        if model is None:
            raise AppError(
                f"no authorization rules for resource {path.resource!r}",
                ErrorKey.UNKNOWN_RESOURCE,
                ErrorCategory.INTERNAL,
            )

        permission = permission_from_method(request.method, path.resource_id is not None)

        if path.resource_id is None:
            resource = model()
        else:
            try:
                resource = await model.find_by_id(session, path.resource_id)
            except NoResultFound:
                self._deny(actor, request, path, permission, "not_found")
                raise not_authorized()
            except SQLAlchemyError as exc:
                raise self._lookup_failure(request, path, exc)

        sub_resource = SubResource.parse(path.sub_resource)
        allowed = False
        if permission is not Permission.DENIED and sub_resource is not None:
            try:
                allowed = await resource.is_actor_allowed_to(session, actor, permission, sub_resource, request)
            except (OwnershipLookupError, SQLAlchemyError) as exc:
                raise self._lookup_failure(request, path, exc)

        if not allowed:
            self._deny(actor, request, path, permission, "denied")
            raise not_authorized()

        authz_decisions_total.labels(
            resource=path.resource, permission=permission.value, outcome="allowed",
        ).inc()
        publish_resource(request, path.resource, resource)
        return resource

    def _deny(self, actor: User, request: Request, path: ResourcePath, permission: Permission, outcome: str) -> None:
        authz_decisions_total.labels(
            resource=path.resource, permission=permission.value, outcome=outcome,
        ).inc()
        logger.warning(
            "Not authorized: actor=%s %s %s resource=%s id=%s sub=%r (%s)",
            actor.id, request.method, request.url.path,
            path.resource, path.resource_id, path.sub_resource, outcome,
        )

    def _lookup_failure(self, request: Request, path: ResourcePath, exc: Exception) -> AppError:
        logger.error(
            "Authorization lookup failed for %s %s (%s %s): %s",
            request.method, request.url.path, path.resource, path.resource_id, exc,
            exc_info=exc,
        )
        error = AppError(
            "failed to load the requested resource",
            ErrorKey.QUERY_FAILURE,
            ErrorCategory.INTERNAL,
        )
        error.__cause__ = exc
        return error
