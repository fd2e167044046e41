"""
Permission vocabulary.

A request is reduced to a coarse Permission, derived from the HTTP verb,
and an optional SubResource naming the business action layered on top of
it (``POST /items/{id}/submit`` is Create + submit). Both enums are closed:
anything that does not map to a member is rejected rather than coerced.
"""

from enum import Enum


class Permission(str, Enum):
    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DENIED = "denied"


class SubResource(str, Enum):
    NONE = ""

    # Lifecycle actions
    SUBMIT = "submit"
    REVISION = "revision"
    APPROVE = "approve"
    PREAPPROVE = "preapprove"
    RECEIPT = "receipt"
    DENY = "deny"

    # Nested collections
    ITEMS = "items"
    CLAIMS = "claims"
    FILES = "files"
    MEMBERS = "members"
    DEPENDENTS = "dependents"
    STRIKES = "strikes"
    LEDGER = "ledger"

    @classmethod
    def parse(cls, value: str | None) -> "SubResource | None":
        """Return the member for ``value``, or None when it is not one."""
        try:
            return cls(value or "")
        except ValueError:
            return None


_METHOD_PERMISSIONS: dict[str, Permission] = {
    "GET": Permission.LIST,
    "POST": Permission.CREATE,
    "PUT": Permission.UPDATE,
    "PATCH": Permission.UPDATE,
    "DELETE": Permission.DELETE,
}


def permission_from_method(method: str, has_id: bool = False) -> Permission:
    """Map an HTTP verb to a Permission. Unknown verbs map to DENIED."""
    permission = _METHOD_PERMISSIONS.get(method.upper(), Permission.DENIED)
    if permission is Permission.LIST and has_id:
        return Permission.VIEW
    return permission
