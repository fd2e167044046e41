"""
Application errors.

Every expected failure is raised as an AppError carrying a machine-readable
key and a category. The category decides the HTTP status; the key is what
clients switch on. Handlers never build error responses themselves, the
exception handler in main.py renders them.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    DATABASE = "database"
    USER = "user"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


CATEGORY_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.DATABASE: 500,
    ErrorCategory.USER: 400,
    ErrorCategory.FORBIDDEN: 403,
    ErrorCategory.UNAUTHORIZED: 401,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.INTERNAL: 500,
}


class ErrorKey(str, Enum):
    # Authentication / authorization
    NOT_AUTHENTICATED = "ErrorNotAuthenticated"
    NOT_AUTHORIZED = "ErrorNotAuthorized"
    INVALID_RESOURCE_ID = "ErrorInvalidResourceID"
    UNKNOWN_RESOURCE = "ErrorUnknownResource"
    RESOURCE_FROM_CONTEXT = "ErrorResourceFromContext"

    # Generic
    QUERY_FAILURE = "ErrorQueryFailure"
    VALIDATION = "ErrorValidation"
    INVALID_TRANSITION = "ErrorInvalidTransition"
    CONFLICT = "ErrorConflict"
    RATE_LIMITED = "ErrorRateLimited"

    # Items
    ITEM_STATUS = "ErrorItemStatus"
    ITEM_CATEGORY_NOT_FOUND = "ErrorItemCategoryNotFound"
    ITEM_HAS_ACTIVE_CLAIM = "ErrorItemHasActiveClaim"

    # Claims
    CLAIM_STATUS = "ErrorClaimStatus"
    CLAIM_MISSING_CLAIM_ITEM = "ErrorClaimMissingClaimItem"
    CLAIM_ITEM_STATUS = "ErrorClaimItemStatus"
    CLAIM_ITEM_MISSING_PAYOUT_OPTION = "ErrorClaimItemMissingPayoutOption"
    CLAIM_ITEM_MISSING_ESTIMATE = "ErrorClaimItemMissingEstimate"
    CLAIM_ITEM_INVALID_PAYOUT_OPTION = "ErrorClaimItemInvalidPayoutOption"
    CLAIM_ITEM_NOT_COVERED = "ErrorClaimItemNotCovered"
    MISSING_RECEIPT = "ErrorMissingReceipt"


class AppError(Exception):
    """An expected failure with a client-facing key."""

    def __init__(
        self,
        message: str,
        key: ErrorKey,
        category: ErrorCategory = ErrorCategory.USER,
        *,
        redirect_url: str | None = None,
        extras: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.key = key
        self.category = category
        self.redirect_url = redirect_url
        self.extras = extras or {}

    @property
    def http_status(self) -> int:
        if self.redirect_url:
            return 303
        return CATEGORY_STATUS[self.category]

    def to_dict(self, debug: bool = False) -> dict:
        body = {
            "key": self.key.value,
            "status": self.http_status,
            "message": self.message,
        }
        if self.extras:
            body["extras"] = self.extras
        if debug and self.__cause__ is not None:
            body["debug"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return body


class InvalidTransition(AppError):
    """A status change that is not an edge of the entity's transition table."""

    def __init__(self, entity: str, old, new):
        old_value = getattr(old, "value", old)
        new_value = getattr(new, "value", new)
        super().__init__(
            f"invalid {entity} status transition from {old_value} to {new_value}",
            ErrorKey.INVALID_TRANSITION,
            ErrorCategory.USER,
            extras={"from": old_value, "to": new_value},
        )
        self.entity = entity
        self.old = old
        self.new = new


def not_authorized() -> AppError:
    """The single answer for both 'does not exist' and 'not yours'."""
    return AppError(
        "resource not found",
        ErrorKey.NOT_AUTHORIZED,
        ErrorCategory.NOT_FOUND,
    )
