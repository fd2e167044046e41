from cover.models.user import User
from cover.models.policy import Policy, PolicyType, PolicyUser, PolicyDependent, DependentRelationship, Strike
from cover.models.item import Item, ItemCategory
from cover.models.claim import Claim, ClaimItem, ClaimFile, ClaimFilePurpose, IncidentType, PayoutOption
from cover.models.ledger import LedgerEntry, LedgerEntryType, LedgerReport
from cover.models.audit import AuditLog
from cover.models.notification import Notification

__all__ = [
    "User",
    "Policy", "PolicyType", "PolicyUser", "PolicyDependent", "DependentRelationship", "Strike",
    "Item", "ItemCategory",
    "Claim", "ClaimItem", "ClaimFile", "ClaimFilePurpose", "IncidentType", "PayoutOption",
    "LedgerEntry", "LedgerEntryType", "LedgerReport",
    "AuditLog",
    "Notification",
]
