from cover.auth.permissions import Permission, SubResource, permission_from_method
from cover.auth.roles import AppRole, AdminCapability, ROLE_CAPABILITIES, capabilities_for

__all__ = [
    "Permission", "SubResource", "permission_from_method",
    "AppRole", "AdminCapability", "ROLE_CAPABILITIES", "capabilities_for",
]
