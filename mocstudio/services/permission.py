"""
MOC Studio
Role-based access checks over Profile.role.

Usage:
    from mocstudio.services.permission import check_permission, get_profile

    # Raises PermissionDenied if not allowed
    check_permission(user_id, "moc_implement")

    # Boolean check
    if has_permission(user_id, "facility_manage"):
        ...
"""

from mocstudio.core.exceptions import NotFoundError, PermissionDenied
from mocstudio.models import db
from mocstudio.models.auth import APP_ROLES, Profile

_ALL_ROLES = frozenset(APP_ROLES)

# action → roles allowed to perform it
PERMISSION_MATRIX = {
    "moc_create": _ALL_ROLES,
    "moc_comment": _ALL_ROLES,
    "task_manage": _ALL_ROLES,
    "moc_implement": frozenset({"administrator"}),
    "facility_manage": frozenset({"administrator", "facility_manager"}),
    "job_run": frozenset({"administrator"}),
}


def get_profile(user_id: str | None) -> Profile:
    """
    Resolve an active profile by id.

    Raises:
        PermissionDenied: no caller identity supplied or the profile is inactive.
        NotFoundError: unknown profile id.
    """
    if not user_id:
        raise PermissionDenied(None, "authenticate", "missing user identity")
    profile = db.session.get(Profile, user_id)
    if not profile:
        raise NotFoundError(resource="Profile", resource_id=user_id)
    if not profile.is_active:
        raise PermissionDenied(user_id, "authenticate", "profile is inactive")
    return profile


def has_permission(user_id: str, action: str) -> bool:
    profile = db.session.get(Profile, user_id) if user_id else None
    if not profile or not profile.is_active:
        return False
    return profile.role in PERMISSION_MATRIX.get(action, frozenset())


def check_permission(user_id: str, action: str) -> Profile:
    """Return the caller's profile, or raise PermissionDenied."""
    profile = get_profile(user_id)
    if profile.role not in PERMISSION_MATRIX.get(action, frozenset()):
        raise PermissionDenied(user_id, action, f"role '{profile.role}' not allowed")
    return profile


def require_role(user_id: str, *roles: str) -> Profile:
    """Raise PermissionDenied unless the caller holds one of ``roles``."""
    profile = get_profile(user_id)
    if profile.role not in roles:
        raise PermissionDenied(user_id, "/".join(roles), f"role '{profile.role}' not allowed")
    return profile
