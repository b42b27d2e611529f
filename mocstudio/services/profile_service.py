"""
Profile Service: registration of the users the engine authorizes against.
"""

from email_validator import EmailNotValidError, validate_email

from mocstudio.core.exceptions import ValidationError
from mocstudio.models import db
from mocstudio.models.auth import APP_ROLES, Profile


def create_profile(
    email: str,
    full_name: str = None,
    role: str = "process_engineer",
    department: str = None,
) -> Profile:
    """Create a new active profile. Caller commits."""
    try:
        valid = validate_email(email or "", check_deliverability=False)
        email = valid.normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": str(e)})

    if role not in APP_ROLES:
        raise ValidationError(
            f"Invalid role. Must be one of: {sorted(APP_ROLES)}",
            details={"role": role},
        )

    existing = Profile.query.filter(db.func.lower(Profile.email) == email.lower()).first()
    if existing:
        raise ValidationError(f"Profile with email {email} already exists", details={"email": email})

    profile = Profile(email=email, full_name=full_name, role=role, department=department)
    db.session.add(profile)
    db.session.flush()
    return profile


def deactivate_profile(profile_id: str) -> Profile | None:
    profile = db.session.get(Profile, profile_id)
    if profile is None:
        return None
    profile.is_active = False
    db.session.flush()
    return profile
