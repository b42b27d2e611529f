"""
MOC Studio
Blueprint registry and shared helpers.
"""

import logging

from flask import request
from sqlalchemy.exc import IntegrityError

from mocstudio.core.exceptions import (
    ConcurrentModification,
    InvalidTransition,
    MissingComment,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from mocstudio.models import db
from mocstudio.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit : max items (default 200, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def current_user_id():
    """Caller identity from the ``X-User-Id`` header (None when absent)."""
    return request.headers.get("X-User-Id") or None


def register_error_handlers(bp):
    """Map engine exceptions to JSON error responses on ``bp``.

    Every handler rolls back the session so a failed action leaves no
    partial transition or history behind.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(MissingComment)
    def _handle_missing_comment(error: MissingComment):
        db.session.rollback()
        return api_error(E.COMMENT_REQUIRED, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(InvalidTransition)
    def _handle_invalid_transition(error: InvalidTransition):
        db.session.rollback()
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"current": error.current, "attempted": error.attempted},
        )

    @bp.errorhandler(ConcurrentModification)
    def _handle_concurrent(error: ConcurrentModification):
        db.session.rollback()
        logger.warning("Concurrent modification: %s", error)
        return api_error(E.CONFLICT_VERSION, str(error))

    @bp.errorhandler(PermissionDenied)
    def _handle_forbidden(error: PermissionDenied):
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(IntegrityError)
    def _handle_integrity(error: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error during flush: %s", error.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")

    return bp
