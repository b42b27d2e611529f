"""
MOC Studio
Notification & Scheduling Blueprint.

Provides:
    - In-app notification inbox for the calling user
    - Manual trigger for the registered scheduled jobs

Endpoints:
    GET   /api/v1/notifications                    ?unread_only=1&category=
    GET   /api/v1/notifications/unread-count
    PATCH /api/v1/notifications/<id>/read
    POST  /api/v1/notifications/mark-all-read
    GET   /api/v1/scheduler/jobs
    POST  /api/v1/scheduler/jobs/<name>/run
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from mocstudio.blueprints import current_user_id, register_error_handlers
from mocstudio.models.notification import NOTIFICATION_CATEGORIES
from mocstudio.services.notification import NotificationService
from mocstudio.services.permission import check_permission, get_profile
from mocstudio.services.scheduler_service import SchedulerService, get_registered_jobs
from mocstudio.utils.errors import E, api_error
from mocstudio.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    profile = get_profile(current_user_id())

    category = request.args.get("category")
    if category and category not in NOTIFICATION_CATEGORIES:
        return api_error(
            E.VALIDATION_INVALID,
            f"Invalid category. Must be one of: {sorted(NOTIFICATION_CATEGORIES)}",
        )
    try:
        limit = min(int(request.args.get("limit", 50)), 200)
        offset = max(int(request.args.get("offset", 0)), 0)
    except (TypeError, ValueError):
        limit, offset = 50, 0

    items, total = NotificationService.list_for_recipient(
        profile.id,
        unread_only=request.args.get("unread_only") in ("1", "true"),
        category=category,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(profile.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    profile = get_profile(current_user_id())
    return jsonify({"unread_count": NotificationService.unread_count(profile.id)})


@notification_bp.route("/notifications/<notification_id>/read", methods=["PATCH"])
def mark_read(notification_id):
    profile = get_profile(current_user_id())
    notif = NotificationService.mark_read(notification_id, profile.id)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    profile = get_profile(current_user_id())
    count = NotificationService.mark_all_read(profile.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"marked_read": count})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    check_permission(current_user_id(), "job_run")
    return jsonify({"items": SchedulerService.list_jobs()})


@notification_bp.route("/scheduler/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    check_permission(current_user_id(), "job_run")
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status
