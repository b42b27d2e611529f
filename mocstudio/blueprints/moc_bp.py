"""
MOC Studio
MOC blueprint: request CRUD, lifecycle actions, comments, history, facilities.

Endpoints summary:
    MOC        /api/v1/moc-requests                       GET, POST
               /api/v1/moc-requests/<id>                  GET, PUT, DELETE
               /api/v1/moc-requests/<id>/submit           POST
               /api/v1/moc-requests/<id>/revise           POST
               /api/v1/moc-requests/<id>/implement        POST
               /api/v1/moc-requests/<id>/transitions      GET
               /api/v1/moc-requests/<id>/history          GET
               /api/v1/moc-requests/<id>/comments         GET, POST

    FACILITY   /api/v1/facilities                         GET, POST

The caller is identified by the X-User-Id header.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from mocstudio.blueprints import current_user_id, paginate_query, register_error_handlers
from mocstudio.models import db
from mocstudio.models.moc import MOC_PRIORITIES, MOC_STATUSES, Facility, MOCRequest
from mocstudio.services import moc_lifecycle
from mocstudio.services.approval_consensus import consensus_summary
from mocstudio.services.permission import check_permission, get_profile
from mocstudio.services.task_service import compute_task_stats
from mocstudio.utils.errors import E, api_error
from mocstudio.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

moc_bp = Blueprint("moc", __name__, url_prefix="/api/v1")
register_error_handlers(moc_bp)


def _detail(moc):
    data = moc.to_dict(include_approvers=True)
    data["approval_summary"] = consensus_summary(a.status for a in moc.approvers)
    data["task_stats"] = compute_task_stats(moc.tasks.all())
    data["available_transitions"] = moc_lifecycle.get_available_transitions(moc)
    return data


def _expected_version(data):
    value = data.get("version")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ═══════════════════════════════════════════════════════════════════════════
#  MOC REQUEST CRUD
# ═══════════════════════════════════════════════════════════════════════════

@moc_bp.route("/moc-requests", methods=["GET"])
def list_requests():
    get_profile(current_user_id())
    q = MOCRequest.query

    status = request.args.get("status")
    if status:
        if status not in MOC_STATUSES:
            return api_error(E.VALIDATION_INVALID, f"Invalid status. Must be one of: {sorted(MOC_STATUSES)}")
        q = q.filter_by(status=status)
    priority = request.args.get("priority")
    if priority:
        if priority not in MOC_PRIORITIES:
            return api_error(E.VALIDATION_INVALID, f"Invalid priority. Must be one of: {sorted(MOC_PRIORITIES)}")
        q = q.filter_by(priority=priority)
    facility_id = request.args.get("facility_id")
    if facility_id:
        q = q.filter_by(facility_id=facility_id)
    change_type = request.args.get("change_type")
    if change_type:
        q = q.filter_by(change_type=change_type)
    if request.args.get("mine") in ("1", "true"):
        q = q.filter_by(created_by=current_user_id())
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(MOCRequest.title.ilike(like), MOCRequest.request_number.ilike(like)))

    items, total = paginate_query(q.order_by(MOCRequest.created_at.desc()))
    return jsonify({"items": [m.to_dict() for m in items], "total": total})


@moc_bp.route("/moc-requests", methods=["POST"])
def create_request():
    data = request.get_json(silent=True) or {}
    moc = moc_lifecycle.create_request(data, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(moc.to_dict()), 201


@moc_bp.route("/moc-requests/<moc_id>", methods=["GET"])
def get_request(moc_id):
    get_profile(current_user_id())
    moc = moc_lifecycle.get_request(moc_id)
    return jsonify(_detail(moc))


@moc_bp.route("/moc-requests/<moc_id>", methods=["PUT"])
def update_request(moc_id):
    data = request.get_json(silent=True) or {}
    moc = moc_lifecycle.update_request(
        moc_id, data, current_user_id(), expected_version=_expected_version(data),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(moc.to_dict())


@moc_bp.route("/moc-requests/<moc_id>", methods=["DELETE"])
def delete_request(moc_id):
    moc_lifecycle.delete_request(moc_id, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": moc_id})


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE ACTIONS
# ═══════════════════════════════════════════════════════════════════════════

@moc_bp.route("/moc-requests/<moc_id>/submit", methods=["POST"])
def submit_request(moc_id):
    data = request.get_json(silent=True) or {}
    moc = moc_lifecycle.submit_request(
        moc_id,
        current_user_id(),
        approvers=data.get("approvers"),
        stakeholders=data.get("notify_stakeholders"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_detail(moc))


@moc_bp.route("/moc-requests/<moc_id>/revise", methods=["POST"])
def revise_request(moc_id):
    data = request.get_json(silent=True) or {}
    moc = moc_lifecycle.revise_request(moc_id, data, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_detail(moc))


@moc_bp.route("/moc-requests/<moc_id>/implement", methods=["POST"])
def implement_request(moc_id):
    result = moc_lifecycle.mark_implemented(moc_id, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"changed": result["changed"], "moc": result["moc"].to_dict()})


@moc_bp.route("/moc-requests/<moc_id>/transitions", methods=["GET"])
def list_transitions(moc_id):
    moc = moc_lifecycle.get_request(moc_id)
    return jsonify({
        "status": moc.status,
        "awaiting_revision": moc.awaiting_revision,
        "transitions": moc_lifecycle.get_available_transitions(moc),
    })


@moc_bp.route("/moc-requests/<moc_id>/history", methods=["GET"])
def list_history(moc_id):
    events = moc_lifecycle.list_history(moc_id)
    return jsonify({"items": [e.to_dict() for e in events], "total": len(events)})


# ═══════════════════════════════════════════════════════════════════════════
#  COMMENTS
# ═══════════════════════════════════════════════════════════════════════════

@moc_bp.route("/moc-requests/<moc_id>/comments", methods=["GET"])
def list_comments(moc_id):
    comments = moc_lifecycle.list_comments(moc_id)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@moc_bp.route("/moc-requests/<moc_id>/comments", methods=["POST"])
def add_comment(moc_id):
    data = request.get_json(silent=True) or {}
    comment = moc_lifecycle.add_comment(
        moc_id, current_user_id(), data.get("content"),
        parent_comment_id=data.get("parent_comment_id"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  FACILITIES
# ═══════════════════════════════════════════════════════════════════════════

@moc_bp.route("/facilities", methods=["GET"])
def list_facilities():
    q = Facility.query
    if request.args.get("active") in ("1", "true"):
        q = q.filter_by(is_active=True)
    items, total = paginate_query(q.order_by(Facility.name))
    return jsonify({"items": [f.to_dict() for f in items], "total": total})


@moc_bp.route("/facilities", methods=["POST"])
def create_facility():
    check_permission(current_user_id(), "facility_manage")
    data = request.get_json(silent=True) or {}

    name = (data.get("name") or "").strip()
    code = (data.get("code") or "").strip().upper()
    if not name or not code:
        return api_error(E.VALIDATION_REQUIRED, "name and code are required")
    if Facility.query.filter_by(code=code).first():
        return api_error(E.CONFLICT_DUPLICATE, f"Facility code {code} already exists")

    facility = Facility(name=name, code=code, location=(data.get("location") or "").strip())
    db.session.add(facility)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(facility.to_dict()), 201
