"""
MOC Studio
Approval blueprint: approver panels and decisions.

Endpoints:
    GET  /api/v1/moc-requests/<id>/approvers    approvers + consensus summary
    POST /api/v1/approvers/<id>/decide          record the caller's decision
    GET  /api/v1/approvals/pending              caller's pending reviews
"""

import logging

from flask import Blueprint, jsonify, request

from mocstudio.blueprints import current_user_id, paginate_query, register_error_handlers
from mocstudio.models.moc import Approver, MOCRequest
from mocstudio.services import moc_lifecycle
from mocstudio.services.approval_consensus import consensus_summary
from mocstudio.services.permission import get_profile
from mocstudio.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


@approval_bp.route("/moc-requests/<moc_id>/approvers", methods=["GET"])
def list_approvers(moc_id):
    moc = moc_lifecycle.get_request(moc_id)
    return jsonify({
        "items": [a.to_dict() for a in moc.approvers],
        "summary": consensus_summary(a.status for a in moc.approvers),
        "review_round": moc.review_round,
        "awaiting_revision": moc.awaiting_revision,
    })


@approval_bp.route("/approvers/<approver_id>/decide", methods=["POST"])
def decide(approver_id):
    """Body: {"decision": "approved" | "rejected" | "changes_requested", "comments": str, "version": int?}"""
    data = request.get_json(silent=True) or {}
    version = data.get("version")
    result = moc_lifecycle.record_decision(
        approver_id,
        current_user_id(),
        data.get("decision"),
        data.get("comments"),
        expected_version=version if isinstance(version, int) else None,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "approver": result["approver"].to_dict(),
        "moc": result["moc"].to_dict(),
        "consensus": result["consensus"],
        "transition": result["transition"],
    })


@approval_bp.route("/approvals/pending", methods=["GET"])
def pending_approvals():
    """Requests where the caller still owes a decision."""
    profile = get_profile(current_user_id())
    q = (
        Approver.query
        .join(MOCRequest, Approver.moc_request_id == MOCRequest.id)
        .filter(
            Approver.user_id == profile.id,
            Approver.status == "pending",
            MOCRequest.status.in_(["submitted", "under_review"]),
            MOCRequest.awaiting_revision.is_(False),
        )
        .order_by(MOCRequest.review_deadline.is_(None), MOCRequest.review_deadline.asc())
    )
    items, total = paginate_query(q)
    return jsonify({
        "items": [
            {"approver": a.to_dict(), "moc": a.moc_request.to_dict()}
            for a in items
        ],
        "total": total,
    })
