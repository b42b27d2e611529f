"""
MOC request API tests.

Tests cover:
  - CRUD + filters for /api/v1/moc-requests
  - Submit → decide → implement over HTTP
  - Error mapping: 403 / 404 / 409 / 422 with machine-readable codes
  - Comments, history, transitions, facilities, health
"""

from unittest.mock import patch

import pytest


def _approver_id(client, moc_id, user, auth):
    res = client.get(f"/api/v1/moc-requests/{moc_id}/approvers", headers=auth(user))
    return next(a["id"] for a in res.get_json()["items"] if a["user_id"] == user.id)


@pytest.fixture()
def created(client, owner, auth, payload):
    res = client.post("/api/v1/moc-requests", json=payload(), headers=auth(owner))
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def in_review(client, created, owner, approvers, auth):
    res = client.post(
        f"/api/v1/moc-requests/{created['id']}/submit",
        json={"approvers": [a.id for a in approvers[:2]]},
        headers=auth(owner),
    )
    assert res.status_code == 200
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════

class TestCRUD:
    def test_create(self, created):
        assert created["status"] == "draft"
        assert created["risk_score"] == 12
        assert created["risk_tier"] == "high"
        assert created["request_number"].startswith("MOC-")
        assert created["facility"]["code"] == "NR1"

    def test_request_number_collision_is_conflict(self, client, created, owner, auth, payload):
        with patch("mocstudio.services.moc_lifecycle.next_request_number",
                   return_value=created["request_number"]):
            res = client.post("/api/v1/moc-requests", json=payload(title="Second"), headers=auth(owner))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

        res = client.get("/api/v1/moc-requests", headers=auth(owner))
        assert res.get_json()["total"] == 1

    def test_create_without_identity(self, client, payload):
        res = client.post("/api/v1/moc-requests", json=payload())
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_create_validation(self, client, owner, auth, payload):
        res = client.post("/api/v1/moc-requests", json=payload(risk_severity=9), headers=auth(owner))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "risk_severity" in body["details"]

    def test_get_detail(self, client, created, owner, auth):
        res = client.get(f"/api/v1/moc-requests/{created['id']}", headers=auth(owner))
        assert res.status_code == 200
        body = res.get_json()
        assert body["approval_summary"]["consensus"] == "pending"
        assert body["task_stats"]["total"] == 0
        assert body["available_transitions"] == [{"action": "submit", "to": "submitted"}]

    def test_get_missing(self, client, owner, auth):
        res = client.get("/api/v1/moc-requests/does-not-exist", headers=auth(owner))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_filters(self, client, created, owner, auth, payload):
        client.post("/api/v1/moc-requests", json=payload(title="Low one", priority="low"),
                    headers=auth(owner))
        res = client.get("/api/v1/moc-requests?priority=low", headers=auth(owner))
        assert [m["title"] for m in res.get_json()["items"]] == ["Low one"]

        res = client.get("/api/v1/moc-requests?q=P-101", headers=auth(owner))
        assert res.get_json()["total"] == 1

        res = client.get("/api/v1/moc-requests?status=bogus", headers=auth(owner))
        assert res.status_code == 422

    def test_update_with_version(self, client, created, owner, auth):
        res = client.put(
            f"/api/v1/moc-requests/{created['id']}",
            json={"title": "Edited", "version": created["version"]},
            headers=auth(owner),
        )
        assert res.status_code == 200
        assert res.get_json()["title"] == "Edited"

        res = client.put(
            f"/api/v1/moc-requests/{created['id']}",
            json={"title": "Stale", "version": created["version"]},
            headers=auth(owner),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_VERSION"

    def test_update_by_other_user(self, client, created, approvers, auth):
        res = client.put(f"/api/v1/moc-requests/{created['id']}", json={"title": "x"},
                         headers=auth(approvers[0]))
        assert res.status_code == 403

    def test_delete(self, client, created, owner, auth):
        res = client.delete(f"/api/v1/moc-requests/{created['id']}", headers=auth(owner))
        assert res.status_code == 200
        res = client.get(f"/api/v1/moc-requests/{created['id']}", headers=auth(owner))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# LIFECYCLE OVER HTTP
# ═════════════════════════════════════════════════════════════════════════

class TestLifecycle:
    def test_submit(self, in_review):
        assert in_review["status"] == "submitted"
        assert in_review["approval_summary"]["total"] == 2
        assert in_review["approval_summary"]["pending"] == 2

    def test_submit_incomplete(self, client, owner, approvers, auth, payload):
        res = client.post("/api/v1/moc-requests", json=payload(justification=""), headers=auth(owner))
        moc_id = res.get_json()["id"]
        res = client.post(f"/api/v1/moc-requests/{moc_id}/submit",
                          json={"approvers": [approvers[0].id]}, headers=auth(owner))
        assert res.status_code == 422
        assert "justification" in res.get_json()["details"]
        res = client.get(f"/api/v1/moc-requests/{moc_id}", headers=auth(owner))
        assert res.get_json()["status"] == "draft"

    def test_full_approval_and_implementation(self, client, in_review, owner, approvers, admin, auth):
        moc_id = in_review["id"]
        for reviewer in approvers[:2]:
            res = client.post(
                f"/api/v1/approvers/{_approver_id(client, moc_id, reviewer, auth)}/decide",
                json={"decision": "approved"},
                headers=auth(reviewer),
            )
            assert res.status_code == 200
        body = res.get_json()
        assert body["consensus"] == "approved"
        assert body["transition"] == "approve"
        assert body["moc"]["status"] == "approved"
        assert body["moc"]["completed_at"] is not None

        res = client.post(f"/api/v1/moc-requests/{moc_id}/implement", headers=auth(owner))
        assert res.status_code == 403

        res = client.post(f"/api/v1/moc-requests/{moc_id}/implement", headers=auth(admin))
        assert res.status_code == 200
        assert res.get_json()["changed"] is True
        assert res.get_json()["moc"]["status"] == "implemented"

        res = client.post(f"/api/v1/moc-requests/{moc_id}/implement", headers=auth(admin))
        assert res.status_code == 200
        assert res.get_json()["changed"] is False

    def test_rejection_needs_comment(self, client, in_review, approvers, auth):
        approver_id = _approver_id(client, in_review["id"], approvers[0], auth)
        res = client.post(f"/api/v1/approvers/{approver_id}/decide",
                          json={"decision": "rejected"}, headers=auth(approvers[0]))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_COMMENT_REQUIRED"

        res = client.post(f"/api/v1/approvers/{approver_id}/decide",
                          json={"decision": "rejected", "comments": "No isolation plan"},
                          headers=auth(approvers[0]))
        assert res.status_code == 200
        assert res.get_json()["moc"]["status"] == "rejected"

    def test_decision_after_rejection_conflicts(self, client, in_review, approvers, auth):
        first = _approver_id(client, in_review["id"], approvers[0], auth)
        second = _approver_id(client, in_review["id"], approvers[1], auth)
        client.post(f"/api/v1/approvers/{first}/decide",
                    json={"decision": "rejected", "comments": "no"}, headers=auth(approvers[0]))
        res = client.post(f"/api/v1/approvers/{second}/decide",
                          json={"decision": "approved"}, headers=auth(approvers[1]))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current"] == "rejected"

    def test_changes_requested_then_revise(self, client, in_review, owner, approvers, auth):
        moc_id = in_review["id"]
        approver_id = _approver_id(client, moc_id, approvers[0], auth)
        res = client.post(f"/api/v1/approvers/{approver_id}/decide",
                          json={"decision": "changes_requested", "comments": "Add HAZOP ref"},
                          headers=auth(approvers[0]))
        assert res.get_json()["moc"]["awaiting_revision"] is True

        res = client.get("/api/v1/approvals/pending", headers=auth(approvers[1]))
        assert res.get_json()["total"] == 0

        res = client.post(f"/api/v1/moc-requests/{moc_id}/revise",
                          json={"requires_hazop": True}, headers=auth(owner))
        assert res.status_code == 200
        body = res.get_json()
        assert body["review_round"] == 2
        assert body["requires_hazop"] is True

        res = client.get("/api/v1/approvals/pending", headers=auth(approvers[1]))
        assert res.get_json()["total"] == 1

    def test_pending_approvals(self, client, in_review, approvers, auth):
        res = client.get("/api/v1/approvals/pending", headers=auth(approvers[0]))
        items = res.get_json()["items"]
        assert len(items) == 1
        assert items[0]["moc"]["id"] == in_review["id"]

    def test_transitions_endpoint(self, client, in_review, owner, auth):
        res = client.get(f"/api/v1/moc-requests/{in_review['id']}/transitions", headers=auth(owner))
        assert res.get_json()["transitions"] == [{"action": "start_review", "to": "under_review"}]

    def test_history_endpoint(self, client, in_review, owner, auth):
        res = client.get(f"/api/v1/moc-requests/{in_review['id']}/history", headers=auth(owner))
        actions = [e["action"] for e in res.get_json()["items"]]
        assert actions[0] == "created"
        assert "submitted" in actions


# ═════════════════════════════════════════════════════════════════════════
# COMMENTS / FACILITIES / HEALTH
# ═════════════════════════════════════════════════════════════════════════

class TestComments:
    def test_thread(self, client, in_review, owner, approvers, auth):
        res = client.post(f"/api/v1/moc-requests/{in_review['id']}/comments",
                          json={"content": "Is the bypass tagged?"}, headers=auth(approvers[0]))
        assert res.status_code == 201
        parent = res.get_json()

        res = client.post(f"/api/v1/moc-requests/{in_review['id']}/comments",
                          json={"content": "Yes, LOTO 44", "parent_comment_id": parent["id"]},
                          headers=auth(owner))
        assert res.status_code == 201

        res = client.get(f"/api/v1/moc-requests/{in_review['id']}/comments", headers=auth(owner))
        items = res.get_json()["items"]
        assert len(items) == 2
        assert items[1]["parent_comment_id"] == parent["id"]


class TestFacilities:
    def test_create_requires_manager(self, client, owner, auth):
        res = client.post("/api/v1/facilities", json={"name": "South", "code": "s1"}, headers=auth(owner))
        assert res.status_code == 403

    def test_create_and_duplicate(self, client, admin, auth):
        res = client.post("/api/v1/facilities", json={"name": "South", "code": "s1"}, headers=auth(admin))
        assert res.status_code == 201
        assert res.get_json()["code"] == "S1"

        res = client.post("/api/v1/facilities", json={"name": "South 2", "code": "S1"}, headers=auth(admin))
        assert res.status_code == 409

    def test_list(self, client, facility):
        res = client.get("/api/v1/facilities")
        assert res.get_json()["total"] == 1


class TestHealth:
    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
