"""
MOC Studio
Task blueprint: follow-up action items on MOC requests.

Endpoints:
    GET  /api/v1/moc-requests/<id>/tasks     list + stats
    POST /api/v1/moc-requests/<id>/tasks     create
    PUT  /api/v1/tasks/<id>                  update
    DELETE /api/v1/tasks/<id>                delete
"""

from flask import Blueprint, jsonify, request

from mocstudio.blueprints import current_user_id, register_error_handlers
from mocstudio.services import task_service
from mocstudio.utils.helpers import db_commit_or_error

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")
register_error_handlers(task_bp)


@task_bp.route("/moc-requests/<moc_id>/tasks", methods=["GET"])
def list_tasks(moc_id):
    tasks = task_service.list_tasks(moc_id)
    return jsonify({
        "items": [t.to_dict() for t in tasks],
        "total": len(tasks),
        "stats": task_service.compute_task_stats(tasks),
    })


@task_bp.route("/moc-requests/<moc_id>/tasks", methods=["POST"])
def create_task(moc_id):
    data = request.get_json(silent=True) or {}
    task = task_service.create_task(moc_id, data, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(task.to_dict()), 201


@task_bp.route("/tasks/<task_id>", methods=["PUT"])
def update_task(task_id):
    data = request.get_json(silent=True) or {}
    task = task_service.update_task(task_id, data, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(task.to_dict())


@task_bp.route("/tasks/<task_id>", methods=["DELETE"])
def delete_task(task_id):
    task_service.delete_task(task_id, current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": task_id})
