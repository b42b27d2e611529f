"""
MOC Studio
Flask Application Factory.

Usage:
    from mocstudio import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from mocstudio.config import config
from mocstudio.models import db
from mocstudio.middleware.logging_config import configure_logging, init_request_logging
from mocstudio.middleware.rate_limiter import init_rate_limits

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_logging(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from mocstudio.models import auth as _auth_models                  # noqa: F401
    from mocstudio.models import moc as _moc_models                    # noqa: F401
    from mocstudio.models import task as _task_models                  # noqa: F401
    from mocstudio.models import history as _history_models            # noqa: F401
    from mocstudio.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from mocstudio.blueprints.moc_bp import moc_bp
    from mocstudio.blueprints.approval_bp import approval_bp
    from mocstudio.blueprints.task_bp import task_bp
    from mocstudio.blueprints.reporting_bp import reporting_bp
    from mocstudio.blueprints.notification_bp import notification_bp

    app.register_blueprint(moc_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(reporting_bp)
    app.register_blueprint(notification_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-profile")
    @click.argument("email")
    @click.option("--name", "full_name", default=None, help="Full name")
    @click.option("--role", default="process_engineer", help="Application role")
    @click.option("--department", default=None)
    def create_profile_cmd(email, full_name, role, department):
        """Register a user profile the engine can authorize."""
        from mocstudio.core.exceptions import ValidationError
        from mocstudio.services.profile_service import create_profile

        try:
            profile = create_profile(email, full_name=full_name, role=role, department=department)
        except ValidationError as e:
            db.session.rollback()
            raise click.ClickException(str(e))
        db.session.commit()
        click.echo(f"Created profile {profile.id} ({profile.email}, {profile.role})")

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered scheduled job now."""
        from mocstudio.services.scheduler_service import SchedulerService, get_registered_jobs

        if job_name not in get_registered_jobs():
            raise click.ClickException(
                f"Unknown job '{job_name}'. Registered: {sorted(get_registered_jobs())}"
            )
        result = SchedulerService.run_job(job_name)
        click.echo(f"{result['job_name']}: {result['status']} ({result['duration_ms']}ms) {result['result'] or result['error']}")
        if result["status"] != "success":
            raise SystemExit(1)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "MOC Studio"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("mocstudio.services.scheduled_jobs")  # registers @register_job handlers
    from mocstudio.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
