"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi run-job overdue_review_scanner
    flask --app wsgi create-profile admin@example.com --role administrator
"""

from mocstudio import create_app

app = create_app()
