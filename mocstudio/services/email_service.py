"""
MOC Studio
Email Service.

Delivery collaborator for notifications. Renders one template per
notification category and sends it over SMTP.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    APP_BASE_URL    Used to build "View MOC" links
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app
from markupsafe import escape

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">MOC Studio</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <p>{greeting}</p>
        {body}
        <p><a href="{action_url}" style="color: #2563eb;">{action_label}</a></p>
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            MOC Studio: automated notification
        </p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "moc_status": {
        "subject": "[MOC Studio] {moc_number} status changed to {new_status}",
        "action_label": "View MOC Details",
        "body": """
        <p>The status of an MOC request you're following has been updated.</p>
        <p><strong>{moc_number}</strong> - {moc_title}</p>
        <p>Status changed: {old_status} → <strong>{new_status}</strong></p>
        """,
    },
    "moc_approval": {
        "subject": "[MOC Studio] Approval requested: {moc_number}",
        "action_label": "Review MOC Request",
        "body": """
        <p>You have been requested to review and approve the following MOC request.</p>
        <p><strong>{moc_number}</strong> - {moc_title}</p>
        <p>Please review this request at your earliest convenience and provide your approval decision.</p>
        """,
    },
    "task_assigned": {
        "subject": "[MOC Studio] New task assigned: {task_title}",
        "action_label": "View Task",
        "body": """
        <p>You have been assigned a new action item that requires your attention.</p>
        <p><strong>{task_title}</strong></p>
        <p>Related MOC: {moc_number} - {moc_title}</p>
        <p>Due date: {due_date}</p>
        <p>Assigned by: {assigned_by}</p>
        """,
    },
    "task_due": {
        "subject": "[MOC Studio] Task due soon: {task_title}",
        "action_label": "Complete Task",
        "body": """
        <p>This is a reminder that you have a task due soon.</p>
        <p><strong>{task_title}</strong></p>
        <p>Due date: {due_date}</p>
        """,
    },
    "comment": {
        "subject": "[MOC Studio] New comment on {moc_number}",
        "action_label": "View Comment",
        "body": """
        <p>{comment_author} commented on an MOC you're following.</p>
        <p><strong>{moc_number}</strong> - {moc_title}</p>
        <blockquote>{comment_preview}</blockquote>
        """,
    },
    "system": {
        "subject": "[MOC Studio] {title}",
        "action_label": "Go to MOC Studio",
        "body": """
        <p>{message}</p>
        """,
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def render(cls, template_name: str, context: dict[str, Any]) -> tuple[str, str]:
        """
        Return ``(subject, html_body)`` for a category template.

        Context values are HTML-escaped; the subject is built from the raw
        values since it is a plain-text header.
        """
        template = cls.get_template(template_name) or _TEMPLATES["system"]
        raw = _SafeDict(context)
        raw.setdefault("greeting", f"Hello {context.get('to_name') or 'there'},")
        raw.setdefault("action_url", current_app.config.get("APP_BASE_URL", ""))
        raw.setdefault("action_label", template["action_label"])
        ctx = _SafeDict({key: escape(value) for key, value in raw.items()})
        body = template["body"].format_map(ctx)
        subject = template["subject"].format_map(raw)
        html = _LAYOUT.format_map(_SafeDict(ctx, body=body))
        return subject, html

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        category: str = "system",
    ) -> bool:
        """
        Send an email.

        Returns True once handed to SMTP (or logged in dev mode).
        SMTP failures are logged and re-raised to the caller.
        """
        if not cls.is_configured():
            # Dev/test mode, log only
            logger.info(
                "Email (dev mode): to=%s subject='%s' category=%s",
                to_email, subject, category,
            )
            return True

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            raise
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return True

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
    ) -> bool:
        """
        Send an email using a category template.

        Template variables are interpolated from the context dict.
        """
        subject, html_body = cls.render(template_name, dict(context, to_name=to_name))
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            category=template_name,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
