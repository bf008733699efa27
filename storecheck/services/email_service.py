"""
StoreCheck
Email Service.

Provides email sending with admin-configurable action plan templates.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask-Mail compatible config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Templates use ``{{variable}}`` placeholders. Values are HTML-escaped except
for the few variables that carry URLs, colours or prefixes (RAW_VARIABLES).
"""

from __future__ import annotations

import html
import logging
import re
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from storecheck.models import db
from storecheck.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Action plan template
# ═══════════════════════════════════════════════════════════════════════════

SEVERITY_COLORS = {
    "baixa": "#22c55e",
    "media": "#f59e0b",
    "alta": "#f97316",
    "critica": "#ef4444",
}

TEMPLATE_VARIABLES = (
    "plan_title", "field_name", "store_name", "sector_name", "template_name",
    "respondent_name", "respondent_time", "assignee_name", "severity",
    "severity_label", "severity_color", "deadline", "non_conformity_value",
    "description", "plan_url", "plan_id", "is_reincidencia",
    "reincidencia_count", "reincidencia_prefix", "app_name",
)

RAW_VARIABLES = {"severity_color", "plan_url", "reincidencia_prefix"}

DEFAULT_ACTION_PLAN_EMAIL_SUBJECT = "[{{app_name}}] {{reincidencia_prefix}}Plano de Acao: {{field_name}}"

DEFAULT_ACTION_PLAN_EMAIL_HTML = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; background: white;">
    <div style="background: {{severity_color}}; padding: 24px; color: white;">
        <h1 style="margin: 0; font-size: 20px;">Plano de Acao {{reincidencia_prefix}}</h1>
        <p style="margin: 6px 0 0; font-size: 14px;">Severidade: {{severity_label}}</p>
    </div>
    <div style="padding: 28px 24px;">
        <h2 style="margin: 0 0 20px; color: #1e293b; font-size: 18px;">{{plan_title}}</h2>
        <table style="width: 100%; border-collapse: collapse; margin-bottom: 24px;">
            <tr><td style="padding: 8px; color: #64748b;">Respondente:</td><td style="padding: 8px;">{{respondent_name}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Data/Hora:</td><td style="padding: 8px;">{{respondent_time}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Template:</td><td style="padding: 8px;">{{template_name}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Campo:</td><td style="padding: 8px;">{{field_name}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Valor:</td><td style="padding: 8px; color: #ef4444;">{{non_conformity_value}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Loja:</td><td style="padding: 8px;">{{store_name}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Setor:</td><td style="padding: 8px;">{{sector_name}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Responsavel:</td><td style="padding: 8px;">{{assignee_name}}</td></tr>
            <tr><td style="padding: 8px; color: #64748b;">Prazo:</td><td style="padding: 8px;">{{deadline}}</td></tr>
        </table>
        <p style="color: #475569; font-size: 14px; line-height: 1.6;">{{description}}</p>
        <a href="{{plan_url}}" style="display: inline-block; background: {{severity_color}}; color: white;
           padding: 14px 28px; border-radius: 8px; text-decoration: none;">Ver Plano de Acao</a>
    </div>
    <div style="padding: 16px 24px; background: #f8fafc; text-align: center;">
        <p style="margin: 0; color: #94a3b8; font-size: 12px;">{{app_name}} - Sistema de Checklists</p>
    </div>
</div>
"""

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def replace_placeholders(template: str, variables: dict[str, Any], *, escape: bool = True) -> str:
    """Substitute every ``{{key}}`` present in ``variables``; unknown keys stay."""

    def _sub(match):
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = "" if variables[key] is None else str(variables[key])
        if not escape or key in RAW_VARIABLES:
            return value
        return html.escape(value, quote=True)

    return _PLACEHOLDER_RE.sub(_sub, template)


def build_email_from_template(
    template_html: str | None,
    subject_template: str | None,
    variables: dict[str, Any],
) -> tuple[str, str]:
    """Return ``(subject, html_body)``; blank templates fall back to the built-ins."""
    body = replace_placeholders(template_html or DEFAULT_ACTION_PLAN_EMAIL_HTML, variables)
    # Subjects are plain text, never HTML-escaped.
    subject = replace_placeholders(
        subject_template or DEFAULT_ACTION_PLAN_EMAIL_SUBJECT, variables, escape=False,
    )
    return subject, body


class EmailService:
    """
    Email sending service.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        event_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        to simulate sending without actual delivery. SMTP errors propagate
        after the log row is marked failed, so the caller can record them.
        """
        log = EmailLog(
            recipient_email=to_email,
            subject=subject[:500],
            status="queued",
            event_id=event_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            return log

        try:
            cls._send_smtp(to_email=to_email, subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            raise

        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return log

    @staticmethod
    def _send_smtp(*, to_email: str, subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
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
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
