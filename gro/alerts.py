from __future__ import annotations

import smtplib
from email.mime.text import MIMEText

from . import db
from .settings import settings


def smtp_configured() -> bool:
    return all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    )


def send_email(subject: str, body: str) -> bool:
    """Send a Degraded alert if SMTP is enabled and configured.

    Environment variables:
      - GRO_ENABLE_EMAIL=true
      - GRO_SMTP_HOST / GRO_SMTP_PORT
      - GRO_SMTP_USER / GRO_SMTP_PASSWORD
      - GRO_EMAIL_FROM / GRO_EMAIL_TO
    """
    if not settings.enable_email or not smtp_configured():
        return False

    msg = MIMEText(body, "plain")
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = subject

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as e:
        db.log_event("WARN", f"Alert email failed: {type(e).__name__}: {e}")
        return False
