# room_audit/services/notification_mailer.py
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Iterable

from room_audit.core.config import get_settings
from room_audit.schemas.report import NotificationRequest

logger = logging.getLogger(__name__)


def build_email_message(request: NotificationRequest) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = request.subject
    msg["From"] = request.from_address
    msg["To"] = ", ".join(request.to)
    msg.set_content(request.body)
    return msg


def send_notifications(requests: Iterable[NotificationRequest]) -> int:
    """
    Deliver notification requests over SMTP.

    Returns
    -------
    int
        Number of messages accepted by the SMTP server. 0 when SMTP is not
        configured. A message that fails is logged and skipped; the others
        are still attempted.
    """
    requests = list(requests)
    if not requests:
        return 0

    settings = get_settings()
    if not settings.SMTP_HOST:
        logger.warning("SMTP_HOST not configured, %d notifications not sent", len(requests))
        return 0

    sent = 0
    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            for request in requests:
                try:
                    smtp.send_message(build_email_message(request))
                    sent += 1
                except smtplib.SMTPException as exc:
                    logger.warning("Notification to %s failed: %s", ", ".join(request.to), exc)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("SMTP delivery aborted after %d of %d messages: %s", sent, len(requests), exc)

    logger.info("Sent %d of %d notifications", sent, len(requests))
    return sent
