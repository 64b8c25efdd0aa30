"""
Outbound email through the Django backend configured in settings.

Each recipient of every dispatch gets a ``NotificationLog`` row so failed
lease notices and invitations can be traced from the admin.
"""

import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 500


def _record(recipients, status, subject, body, source, error=""):
    from apps.notifications.models import NotificationLog

    NotificationLog.objects.bulk_create(
        NotificationLog(
            channel="email",
            status=status,
            recipient=recipient,
            subject=subject[:PREVIEW_LENGTH],
            body_preview=body[:PREVIEW_LENGTH],
            error_message=error,
            source=source,
        )
        for recipient in recipients
    )


def send_email(subject, message, recipient_list, html_message=None, from_email=None, source=""):
    """
    Send one message to ``recipient_list``.

    Returns True when the backend accepted it. Delivery errors are logged and
    recorded, never raised.
    """
    recipients = [r for r in recipient_list if r]
    if not recipients:
        logger.debug("No recipients for email '%s' (%s)", subject, source or "unknown source")
        return False

    email = EmailMultiAlternatives(
        subject=subject,
        body=message,
        from_email=from_email or settings.DEFAULT_FROM_EMAIL,
        to=recipients,
    )
    if html_message:
        email.attach_alternative(html_message, "text/html")

    try:
        email.send(fail_silently=False)
    except Exception as e:
        logger.exception("Failed to send email '%s' to %s", subject, recipients)
        _record(recipients, "failed", subject, message, source, error=str(e))
        return False

    logger.info("Email sent: subject='%s', to=%s", subject, recipients)
    _record(recipients, "sent", subject, message, source)
    return True
