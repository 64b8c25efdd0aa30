import logging

logger = logging.getLogger(__name__)


def send_notification(notification_id):
    """
    Deliver an email notification.
    Called asynchronously via Django-Q2.
    """
    from apps.core.services.email import send_email

    from .models import Notification

    try:
        notification = Notification.objects.select_related("recipient").get(pk=notification_id)
    except Notification.DoesNotExist:
        logger.error("Notification %s does not exist.", notification_id)
        return False

    if notification.channel != "email":
        logger.info("In-app notification %s; no external dispatch needed.", notification_id)
        return True

    email = notification.recipient.email
    if not email:
        logger.warning("Recipient %s has no email address.", notification.recipient_id)
        return False

    return send_email(
        subject=notification.title,
        message=notification.body,
        recipient_list=[email],
        source="notification",
    )
