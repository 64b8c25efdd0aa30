"""
Notification dispatcher used by the lease services.

Every function here is fire-and-forget: failures are logged and swallowed so a
notification problem can never roll back or re-fail the lease mutation that
triggered it. Callers invoke these only after their transaction has committed.
"""

import functools
import logging

from django.conf import settings

from .models import Notification

logger = logging.getLogger(__name__)

LIFECYCLE_MESSAGES = {
    "activated": ("Lease activated", "Lease {number} at {property} is now active."),
    "terminated": ("Lease terminated", "Lease {number} at {property} has been terminated."),
    "cancelled": ("Lease cancelled", "Lease {number} at {property} has been cancelled."),
    "renewal_created": (
        "Renewal lease created",
        "A renewal of lease {number} at {property} has been drafted.",
    ),
    "ready_for_signature": (
        "Renewal ready for signature",
        "Renewal lease {number} at {property} has been approved and is ready for signature.",
    ),
    "sent_for_signature": (
        "Lease sent for signature",
        "Lease {number} at {property} has been sent for electronic signature.",
    ),
    "signature_declined": (
        "Lease signature declined",
        "A signer declined lease {number} at {property}; it has been returned to draft.",
    ),
    "signature_failed": (
        "Lease signature request failed",
        "The signature request for lease {number} at {property} could not be sent.",
    ),
}


def best_effort(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception:
            logger.exception("Notification dispatch %s failed", func.__name__)
            return None

    return wrapper


def _lease_url(lease):
    return f"/leases/{lease.luid}/"


def _describe(lease):
    return {"number": lease.lease_number, "property": lease.rental_property.name}


@best_effort
def create_notification(recipient, title, body, category="lease", channel="in_app", action_url=""):
    """
    Persist an in-app notification and, for the email channel, queue delivery
    through Django-Q2 (dispatching synchronously if the cluster is unavailable).
    """
    if recipient is None:
        return None

    notification = Notification.objects.create(
        recipient=recipient,
        title=title,
        body=body,
        category=category,
        channel=channel,
        action_url=action_url,
    )

    if channel == "email":
        from .tasks import send_notification

        try:
            from django_q.tasks import async_task

            async_task(
                "apps.notifications.tasks.send_notification",
                str(notification.pk),
                task_name=f"notify-{notification.pk}",
            )
        except Exception:
            logger.warning(
                "Django-Q2 unavailable; dispatching notification %s synchronously.",
                notification.pk,
            )
            send_notification(str(notification.pk))

    return notification


@best_effort
def notify_approval_requested(lease, requester, approver, renewal=False):
    kind = "renewal lease" if renewal else "lease"
    create_notification(
        approver,
        title="Lease approval required",
        body=(
            f"{requester} submitted {kind} {lease.lease_number} at {lease.rental_property.name} "
            "for your approval."
        ),
        category="approval",
        channel="email",
        action_url=_lease_url(lease),
    )


@best_effort
def notify_approval_decision(lease, requester, actor_name, approved, notes=""):
    decision = "approved" if approved else "rejected"
    body = f"Your changes to lease {lease.lease_number} were {decision} by {actor_name}."
    if notes:
        body += f"\n\nNotes: {notes}"
    create_notification(
        requester,
        title=f"Lease changes {decision}",
        body=body,
        category="approval",
        channel="email",
        action_url=_lease_url(lease),
    )


@best_effort
def notify_pending_changes_overridden(lease, staff_user, actor_name):
    create_notification(
        staff_user,
        title="Pending lease changes overridden",
        body=(
            f"{actor_name} applied new changes to lease {lease.lease_number}; "
            "your pending changes were discarded."
        ),
        category="approval",
        action_url=_lease_url(lease),
    )


def lifecycle_recipients(lease):
    """Tenant, creator and property manager, without duplicates."""
    seen = set()
    recipients = []
    for user in (lease.tenant, lease.created_by, lease.rental_property.managed_by):
        if user is not None and user.pk not in seen:
            seen.add(user.pk)
            recipients.append(user)
    return recipients


@best_effort
def notify_lease_lifecycle_event(lease, event, recipients=None):
    title, template = LIFECYCLE_MESSAGES[event]
    body = template.format(**_describe(lease))
    for recipient in recipients if recipients is not None else lifecycle_recipients(lease):
        create_notification(
            recipient,
            title=title,
            body=body,
            category="esignature" if "signature" in event else "lease",
            action_url=_lease_url(lease),
        )


@best_effort
def notify_system_error(title, message, lease=None):
    """Alert the lease's manager or creator, or the configured admins when neither exists."""
    recipients = []
    if lease is not None:
        recipients = [
            u for u in (lease.rental_property.managed_by, lease.created_by) if u is not None
        ][:1]

    if not recipients:
        from apps.accounts.models import User

        admins = User.objects.filter(role="admin", is_active=True)
        if lease is not None:
            admins = admins.filter(client_id=lease.client_id)
        recipients = list(admins)

    for recipient in recipients:
        create_notification(recipient, title=title, body=message, category="system")

    if not recipients:
        logger.warning("No recipient for system error notification: %s", title)

    admin_emails = [email for _, email in getattr(settings, "ADMINS", [])]
    if admin_emails:
        from apps.core.services.email import send_email

        send_email(subject=title, message=message, recipient_list=admin_emails, source="system")
