"""
Account services.

Provides functions for:
- Inviting tenants who do not have an account yet
- Accepting an invitation and resolving leases that reference it
- Looking up a staff member's supervisor for approval routing
"""

import logging

from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.core.services.email import send_email

from .models import Invitation, User

logger = logging.getLogger(__name__)


def get_or_create_invitation(client, email, first_name, last_name, invited_by=None, role="tenant"):
    """Return the live pending invitation for ``email`` within ``client``, creating one if needed."""
    if not email:
        raise ValidationError("Invitee email is required.", {"email": ["This field is required."]})

    invitation = (
        Invitation.objects.filter(client=client, invitee_email__iexact=email, status="pending")
        .order_by("-created_at")
        .first()
    )
    if invitation is None or invitation.is_expired:
        invitation = Invitation.objects.create(
            client=client,
            invitee_email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            role=role,
            invited_by=invited_by,
        )
        logger.info("Created invitation %s for %s (client %s)", invitation.pk, email, client.cuid)
    return invitation


def send_invitation_email(invitation):
    """Best-effort; a delivery failure is logged by ``send_email``."""
    client = invitation.client
    return send_email(
        subject=f"You've been invited to {client.name}",
        message=(
            f"Hello {invitation.first_name},\n\n"
            f"{client.name} has invited you to review and sign your lease. "
            f"Use this code when creating your account: {invitation.token}\n"
        ),
        recipient_list=[invitation.invitee_email],
        source="invitation",
    )


def send_invitation(client, email, first_name, last_name, invited_by=None, role="tenant"):
    """Create (or reuse) a pending invitation and email it to the invitee."""
    invitation = get_or_create_invitation(client, email, first_name, last_name, invited_by, role)
    send_invitation_email(invitation)
    return invitation


def accept_invitation(token, user):
    """
    Accept an invitation on behalf of ``user``.

    Every lease still pointing at the invitation is switched to the user in the
    same transaction, so the pending reference is resolved exactly once.

    Returns:
        number of leases resolved
    """
    from apps.leases.models import Lease

    with transaction.atomic():
        try:
            invitation = Invitation.objects.select_for_update().get(token=token)
        except Invitation.DoesNotExist:
            raise NotFoundError("Invitation not found.")

        if invitation.status == "accepted":
            raise ConflictError("Invitation has already been accepted.")
        if not invitation.is_pending:
            raise ValidationError(f"Invitation is {invitation.status} or expired.")

        invitation.status = "accepted"
        invitation.accepted_user = user
        invitation.accepted_at = timezone.now()
        invitation.save(update_fields=["status", "accepted_user", "accepted_at", "updated_at"])

        if user.client_id is None:
            user.client = invitation.client
            user.save(update_fields=["client"])

        resolved = Lease.all_objects.filter(tenant_invitation=invitation).update(
            tenant=user, tenant_invitation=None, updated_at=timezone.now()
        )

    logger.info(
        "Invitation %s accepted by %s; %d lease(s) resolved to the new tenant.",
        invitation.pk,
        user.pk,
        resolved,
    )
    return resolved


def get_user_supervisor(user):
    """Return the supervisor of a staff member, or ``None`` if none is assigned."""
    if user is None or user.supervisor_id is None:
        return None
    try:
        return User.objects.get(pk=user.supervisor_id, is_active=True)
    except User.DoesNotExist:
        return None
