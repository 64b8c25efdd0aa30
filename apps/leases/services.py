"""
Lease Service.

Entry points used by views, admin actions and scheduled jobs:
- Lease creation (with tenant invitation) and soft deletion
- Policy-checked updates routed through the approval ledger
- Activation, termination and cancellation
- Approval and rejection, single and bulk
- Listings for pending approvals and expiring leases

Every mutation runs in one transaction on a row-locked lease; notifications and
events are dispatched only after it commits.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from apps.accounts.services import get_or_create_invitation, send_invitation_email
from apps.core.actors import actor_user
from apps.core.db import run_with_effects
from apps.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from apps.notifications import services as notifications

from . import events
from .approvals import (
    LeaseApprovalService,
    notify_supervisor,
    record_activity,
    record_approval,
    require_approval_role,
)
from .models import CANCELLABLE_STATUSES, DELETABLE_STATUSES, Lease
from .policy import apply_changes, flatten_payload, reject_immutable, validate_terms
from .transitions import ensure_can_activate, move_to
from .updates import route_update

logger = logging.getLogger(__name__)

REQUIRED_CREATE_PATHS = (
    "property.id",
    "duration.start_date",
    "duration.end_date",
    "fees.monthly_rent",
)
MIN_TERMINATION_REASON_LENGTH = 10


def require_staff(actor, action="manage leases"):
    if not (actor.is_approval_role or actor.is_staff_role):
        raise ForbiddenError(f"You are not authorized to {action}.")


def activate_locked(lease, actor, effects, via="manual", require_signature=False):
    """Activate a row-locked lease and queue the activation side effects."""
    ensure_can_activate(lease, require_signature=require_signature)
    move_to(lease, "active")
    if lease.move_in_date is None:
        lease.move_in_date = lease.start_date
    lease.updated_by = actor_user(actor)
    lease.save()
    record_activity(lease, actor, "activated", ["status"])

    payload = events.LeaseActivated(
        lease_id=lease.pk,
        luid=lease.luid,
        client_id=lease.client_id,
        actor_id=actor.id,
        via=via,
    )
    effects.append(lambda: events.lease_events.emit(events.LEASE_ACTIVATED, payload))
    effects.append(lambda: notifications.notify_lease_lifecycle_event(lease, "activated"))
    logger.info("Lease %s activated (%s) by %s", lease.luid, via, actor.display_name)
    return lease


class LeaseService:
    """Service for the lease lifecycle."""

    # =========================================================================
    # Lookup
    # =========================================================================

    @staticmethod
    def get_lease(client, luid, for_update=False):
        qs = Lease.objects.filter(client=client, luid=luid)
        if for_update:
            qs = qs.select_for_update()
        lease = qs.first()
        if lease is None:
            raise NotFoundError(f"Lease {luid} not found.")
        return lease

    # =========================================================================
    # Creation and deletion
    # =========================================================================

    @staticmethod
    def create_lease(client, data, actor):
        """
        Create a draft lease.

        Args:
            client: Client the lease belongs to
            data: Nested or dotted lease fields. The tenant is either
                ``tenant_id`` of an existing tenant or ``tenant_info``
                (``email``, ``first_name``, ``last_name``) to invite one.
            actor: HumanActor performing the creation

        Returns:
            Lease instance
        """
        require_staff(actor, "create leases")

        data = dict(data)
        tenant_info = data.pop("tenant_info", None)
        changes = flatten_payload(data)
        reject_immutable(changes)

        errors = {}
        for path in REQUIRED_CREATE_PATHS:
            if changes.get(path) in (None, ""):
                errors[path] = ["This field is required."]
        if "tenant_id" in changes and tenant_info:
            errors["tenant_id"] = ["Provide either an existing tenant or tenant_info, not both."]
        elif "tenant_id" not in changes:
            if not tenant_info:
                errors["tenant_id"] = ["Provide an existing tenant or tenant_info to invite one."]
            elif not tenant_info.get("email"):
                errors["tenant_info.email"] = ["This field is required."]
        if errors:
            raise ValidationError("Lease data is invalid.", errors)

        if changes.get("signing_method") == "electronic" and not changes.get("e_signature.provider"):
            changes["e_signature.provider"] = settings.ESIGNATURE.get("default_provider", "")

        def _create(effects):
            lease = Lease(client=client, created_by=actor_user(actor), updated_by=actor_user(actor))
            validate_terms(lease, changes)
            apply_changes(lease, changes)

            if tenant_info:
                invitation = get_or_create_invitation(
                    client,
                    tenant_info["email"],
                    tenant_info.get("first_name", ""),
                    tenant_info.get("last_name", ""),
                    invited_by=actor_user(actor),
                )
                lease.tenant_invitation = invitation
                effects.append(lambda: send_invitation_email(invitation))

            if actor.is_approval_role:
                lease.approval_status = "approved"
                notes = f"Auto-approved: created by {actor.role} {actor.display_name}"
            else:
                lease.approval_status = "pending"
                notes = f"Created by {actor.display_name}; awaiting approval"
                effects.append(lambda: notify_supervisor(lease, actor))

            lease.save()
            record_approval(lease, "created", actor, notes=notes)
            record_activity(lease, actor, "created", changes)
            return lease

        lease = run_with_effects(_create)
        logger.info(
            "Created lease %s (%s) for client %s by %s",
            lease.luid,
            lease.approval_status,
            client.cuid,
            actor.display_name,
        )
        return lease

    @staticmethod
    def delete_lease(client, luid, actor):
        """Soft-delete a draft or cancelled lease."""
        require_staff(actor, "delete leases")

        def _delete(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            if lease.status not in DELETABLE_STATUSES:
                raise ValidationError(
                    f"Only draft or cancelled leases can be deleted; this lease is {lease.status}."
                )
            lease.soft_delete(actor_user(actor))
            record_activity(lease, actor, "deleted")
            return True

        result = run_with_effects(_delete)
        logger.info("Lease %s deleted by %s", luid, actor.display_name)
        return result

    # =========================================================================
    # Updates
    # =========================================================================

    @staticmethod
    def update_lease(client, luid, payload, actor):
        """
        Apply a partial update according to the lease status and actor role.

        Returns:
            UpdateResult (``requires_approval`` is True when changes were staged)
        """
        require_staff(actor, "update leases")

        def _update(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            return route_update(lease, payload, actor, effects)

        return run_with_effects(_update)

    # =========================================================================
    # Transitions
    # =========================================================================

    @staticmethod
    def activate_lease(client, luid, actor):
        require_staff(actor, "activate leases")

        def _activate(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            return activate_locked(lease, actor, effects)

        return run_with_effects(_activate)

    @staticmethod
    def terminate_lease(client, luid, data, actor):
        """
        Terminate an active lease.

        Args:
            data: ``termination_date`` (required), ``reason`` (at least ten
                characters) and optional ``move_out_date`` on or after the
                termination date
        """
        require_staff(actor, "terminate leases")

        reason = (data.get("reason") or "").strip()
        errors = {}
        if len(reason) < MIN_TERMINATION_REASON_LENGTH:
            errors["reason"] = [
                f"Termination reason must be at least {MIN_TERMINATION_REASON_LENGTH} characters."
            ]

        def _terminate(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            if lease.status != "active":
                raise ValidationError(
                    f"Only active leases can be terminated; this lease is {lease.status}.",
                    {"status": [lease.status]},
                )

            termination_date = _date_field(lease, "termination_date", data.get("termination_date"))
            move_out_date = _date_field(lease, "move_out_date", data.get("move_out_date"))
            if termination_date is None:
                errors["termination_date"] = ["Termination date is required."]
            if move_out_date and termination_date and move_out_date < termination_date:
                errors["move_out_date"] = ["Move-out date cannot be before the termination date."]
            if errors:
                raise ValidationError("Termination data is invalid.", errors)

            move_to(lease, "terminated")
            lease.termination_date = termination_date
            lease.termination_reason = reason
            if move_out_date:
                lease.move_out_date = move_out_date
            lease.updated_by = actor_user(actor)
            lease.save()
            record_activity(
                lease, actor, "terminated", ["status", "termination_date", "move_out_date"]
            )

            payload = events.LeaseTerminated(
                lease_id=lease.pk,
                luid=lease.luid,
                client_id=lease.client_id,
                termination_date=termination_date,
                reason=reason,
                actor_id=actor.id,
            )
            effects.append(lambda: events.lease_events.emit(events.LEASE_TERMINATED, payload))
            effects.append(lambda: notifications.notify_lease_lifecycle_event(lease, "terminated"))
            return lease

        lease = run_with_effects(_terminate)
        logger.info("Lease %s terminated by %s", luid, actor.display_name)
        return lease

    @staticmethod
    def cancel_lease(client, luid, actor, reason=""):
        """Cancel a lease that has not become active; an in-flight envelope is revoked."""
        require_staff(actor, "cancel leases")

        def _cancel(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            if lease.status not in CANCELLABLE_STATUSES:
                raise ValidationError(f"A lease in status '{lease.status}' cannot be cancelled.")

            envelope_id = lease.esign_envelope_id if lease.esign_status == "sent" else ""
            move_to(lease, "cancelled")
            if envelope_id:
                lease.esign_status = "voided"
            lease.pending_changes = None
            if lease.approval_status == "pending":
                lease.approval_status = "draft"
            lease.updated_by = actor_user(actor)
            lease.save()
            record_activity(lease, actor, "cancelled", ["status"])

            if envelope_id:
                from .esignature import revoke_envelope

                effects.append(
                    lambda: revoke_envelope(lease, reason or "Lease cancelled", raise_errors=False)
                )
            payload = events.LeaseCancelled(
                lease_id=lease.pk, luid=lease.luid, client_id=lease.client_id, actor_id=actor.id
            )
            effects.append(lambda: events.lease_events.emit(events.LEASE_CANCELLED, payload))
            effects.append(lambda: notifications.notify_lease_lifecycle_event(lease, "cancelled"))
            return lease

        lease = run_with_effects(_cancel)
        logger.info("Lease %s cancelled by %s", luid, actor.display_name)
        return lease

    # =========================================================================
    # Approvals
    # =========================================================================

    @staticmethod
    def approve_lease(client, luid, actor, notes=""):
        require_approval_role(actor)

        def _approve(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            return LeaseApprovalService.approve(lease, actor, notes, effects)

        return run_with_effects(_approve)

    @staticmethod
    def reject_lease(client, luid, actor, reason):
        require_approval_role(actor, "reject leases")

        def _reject(effects):
            lease = LeaseService.get_lease(client, luid, for_update=True)
            return LeaseApprovalService.reject(lease, actor, reason, effects)

        return run_with_effects(_reject)

    @staticmethod
    def bulk_approve_leases(client, luids, actor, notes=""):
        return LeaseApprovalService.bulk_approve(client, luids, actor, notes)

    @staticmethod
    def bulk_reject_leases(client, luids, actor, reason):
        return LeaseApprovalService.bulk_reject(client, luids, actor, reason)

    # =========================================================================
    # Listings
    # =========================================================================

    @staticmethod
    def list_pending_approvals(client, actor):
        require_approval_role(actor, "review pending approvals")
        return (
            Lease.objects.filter(client=client, approval_status="pending")
            .select_related("rental_property", "tenant", "created_by")
            .order_by("updated_at")
        )

    @staticmethod
    def get_expiring_leases(client, days=30, today=None):
        """Active leases ending within ``days`` (1 to 365) from ``today``."""
        if not 1 <= int(days) <= 365:
            raise ValidationError("Days must be between 1 and 365.", {"days": [str(days)]})
        today = today or timezone.localdate()
        return (
            Lease.objects.filter(
                client=client,
                status="active",
                end_date__gte=today,
                end_date__lte=today + timedelta(days=int(days)),
            )
            .select_related("rental_property", "tenant")
            .order_by("end_date")
        )


def _date_field(lease, name, value):
    if value in (None, ""):
        return None
    try:
        return lease._meta.get_field(name).to_python(value)
    except DjangoValidationError as e:
        raise ValidationError(f"Invalid {name}.", {name: list(e.messages)}) from None
