"""
Approval ledger.

Staff edits to legal or financial terms are staged in ``Lease.pending_changes``
until an admin or manager approves or rejects them. Every approval action is
appended to ``LeaseApprovalEntry`` and every direct write to ``LeaseActivity``.

Methods here run inside the caller's transaction on a row-locked lease. Work
that must only happen after commit (notifications) is appended to ``effects``
as a zero-argument callable.
"""

import logging

from django.utils import timezone

from apps.accounts.services import get_user_supervisor
from apps.core.actors import HumanActor, actor_user
from apps.core.db import run_in_transaction
from apps.core.exceptions import ConflictError, ForbiddenError, LeaseError, ValidationError
from apps.notifications import services as notifications

from .models import Lease, LeaseActivity, LeaseApprovalEntry
from .policy import apply_changes, staged_changes, validate_terms

logger = logging.getLogger(__name__)


def record_activity(lease, actor, action, changes=()):
    return LeaseActivity.objects.create(
        lease=lease, action=action, actor=actor_user(actor), changes=sorted(changes)
    )


def record_approval(lease, action, actor, notes=""):
    return LeaseApprovalEntry.objects.create(
        lease=lease, action=action, actor=actor_user(actor), notes=notes
    )


def require_approval_role(actor, action="approve leases"):
    if not actor.is_approval_role:
        raise ForbiddenError(f"You are not authorized to {action}.")


def pending_holder_id(lease):
    if not lease.pending_changes:
        return None
    return lease.pending_changes.get("updated_by")


def same_actor(holder_id, actor):
    return holder_id is not None and actor.id is not None and str(actor.id) == holder_id


def _user_by_id(user_id):
    from apps.accounts.models import User

    if not user_id:
        return None
    return User.objects.filter(pk=user_id).first()


def notify_supervisor(lease, actor, renewal=False):
    """Ask the staff actor's supervisor to review; only a warning when none is assigned."""
    supervisor = get_user_supervisor(actor.user)
    if supervisor is None:
        logger.warning(
            "Staff user %s has no supervisor; no approval request sent for lease %s.",
            actor.id,
            lease.luid,
        )
        return
    notifications.notify_approval_requested(lease, actor.display_name, supervisor, renewal=renewal)


class LeaseApprovalService:
    """Stage, apply, approve and reject lease changes."""

    @staticmethod
    def stage_change(lease, changes, actor, effects, now=None):
        """
        Stage high-impact ``changes`` for approval.

        Raises:
            ConflictError: another actor already holds pending changes
        """
        holder = pending_holder_id(lease)
        if holder and not same_actor(holder, actor):
            raise ConflictError(
                "Lease is locked: changes from "
                f"{lease.pending_changes.get('display_name') or 'another user'} are pending approval."
            )

        now = now or timezone.now()
        previous_status = (
            lease.pending_changes.get("previous_approval_status") if holder else None
        ) or lease.approval_status
        lease.pending_changes = {
            **changes,
            "updated_by": str(actor.id),
            "updated_at": now.isoformat(),
            "display_name": actor.display_name,
            "previous_approval_status": previous_status,
        }
        lease.approval_status = "pending"
        lease.updated_by = actor_user(actor)
        lease.save()
        record_activity(lease, actor, "changes_staged", changes)

        logger.info(
            "Staged %d change(s) on lease %s for approval (by %s)",
            len(changes),
            lease.luid,
            actor.display_name,
        )
        if isinstance(actor, HumanActor):
            effects.append(lambda: notify_supervisor(lease, actor))
        return lease

    @staticmethod
    def apply_direct(lease, changes, actor, effects, action="updated"):
        """
        Write ``changes`` onto the lease now.

        An approval-role actor replacing someone else's pending changes
        discards them, records an ``overridden`` entry and notifies the
        superseded staff member.
        """
        holder = pending_holder_id(lease)
        overridden = (
            holder is not None and actor.is_approval_role and not same_actor(holder, actor)
        )

        touched = apply_changes(lease, changes)
        if overridden:
            superseded_name = lease.pending_changes.get("display_name") or holder
            # Restore the approval status the lease had before staff staged changes
            lease.approval_status = lease.pending_changes.get("previous_approval_status") or "pending"
            lease.pending_changes = None
            record_approval(
                lease,
                "overridden",
                actor,
                notes=f"Pending changes from {superseded_name} were superseded by {actor.display_name}.",
            )
            staff_user = _user_by_id(holder)
            effects.append(
                lambda: notifications.notify_pending_changes_overridden(
                    lease, staff_user, actor.display_name
                )
            )
            logger.info(
                "%s overrode pending changes from %s on lease %s",
                actor.display_name,
                superseded_name,
                lease.luid,
            )

        lease.updated_by = actor_user(actor)
        lease.save()
        record_activity(lease, actor, action, changes)
        logger.debug("Applied %s to lease %s", touched, lease.luid)
        return lease

    @staticmethod
    def approve(lease, actor, notes="", effects=None):
        """
        Apply staged changes and mark the lease approved.

        A lease that is not pending can only be re-approved from draft or
        rejected when ``notes`` explain why.
        """
        require_approval_role(actor)
        effects = effects if effects is not None else []

        if lease.approval_status != "pending":
            if lease.approval_status == "approved":
                raise ValidationError("Lease is already approved and has no pending changes.")
            if not notes:
                raise ValidationError(
                    f"Lease approval is {lease.approval_status}; a note is required to approve it."
                )

        requester_id = pending_holder_id(lease) or (
            str(lease.created_by_id) if lease.created_by_id else None
        )
        changes = staged_changes(lease.pending_changes)
        if changes:
            validate_terms(lease, changes)
            apply_changes(lease, changes)

        lease.pending_changes = None
        lease.approval_status = "approved"
        lease.updated_by = actor_user(actor)
        lease.save()
        record_approval(lease, "approved", actor, notes=notes)
        if changes:
            record_activity(lease, actor, "approved_changes", changes)

        logger.info("Lease %s approved by %s", lease.luid, actor.display_name)
        _queue_decision(lease, requester_id, actor, True, notes, effects)
        return lease

    @staticmethod
    def reject(lease, actor, reason, effects=None):
        """Discard staged changes and mark the lease rejected."""
        require_approval_role(actor, "reject leases")
        effects = effects if effects is not None else []
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required.", {"reason": ["Required."]})

        requester_id = pending_holder_id(lease) or (
            str(lease.created_by_id) if lease.created_by_id else None
        )
        lease.pending_changes = None
        # An executed lease stays in force; only its staged changes are refused
        lease.approval_status = "approved" if lease.status == "active" else "rejected"
        lease.updated_by = actor_user(actor)
        lease.save()
        record_approval(lease, "rejected", actor, notes=reason)

        logger.info("Lease %s rejected by %s: %s", lease.luid, actor.display_name, reason)
        _queue_decision(lease, requester_id, actor, False, reason, effects)
        return lease

    @staticmethod
    def bulk_approve(client, luids, actor, notes=""):
        require_approval_role(actor, "bulk approve leases")
        return _bulk(client, luids, actor, LeaseApprovalService.approve, notes or "Bulk approved")

    @staticmethod
    def bulk_reject(client, luids, actor, reason):
        require_approval_role(actor, "bulk reject leases")
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required.", {"reason": ["Required."]})
        return _bulk(client, luids, actor, LeaseApprovalService.reject, reason)


def _queue_decision(lease, requester_id, actor, approved, notes, effects):
    if not requester_id or same_actor(requester_id, actor):
        return
    requester = _user_by_id(requester_id)
    if requester is None:
        return
    effects.append(
        lambda: notifications.notify_approval_decision(
            lease, requester, actor.display_name, approved, notes
        )
    )


def _bulk(client, luids, actor, operation, notes):
    """Run a single-lease approval operation over every pending lease in ``luids``."""
    pending_ids = list(
        Lease.objects.filter(client=client, luid__in=list(luids), approval_status="pending")
        .values_list("pk", flat=True)
    )

    modified = 0
    effects = []
    for pk in pending_ids:

        def _one(pk=pk):
            lease = Lease.objects.select_for_update().get(pk=pk)
            if lease.approval_status != "pending":
                return False
            operation(lease, actor, notes, effects)
            return True

        try:
            if run_in_transaction(_one):
                modified += 1
        except LeaseError as e:
            logger.warning("Skipped lease %s during bulk %s: %s", pk, operation.__name__, e.message)

    for effect in effects:
        effect()

    logger.info(
        "Bulk %s by %s: %d of %d lease(s) modified",
        operation.__name__,
        actor.display_name,
        modified,
        len(pending_ids),
    )
    return modified
