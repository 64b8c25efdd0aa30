"""
Renewal Service.

Creates ``draft_renewal`` leases from active leases and moves them towards
signature. A lease has at most one non-terminal renewal: the check and the
insert happen in one transaction with the original lease row locked.
"""

import copy
import logging
from datetime import timedelta

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.utils import timezone

from apps.core.actors import SYSTEM, actor_for, actor_user
from apps.core.db import run_with_effects
from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.notifications import services as notifications

from . import events
from .approvals import record_activity, record_approval, require_approval_role
from .models import NON_TERMINAL_RENEWAL_STATUSES, Lease
from .policy import apply_changes, flatten_payload, reject_immutable, staged_changes, validate_terms
from .services import LeaseService, require_staff
from .transitions import move_to

logger = logging.getLogger(__name__)

# Carried from the original lease onto its renewal
COPIED_FIELDS = (
    "client_id",
    "tenant_id",
    "tenant_invitation_id",
    "rental_property_id",
    "unit_id",
    "lease_type",
    "template_type",
    "monthly_rent",
    "security_deposit",
    "rent_due_day",
    "currency",
    "late_fee_amount",
    "late_fee_type",
    "late_fee_grace_days",
    "auto_renew",
    "renewal_require_approval",
    "days_before_expiry_to_generate_renewal",
    "enable_auto_send_for_signature",
    "days_before_expiry_to_auto_send_signature",
    "renewal_term_months",
    "signing_method",
    "esign_provider",
)
COPIED_DOCUMENTS = ("co_tenants", "pet_policy", "utilities_included", "legal_terms")

# A renewal keeps the parties and premises of the lease it renews
FIXED_RENEWAL_PATHS = frozenset({"tenant_id", "property.id", "property.unit_id"})


def renewal_term(original, overrides=None):
    term = (overrides or {}).get("renewal_options.renewal_term_months")
    return int(term or original.renewal_term_months or settings.LEASE_DEFAULT_RENEWAL_TERM_MONTHS)


def renewal_dates(original, term_months):
    """Default renewal term: the day after the original ends, for ``term_months`` months."""
    start = original.end_date + timedelta(days=1)
    return start, start + relativedelta(months=term_months)


def renewal_approval_status(original, actor):
    if not actor.is_system or not original.renewal_require_approval:
        return "approved"
    return "pending"


def find_open_renewal(original):
    return (
        Lease.objects.filter(previous_lease=original, status__in=NON_TERMINAL_RENEWAL_STATUSES)
        .order_by("-created_at")
        .first()
    )


def _renewal_overrides(overrides):
    if not overrides:
        return {}
    changes = flatten_payload(overrides)
    reject_immutable(changes)
    fixed = sorted(FIXED_RENEWAL_PATHS.intersection(changes))
    if fixed:
        raise ValidationError(
            f"Field(s) cannot be changed on a renewal: {', '.join(fixed)}",
            {path: ["Not editable on a renewal."] for path in fixed},
        )
    return changes


def _validate_renewal(renewal, original, changes):
    validate_terms(renewal, changes)
    apply_changes(renewal, changes)
    if renewal.start_date <= original.end_date:
        raise ValidationError(
            "Renewal start date must be after the original lease end date.",
            {"duration.start_date": [f"Must be after {original.end_date.isoformat()}."]},
        )


def build_renewal(original, actor, changes):
    renewal = Lease(
        status="draft_renewal",
        previous_lease=original,
        created_by=actor_user(actor),
        updated_by=actor_user(actor),
    )
    for name in COPIED_FIELDS:
        setattr(renewal, name, getattr(original, name))
    for name in COPIED_DOCUMENTS:
        setattr(renewal, name, copy.deepcopy(getattr(original, name)))

    renewal.start_date, renewal.end_date = renewal_dates(original, renewal_term(original, changes))
    renewal.move_in_date = renewal.start_date
    _validate_renewal(renewal, original, changes)
    renewal.approval_status = renewal_approval_status(original, actor)
    return renewal


def promote_auto_approved(renewal, effects):
    """
    Move an auto-approvable ``draft_renewal`` that has its agreement document
    to ``ready_for_signature``. Returns True when the renewal was promoted.
    """
    original = renewal.previous_lease
    if (
        renewal.status != "draft_renewal"
        or renewal.approval_status != "approved"
        or original is None
        or original.renewal_require_approval
    ):
        return False
    if not renewal.has_generated_document:
        logger.info(
            "Renewal %s has no lease document yet; it stays in draft_renewal until one is generated.",
            renewal.luid,
        )
        return False

    move_to(renewal, "ready_for_signature")
    renewal.save()
    record_approval(
        renewal,
        "auto_approved",
        SYSTEM,
        notes="Auto-approved: renewal options do not require approval",
    )
    record_activity(renewal, SYSTEM, "approved_for_signature", ["status"])
    effects.append(
        lambda: notifications.notify_lease_lifecycle_event(renewal, "ready_for_signature")
    )
    logger.info("Auto-approved renewal %s; ready for signature", renewal.luid)
    return True


class RenewalService:
    """Service for renewal creation and approval."""

    @staticmethod
    def create_renewal(client, luid, overrides=None, actor=SYSTEM):
        renewal, _ = RenewalService.create_or_get_renewal(client, luid, overrides, actor)
        return renewal

    @staticmethod
    def create_or_get_renewal(client, luid, overrides=None, actor=SYSTEM):
        """
        Create a ``draft_renewal`` of the active lease ``luid``.

        Args:
            client: Client the lease belongs to
            luid: Original lease luid
            overrides: Optional nested or dotted fields (dates, fees, renewal
                options, terms) applied over the copied values
            actor: ``SYSTEM`` for scheduled calls, otherwise a HumanActor

        Returns:
            (renewal, created). A scheduled call that finds an open renewal
            gets it back with ``created`` False.

        Raises:
            NotFoundError: the original lease does not exist
            ValidationError: it is not active, or overrides are invalid
            ConflictError: a human caller hit an existing open renewal
        """
        if not actor.is_system:
            require_staff(actor, "renew leases")
        changes = _renewal_overrides(overrides)

        def _create(effects):
            original = LeaseService.get_lease(client, luid, for_update=True)
            if original.status != "active":
                raise ValidationError(
                    f"Only active leases can be renewed; this lease is {original.status}.",
                    {"status": [original.status]},
                )

            existing = find_open_renewal(original)
            if existing is not None:
                if actor.is_system:
                    logger.info(
                        "Lease %s already has renewal %s (%s)", luid, existing.luid, existing.status
                    )
                    return existing, False
                raise ConflictError(
                    f"A renewal already exists for this lease ({existing.lease_number}, {existing.status})."
                )

            renewal = build_renewal(original, actor, changes)
            renewal.save()
            notes = (
                "Auto-renewal created by system" if actor.is_system else "Manual renewal created"
            )
            record_approval(renewal, "created", actor, notes=notes)
            record_activity(renewal, actor, "renewal_created", changes)

            payload = events.LeaseRenewed(
                renewal_id=renewal.pk,
                renewal_luid=renewal.luid,
                original_id=original.pk,
                client_id=renewal.client_id,
                approval_status=renewal.approval_status,
                actor_id=actor.id,
            )
            effects.append(lambda: events.lease_events.emit(events.LEASE_RENEWED, payload))
            if renewal.approval_status == "pending":
                effects.append(
                    lambda: notifications.notify_approval_requested(
                        renewal, actor.display_name, original.created_by, renewal=True
                    )
                )
            return renewal, True

        renewal, created = run_with_effects(_create)
        if created:
            logger.info(
                "Created renewal %s (%s) from lease %s by %s",
                renewal.luid,
                renewal.approval_status,
                luid,
                actor.display_name,
            )
        return renewal, created

    @staticmethod
    def renew_lease(client, luid, overrides=None, user=None):
        """Renew ``luid`` on behalf of ``user``; ``None`` runs as a scheduled call."""
        return RenewalService.create_renewal(client, luid, overrides, actor_for(user))

    @staticmethod
    def approve_renewal_for_signature(client, luid, actor, overrides=None):
        """Approve a ``draft_renewal`` (with optional last edits) and make it ready for signature."""
        require_approval_role(actor, "approve renewals")
        changes = _renewal_overrides(overrides)

        def _approve(effects):
            renewal = LeaseService.get_lease(client, luid, for_update=True)
            if renewal.status != "draft_renewal":
                raise ValidationError(
                    f"Cannot approve renewal with status {renewal.status}. Must be draft_renewal."
                )
            original = renewal.previous_lease
            if original is None:
                raise NotFoundError(f"Original lease of renewal {luid} not found.")

            merged = {**staged_changes(renewal.pending_changes), **changes}
            if merged:
                _validate_renewal(renewal, original, merged)

            move_to(renewal, "ready_for_signature")
            renewal.pending_changes = None
            renewal.approval_status = "approved"
            renewal.updated_by = actor_user(actor)
            renewal.save()
            record_approval(
                renewal,
                "approved",
                actor,
                notes=(
                    "Approved for signature with modifications"
                    if changes
                    else "Approved for signature"
                ),
            )
            record_activity(renewal, actor, "approved_for_signature", ["status", *merged])
            effects.append(
                lambda: notifications.notify_lease_lifecycle_event(
                    renewal,
                    "ready_for_signature",
                    recipients=[u for u in (renewal.rental_property.managed_by, original.created_by) if u],
                )
            )
            return renewal

        renewal = run_with_effects(_approve)
        logger.info("Renewal %s approved for signature by %s", luid, actor.display_name)
        return renewal

    @staticmethod
    def get_renewal_form_data(client, luid, today=None):
        """Pre-filled values for a renewal form of an active or ``draft_renewal`` lease."""
        lease = LeaseService.get_lease(client, luid)
        if lease.status not in ("active", "draft_renewal"):
            raise ValidationError(
                f"Cannot generate renewal form data for a {lease.status} lease. "
                "Only active or draft_renewal leases are eligible."
            )

        term = renewal_term(lease)
        if lease.status == "active":
            start, end = renewal_dates(lease, term)
        else:
            start, end = lease.start_date, lease.end_date

        today = today or timezone.localdate()
        return {
            "luid": lease.luid,
            "status": lease.status,
            "days_until_expiry": lease.days_until_expiry(today),
            "has_open_renewal": lease.status == "active" and find_open_renewal(lease) is not None,
            "duration": {
                "start_date": start,
                "end_date": end,
                "move_in_date": start,
            },
            "fees": {
                "monthly_rent": lease.monthly_rent,
                "security_deposit": lease.security_deposit,
                "rent_due_day": lease.rent_due_day,
                "currency": lease.currency,
                "late_fee_amount": lease.late_fee_amount,
                "late_fee_type": lease.late_fee_type,
                "late_fee_grace_days": lease.late_fee_grace_days,
            },
            "renewal_options": {
                "auto_renew": lease.auto_renew,
                "require_approval": lease.renewal_require_approval,
                "days_before_expiry_to_generate_renewal": (
                    lease.days_before_expiry_to_generate_renewal
                    or settings.LEASE_DEFAULT_RENEWAL_DAYS_BEFORE_EXPIRY
                ),
                "enable_auto_send_for_signature": lease.enable_auto_send_for_signature,
                "days_before_expiry_to_auto_send_signature": (
                    lease.days_before_expiry_to_auto_send_signature
                    or settings.LEASE_DEFAULT_SEND_FOR_SIGNATURE_DAYS
                ),
                "renewal_term_months": term,
            },
            "utilities_included": list(lease.utilities_included or []),
            "pet_policy": dict(lease.pet_policy or {}),
            "co_tenants": list(lease.co_tenants or []),
            "legal_terms": dict(lease.legal_terms or {}),
        }
