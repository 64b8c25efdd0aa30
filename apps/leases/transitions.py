"""
Lease status transitions and the preconditions guarding them.

These helpers only validate and set ``status``; persisting, auditing and side
effects belong to the calling service.
"""

from apps.core.exceptions import ConflictError, ValidationError

from .models import ExistingUser

ALLOWED_TRANSITIONS = {
    "draft": {"pending_signature", "active", "cancelled"},
    "draft_renewal": {"ready_for_signature", "pending_signature", "active", "cancelled"},
    "ready_for_signature": {"pending_signature", "active", "cancelled"},
    "pending_signature": {"active", "draft", "cancelled"},
    "active": {"terminated", "expired"},
    "terminated": set(),
    "cancelled": set(),
    "expired": set(),
}

APPROVAL_ERRORS = {
    "pending": "Lease cannot be activated while changes are pending approval.",
    "rejected": "Lease cannot be activated because its approval was rejected.",
    "draft": "Lease cannot be activated while its approval is still in draft status.",
}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(lease, target):
    if lease.status == target == "active":
        raise ConflictError("Lease is already active.")
    if not can_transition(lease.status, target):
        raise ValidationError(
            f"Cannot move a lease from '{lease.status}' to '{target}'.",
            {"status": [f"Current status is {lease.status}."]},
        )


def enforce_approval(lease):
    if lease.approval_status != "approved":
        message = APPROVAL_ERRORS.get(
            lease.approval_status, f"Lease approval status is {lease.approval_status}."
        )
        raise ValidationError(message, {"approval_status": [lease.approval_status]})


def check_readiness(lease, require_signature=False):
    errors = {}
    if not lease.start_date:
        errors["duration.start_date"] = ["Start date is required."]
    if not lease.end_date:
        errors["duration.end_date"] = ["End date is required."]
    if not isinstance(lease.tenant_ref, ExistingUser):
        errors["tenant_id"] = ["The tenant has not accepted their invitation yet."]
    if require_signature and not lease.signatures.exists():
        errors["signatures"] = ["At least one valid signature is required."]
    if errors:
        raise ValidationError("Lease is not ready for activation.", errors)


def ensure_can_activate(lease, require_signature=False):
    validate_transition(lease, "active")
    enforce_approval(lease)
    check_readiness(lease, require_signature=require_signature)


def move_to(lease, target):
    """Validate and set ``lease.status``; returns the fields to save."""
    validate_transition(lease, target)
    lease.status = target
    return ["status"]
