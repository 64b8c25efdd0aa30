"""
Field mutation policy for lease updates.

Every updatable path is listed once in ``FIELD_RULES`` with its classification:

* immutable    never accepted, whatever the status or role
* high_impact  changes legal or financial terms; staff changes are staged
* operational  applied directly once the status allows edits at all

``STATUS_SCOPES`` then narrows what a given lease status accepts. Both tables
are consulted before anything is written.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import FrozenSet, Optional

from django.core.exceptions import ValidationError as DjangoValidationError

from apps.core.exceptions import ForbiddenError, ValidationError

IMMUTABLE = "immutable"
HIGH_IMPACT = "high_impact"
OPERATIONAL = "operational"

# Bookkeeping keys stored next to staged changes in ``Lease.pending_changes``
PENDING_META_KEYS = ("updated_by", "updated_at", "display_name", "previous_approval_status")


@dataclass(frozen=True)
class FieldRule:
    path: str
    classification: str
    attr: Optional[str] = None

    @property
    def signature_invalidating(self):
        return self.classification == HIGH_IMPACT


FIELD_RULES = (
    # Identity, lifecycle and ledgers are owned by the services
    FieldRule("luid", IMMUTABLE),
    FieldRule("lease_number", IMMUTABLE),
    FieldRule("client_id", IMMUTABLE),
    FieldRule("created_by", IMMUTABLE),
    FieldRule("previous_lease_id", IMMUTABLE),
    FieldRule("status", IMMUTABLE),
    FieldRule("approval_status", IMMUTABLE),
    FieldRule("pending_changes", IMMUTABLE),
    FieldRule("approval_details", IMMUTABLE),
    FieldRule("last_modified_by", IMMUTABLE),
    FieldRule("signatures", IMMUTABLE),
    FieldRule("auto_send_info", IMMUTABLE),
    FieldRule("duration.termination_date", IMMUTABLE),
    FieldRule("e_signature.envelope_id", IMMUTABLE),
    FieldRule("e_signature.status", IMMUTABLE),
    FieldRule("e_signature.sent_at", IMMUTABLE),
    FieldRule("e_signature.completed_at", IMMUTABLE),
    FieldRule("e_signature.error_message", IMMUTABLE),
    # Legal and financial terms
    FieldRule("tenant_id", HIGH_IMPACT, "tenant_id"),
    FieldRule("property.id", HIGH_IMPACT, "rental_property_id"),
    FieldRule("property.unit_id", HIGH_IMPACT, "unit_id"),
    FieldRule("duration.start_date", HIGH_IMPACT, "start_date"),
    FieldRule("duration.end_date", HIGH_IMPACT, "end_date"),
    FieldRule("duration.move_in_date", HIGH_IMPACT, "move_in_date"),
    FieldRule("duration.move_out_date", HIGH_IMPACT, "move_out_date"),
    FieldRule("fees.monthly_rent", HIGH_IMPACT, "monthly_rent"),
    FieldRule("fees.security_deposit", HIGH_IMPACT, "security_deposit"),
    FieldRule("fees.rent_due_day", HIGH_IMPACT, "rent_due_day"),
    FieldRule("fees.currency", HIGH_IMPACT, "currency"),
    FieldRule("fees.late_fee_amount", HIGH_IMPACT, "late_fee_amount"),
    FieldRule("fees.late_fee_type", HIGH_IMPACT, "late_fee_type"),
    FieldRule("fees.late_fee_grace_days", HIGH_IMPACT, "late_fee_grace_days"),
    FieldRule("legal_terms", HIGH_IMPACT, "legal_terms"),
    FieldRule("lease_type", HIGH_IMPACT, "lease_type"),
    FieldRule("co_tenants", HIGH_IMPACT, "co_tenants"),
    FieldRule("pet_policy", HIGH_IMPACT, "pet_policy"),
    FieldRule("utilities_included", HIGH_IMPACT, "utilities_included"),
    # Day-to-day metadata
    FieldRule("internal_notes", OPERATIONAL, "internal_notes"),
    FieldRule("signing_method", OPERATIONAL, "signing_method"),
    FieldRule("template_type", OPERATIONAL, "template_type"),
    FieldRule("e_signature.provider", OPERATIONAL, "esign_provider"),
    FieldRule("renewal_options.auto_renew", OPERATIONAL, "auto_renew"),
    FieldRule("renewal_options.require_approval", OPERATIONAL, "renewal_require_approval"),
    FieldRule(
        "renewal_options.days_before_expiry_to_generate_renewal",
        OPERATIONAL,
        "days_before_expiry_to_generate_renewal",
    ),
    FieldRule(
        "renewal_options.enable_auto_send_for_signature",
        OPERATIONAL,
        "enable_auto_send_for_signature",
    ),
    FieldRule(
        "renewal_options.days_before_expiry_to_auto_send_signature",
        OPERATIONAL,
        "days_before_expiry_to_auto_send_signature",
    ),
    FieldRule("renewal_options.renewal_term_months", OPERATIONAL, "renewal_term_months"),
)

RULES_BY_PATH = {rule.path: rule for rule in FIELD_RULES}
_BRANCHES = frozenset(
    rule.path.rsplit(".", 1)[0] for rule in FIELD_RULES if "." in rule.path
)

ALL_FIELDS = None

# Terms that define an executed lease; changing them needs a new lease or renewal
ACTIVE_LOCKED_PATHS = frozenset(
    {
        "tenant_id",
        "property.id",
        "property.unit_id",
        "duration.start_date",
        "duration.end_date",
        "duration.move_in_date",
        "duration.move_out_date",
        "fees.monthly_rent",
        "fees.security_deposit",
        "fees.currency",
        "lease_type",
    }
)


@dataclass(frozen=True)
class StatusScope:
    handler: str
    allowed: Optional[FrozenSet[str]] = ALL_FIELDS
    excluded: FrozenSet[str] = frozenset()
    approval_only: bool = False
    reject_signature_invalidating: bool = False


_DRAFT = StatusScope("draft")
_PENDING_SIGNATURE = StatusScope(
    "pending_signature", approval_only=True, reject_signature_invalidating=True
)
_CLOSED = StatusScope(
    "closed",
    allowed=frozenset({"internal_notes", "duration.move_out_date"}),
    approval_only=True,
)

STATUS_SCOPES = {
    "draft": _DRAFT,
    "draft_renewal": _DRAFT,
    "active": StatusScope("active", excluded=ACTIVE_LOCKED_PATHS),
    "pending_signature": _PENDING_SIGNATURE,
    "ready_for_signature": _PENDING_SIGNATURE,
    "terminated": _CLOSED,
    "cancelled": _CLOSED,
    "expired": _CLOSED,
}


def flatten_payload(payload, prefix=""):
    """
    Turn a nested or dotted update payload into ``{path: value}``.

    A path listed in ``FIELD_RULES`` is a leaf even when its value is a dict
    (``legal_terms``, ``pet_policy``). Unknown paths are reported all at once.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Update payload must be an object.")

    changes = {}
    unknown = []
    _walk(payload, prefix, changes, unknown)
    if unknown:
        raise ValidationError(
            f"Unknown lease field(s): {', '.join(sorted(unknown))}",
            {path: ["Unknown field."] for path in unknown},
        )
    return changes


def _walk(payload, prefix, changes, unknown):
    for key, value in payload.items():
        path = f"{prefix}{key}"
        if path in RULES_BY_PATH:
            changes[path] = value
        elif path in _BRANCHES and isinstance(value, dict):
            _walk(value, f"{path}.", changes, unknown)
        else:
            unknown.append(path)


def classify(changes):
    """Split flattened changes into ``{classification: {path: value}}``."""
    groups = {IMMUTABLE: {}, HIGH_IMPACT: {}, OPERATIONAL: {}}
    for path, value in changes.items():
        groups[RULES_BY_PATH[path].classification][path] = value
    return groups


def reject_immutable(changes):
    offending = sorted(p for p in changes if RULES_BY_PATH[p].classification == IMMUTABLE)
    if offending:
        raise ValidationError(
            f"Immutable field(s) cannot be updated: {', '.join(offending)}",
            {path: ["This field cannot be changed."] for path in offending},
        )


def scope_for(status):
    try:
        return STATUS_SCOPES[status]
    except KeyError:
        raise ValidationError(f"Lease in status '{status}' cannot be updated.") from None


def enforce_status_scope(status, changes, actor):
    """Raise unless ``actor`` may change every path in ``changes`` while the lease is ``status``."""
    scope = scope_for(status)

    if scope.approval_only and not actor.is_approval_role:
        raise ForbiddenError(
            f"Only an admin or manager can edit a lease in status '{status}'."
        )

    rejected = []
    for path in changes:
        if scope.allowed is not ALL_FIELDS and path not in scope.allowed:
            rejected.append(path)
        elif path in scope.excluded:
            rejected.append(path)
        elif scope.reject_signature_invalidating and RULES_BY_PATH[path].signature_invalidating:
            rejected.append(path)

    if rejected:
        rejected.sort()
        raise ValidationError(
            f"Field(s) cannot be changed while the lease is {status}: {', '.join(rejected)}",
            {path: [f"Not editable while {status}."] for path in rejected},
        )
    return scope


def prepare_update(lease, payload, actor):
    """Flatten, reject immutable paths and enforce the status scope."""
    changes = flatten_payload(payload)
    if not changes:
        raise ValidationError("No changes supplied.")
    reject_immutable(changes)
    scope = enforce_status_scope(lease.status, changes, actor)
    validate_terms(lease, changes)
    return changes, scope


def staged_changes(pending):
    """The field changes held in ``pending_changes``, without bookkeeping keys."""
    if not pending:
        return {}
    payload = {k: v for k, v in pending.items() if k not in PENDING_META_KEYS}
    return flatten_payload(payload)


def _coerce(lease, rule, value):
    field = lease._meta.get_field(rule.attr[:-3] if rule.attr.endswith("_id") else rule.attr)
    if field.is_relation:
        field = field.target_field
    try:
        return field.to_python(value)
    except DjangoValidationError as e:
        raise ValidationError(
            f"Invalid value for {rule.path}.", {rule.path: list(e.messages)}
        ) from None


def apply_changes(lease, changes):
    """Write flattened ``changes`` onto ``lease`` (unsaved); returns the model fields touched."""
    touched = []
    for path, value in changes.items():
        rule = RULES_BY_PATH[path]
        setattr(lease, rule.attr, _coerce(lease, rule, value))
        touched.append(rule.attr)
        if rule.attr == "tenant_id":
            lease.tenant_invitation = None
            touched.append("tenant_invitation")
    return touched


def _resulting(lease, changes, path):
    rule = RULES_BY_PATH[path]
    if path in changes:
        return _coerce(lease, rule, changes[path])
    return getattr(lease, rule.attr)


def validate_terms(lease, changes):
    """Check the lease terms as they would read after ``changes`` are applied."""
    errors = {}

    start = _resulting(lease, changes, "duration.start_date")
    end = _resulting(lease, changes, "duration.end_date")
    if start and end and start >= end:
        errors["duration.end_date"] = ["End date must be after the start date."]

    move_in = _resulting(lease, changes, "duration.move_in_date")
    move_out = _resulting(lease, changes, "duration.move_out_date")
    if move_in and move_out and move_out < move_in:
        errors["duration.move_out_date"] = ["Move-out date cannot be before the move-in date."]

    for path in ("fees.monthly_rent", "fees.security_deposit", "fees.late_fee_amount"):
        if path in changes:
            amount = _decimal(changes[path])
            if amount is None or amount < 0:
                errors[path] = ["Amount must be a non-negative number."]

    if "fees.rent_due_day" in changes:
        day = _resulting(lease, changes, "fees.rent_due_day")
        if day is None or not 1 <= day <= 31:
            errors["fees.rent_due_day"] = ["Rent due day must be between 1 and 31."]

    if "tenant_id" in changes:
        from apps.accounts.models import User

        tenant_id = _resulting(lease, changes, "tenant_id")
        if not User.objects.filter(pk=tenant_id, client_id=lease.client_id, role="tenant").exists():
            errors["tenant_id"] = ["Tenant not found in this client."]

    if "property.id" in changes or "property.unit_id" in changes:
        errors.update(_validate_location(lease, changes))

    if errors:
        raise ValidationError("Lease update is invalid.", errors)


def _validate_location(lease, changes):
    from apps.properties.models import Property, Unit

    errors = {}
    property_id = _resulting(lease, changes, "property.id")
    if not Property.objects.filter(pk=property_id, client_id=lease.client_id, is_active=True).exists():
        errors["property.id"] = ["Property not found or inactive."]

    unit_id = _resulting(lease, changes, "property.unit_id")
    if unit_id and not Unit.objects.filter(pk=unit_id, property_id=property_id).exists():
        errors["property.unit_id"] = ["Unit does not belong to the property."]
    return errors


def _decimal(value):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None
