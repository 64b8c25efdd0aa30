import secrets
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.models import AuditMixin, SoftDeleteMixin, TimeStampedModel

# Statuses a renewal can be in while it still blocks another renewal
NON_TERMINAL_RENEWAL_STATUSES = (
    "draft_renewal",
    "pending_signature",
    "ready_for_signature",
    "active",
)
CLOSED_STATUSES = ("terminated", "cancelled", "expired")
CANCELLABLE_STATUSES = ("draft", "draft_renewal", "pending_signature", "ready_for_signature")
DELETABLE_STATUSES = ("draft", "cancelled")


def generate_luid():
    return secrets.token_hex(8).upper()


def generate_lease_number():
    return f"LS-{timezone.now().year}-{secrets.token_hex(3).upper()}"


@dataclass(frozen=True)
class ExistingUser:
    user_id: object


@dataclass(frozen=True)
class PendingInvitation:
    invitation_id: object


class Lease(TimeStampedModel, AuditMixin, SoftDeleteMixin):
    STATUS_CHOICES = [
        ("draft", "Draft"),
        ("draft_renewal", "Draft Renewal"),
        ("pending_signature", "Pending Signature"),
        ("ready_for_signature", "Ready for Signature"),
        ("active", "Active"),
        ("expired", "Expired"),
        ("terminated", "Terminated"),
        ("cancelled", "Cancelled"),
    ]
    APPROVAL_STATUS_CHOICES = [
        ("draft", "Draft"),
        ("pending", "Pending Approval"),
        ("approved", "Approved"),
        ("rejected", "Rejected"),
    ]
    LEASE_TYPE_CHOICES = [
        ("fixed", "Fixed Term"),
        ("month_to_month", "Month to Month"),
    ]
    LATE_FEE_TYPE_CHOICES = [
        ("flat", "Flat Amount"),
        ("percent", "Percentage of Rent"),
        ("daily", "Daily Amount"),
    ]
    SIGNING_METHOD_CHOICES = [
        ("pending", "Not Decided"),
        ("manual", "Manual"),
        ("electronic", "Electronic"),
    ]
    ESIGNATURE_STATUS_CHOICES = [
        ("draft", "Draft"),
        ("sent", "Sent"),
        ("completed", "Completed"),
        ("declined", "Declined"),
        ("voided", "Voided"),
        ("failed", "Failed"),
    ]

    # Identity
    luid = models.CharField(max_length=32, unique=True, default=generate_luid, editable=False)
    client = models.ForeignKey("accounts.Client", on_delete=models.PROTECT, related_name="leases")
    lease_number = models.CharField(max_length=32, default=generate_lease_number, db_index=True)

    # Lifecycle
    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default="draft", db_index=True
    )
    approval_status = models.CharField(
        max_length=10, choices=APPROVAL_STATUS_CHOICES, default="draft", db_index=True
    )
    lease_type = models.CharField(max_length=15, choices=LEASE_TYPE_CHOICES, default="fixed")
    template_type = models.CharField(max_length=50, blank=True, default="residential-single-family")

    # Parties: exactly one of tenant / tenant_invitation is set
    tenant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="leases",
    )
    tenant_invitation = models.ForeignKey(
        "accounts.Invitation",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="leases",
    )
    co_tenants = models.JSONField(
        default=list, blank=True, help_text='e.g. [{"name": "...", "email": "...", "phone": "..."}]'
    )

    rental_property = models.ForeignKey(
        "properties.Property", on_delete=models.PROTECT, related_name="leases"
    )
    unit = models.ForeignKey(
        "properties.Unit", on_delete=models.PROTECT, null=True, blank=True, related_name="leases"
    )

    # Duration
    start_date = models.DateField()
    end_date = models.DateField(db_index=True)
    move_in_date = models.DateField(null=True, blank=True)
    move_out_date = models.DateField(null=True, blank=True)
    termination_date = models.DateField(null=True, blank=True)
    termination_reason = models.TextField(blank=True, default="")

    # Fees
    monthly_rent = models.DecimalField(max_digits=10, decimal_places=2)
    security_deposit = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    rent_due_day = models.PositiveSmallIntegerField(default=1)
    currency = models.CharField(max_length=3, default="USD")
    late_fee_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    late_fee_type = models.CharField(max_length=10, choices=LATE_FEE_TYPE_CHOICES, default="flat")
    late_fee_grace_days = models.PositiveSmallIntegerField(default=5)

    # Renewal options
    auto_renew = models.BooleanField(default=False)
    renewal_require_approval = models.BooleanField(default=True)
    days_before_expiry_to_generate_renewal = models.PositiveSmallIntegerField(null=True, blank=True)
    enable_auto_send_for_signature = models.BooleanField(default=False)
    days_before_expiry_to_auto_send_signature = models.PositiveSmallIntegerField(
        null=True, blank=True
    )
    renewal_term_months = models.PositiveSmallIntegerField(null=True, blank=True)

    # Policies and terms
    pet_policy = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    utilities_included = models.JSONField(default=list, blank=True)
    legal_terms = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    internal_notes = models.TextField(blank=True, default="")

    # Signing
    signing_method = models.CharField(
        max_length=10, choices=SIGNING_METHOD_CHOICES, default="pending"
    )
    esign_provider = models.CharField(max_length=30, blank=True, default="")
    esign_envelope_id = models.CharField(max_length=100, blank=True, default="", db_index=True)
    esign_status = models.CharField(
        max_length=10, choices=ESIGNATURE_STATUS_CHOICES, blank=True, default=""
    )
    esign_sent_at = models.DateTimeField(null=True, blank=True)
    esign_completed_at = models.DateTimeField(null=True, blank=True)
    esign_error_message = models.TextField(blank=True, default="")

    # Approval staging
    pending_changes = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)

    # Renewal chain
    previous_lease = models.ForeignKey(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="renewals"
    )
    auto_send_failure_reason = models.CharField(max_length=50, blank=True, default="")
    auto_send_failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-start_date"]
        constraints = [
            # An active lease may carry staged changes awaiting approval
            models.CheckConstraint(
                condition=(
                    ~Q(status="active")
                    | Q(approval_status="approved")
                    | Q(approval_status="pending", pending_changes__isnull=False)
                ),
                name="lease_active_requires_approval",
            ),
            models.CheckConstraint(
                condition=Q(pending_changes__isnull=True) | Q(approval_status="pending"),
                name="lease_pending_changes_only_while_pending",
            ),
            models.CheckConstraint(
                condition=(
                    Q(tenant__isnull=False, tenant_invitation__isnull=True)
                    | Q(tenant__isnull=True, tenant_invitation__isnull=False)
                ),
                name="lease_single_tenant_reference",
            ),
        ]

    def __str__(self):
        return f"Lease {self.lease_number} ({self.status})"

    @property
    def tenant_ref(self):
        if self.tenant_id is not None:
            return ExistingUser(self.tenant_id)
        return PendingInvitation(self.tenant_invitation_id)

    @property
    def is_active(self):
        return self.status == "active"

    @property
    def is_closed(self):
        return self.status in CLOSED_STATUSES

    @property
    def is_renewal(self):
        return self.previous_lease_id is not None

    @property
    def active_agreement(self):
        return (
            self.documents.filter(document_type="lease_agreement", status="active")
            .order_by("-generated_at")
            .first()
        )

    @property
    def has_generated_document(self):
        return self.active_agreement is not None

    def days_until_expiry(self, today=None):
        today = today or timezone.localdate()
        return (self.end_date - today).days


class LeaseSignature(TimeStampedModel):
    """One entry per distinct signer: by user, or by co-tenant email when no user."""

    ROLE_CHOICES = [
        ("tenant", "Tenant"),
        ("co_tenant", "Co-Tenant"),
        ("property_manager", "Property Manager"),
        ("landlord", "Landlord"),
    ]
    METHOD_CHOICES = [
        ("manual", "Manual"),
        ("electronic", "Electronic"),
    ]

    lease = models.ForeignKey(Lease, on_delete=models.CASCADE, related_name="signatures")
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lease_signatures",
    )
    co_tenant_name = models.CharField(max_length=200, blank=True, default="")
    co_tenant_email = models.EmailField(blank=True, default="")
    signature_method = models.CharField(max_length=10, choices=METHOD_CHOICES, default="electronic")
    signed_at = models.DateTimeField()

    class Meta:
        ordering = ["signed_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["lease", "user"],
                condition=Q(user__isnull=False),
                name="unique_signature_per_user",
            ),
            models.UniqueConstraint(
                fields=["lease", "co_tenant_email"],
                condition=Q(user__isnull=True) & ~Q(co_tenant_email=""),
                name="unique_signature_per_co_tenant_email",
            ),
        ]

    def __str__(self):
        signer = self.user or self.co_tenant_email
        return f"{signer} ({self.get_role_display()}) signed {self.lease}"


class LeaseApprovalEntry(TimeStampedModel):
    """Append-only audit trail of approval actions (``approvalDetails``)."""

    ACTION_CHOICES = [
        ("created", "Created"),
        ("approved", "Approved"),
        ("auto_approved", "Auto-Approved"),
        ("rejected", "Rejected"),
        ("overridden", "Overridden"),
    ]

    lease = models.ForeignKey(Lease, on_delete=models.CASCADE, related_name="approval_entries")
    action = models.CharField(max_length=15, choices=ACTION_CHOICES)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lease_approval_entries",
        help_text="Empty for actions taken by the system.",
    )
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["created_at"]
        verbose_name_plural = "Lease approval entries"

    def __str__(self):
        return f"{self.get_action_display()} by {self.actor or 'System'}"


class LeaseActivity(TimeStampedModel):
    """Append-only modification log (``lastModifiedBy``)."""

    lease = models.ForeignKey(Lease, on_delete=models.CASCADE, related_name="activity")
    action = models.CharField(max_length=40)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lease_activity",
    )
    changes = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["created_at"]
        verbose_name_plural = "Lease activity"

    def __str__(self):
        return f"{self.action} by {self.actor or 'System'}"


class LeaseDocument(TimeStampedModel):
    DOCUMENT_TYPE_CHOICES = [
        ("lease_agreement", "Lease Agreement"),
        ("addendum", "Addendum"),
        ("other", "Other"),
    ]
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("active", "Active"),
        ("failed", "Failed"),
        ("superseded", "Superseded"),
    ]

    lease = models.ForeignKey(Lease, on_delete=models.CASCADE, related_name="documents")
    document_type = models.CharField(max_length=20, choices=DOCUMENT_TYPE_CHOICES, default="lease_agreement")
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="pending", db_index=True)
    file_key = models.CharField(max_length=500, blank=True, default="")
    file_size = models.PositiveIntegerField(default=0)
    error_message = models.TextField(blank=True, default="")
    generated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.get_document_type_display()} for {self.lease} ({self.status})"
