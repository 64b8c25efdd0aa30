from django.contrib import admin

from .models import Lease, LeaseActivity, LeaseApprovalEntry, LeaseDocument, LeaseSignature


class LeaseSignatureInline(admin.TabularInline):
    model = LeaseSignature
    extra = 0
    fields = ["role", "user", "co_tenant_name", "co_tenant_email", "signature_method", "signed_at"]
    readonly_fields = ["signed_at"]


class LeaseApprovalEntryInline(admin.TabularInline):
    model = LeaseApprovalEntry
    extra = 0
    fields = ["action", "actor", "notes", "created_at"]
    readonly_fields = ["action", "actor", "notes", "created_at"]
    can_delete = False


class LeaseActivityInline(admin.TabularInline):
    model = LeaseActivity
    extra = 0
    fields = ["action", "actor", "changes", "created_at"]
    readonly_fields = ["action", "actor", "changes", "created_at"]
    can_delete = False


class LeaseDocumentInline(admin.TabularInline):
    model = LeaseDocument
    extra = 0
    fields = ["document_type", "status", "file_key", "file_size", "generated_at"]
    readonly_fields = ["file_key", "file_size", "generated_at"]


@admin.register(Lease)
class LeaseAdmin(admin.ModelAdmin):
    list_display = (
        "lease_number", "client", "tenant", "rental_property", "status",
        "approval_status", "start_date", "end_date", "monthly_rent",
    )
    list_filter = ("status", "approval_status", "signing_method", "auto_renew", "client")
    search_fields = (
        "luid", "lease_number", "tenant__username", "tenant__email",
        "tenant_invitation__invitee_email", "rental_property__name",
    )
    readonly_fields = (
        "luid", "status", "approval_status", "pending_changes",
        "esign_envelope_id", "esign_status", "esign_sent_at", "esign_completed_at",
        "previous_lease", "created_at", "updated_at",
    )
    raw_id_fields = ("tenant", "tenant_invitation", "rental_property", "unit")
    inlines = [
        LeaseSignatureInline,
        LeaseDocumentInline,
        LeaseApprovalEntryInline,
        LeaseActivityInline,
    ]

    fieldsets = (
        ("Core Information", {
            "fields": (
                "luid", "lease_number", "client", "status", "approval_status",
                "lease_type", "template_type", "previous_lease",
            )
        }),
        ("Parties & Premises", {
            "fields": ("tenant", "tenant_invitation", "co_tenants", "rental_property", "unit")
        }),
        ("Duration", {
            "fields": (
                "start_date", "end_date", "move_in_date", "move_out_date",
                "termination_date", "termination_reason",
            )
        }),
        ("Rent & Fees", {
            "fields": (
                "monthly_rent", "security_deposit", "rent_due_day", "currency",
                "late_fee_amount", "late_fee_type", "late_fee_grace_days",
            )
        }),
        ("Renewal Options", {
            "fields": (
                "auto_renew", "renewal_require_approval",
                "days_before_expiry_to_generate_renewal",
                "enable_auto_send_for_signature",
                "days_before_expiry_to_auto_send_signature",
                "renewal_term_months",
                "auto_send_failure_reason", "auto_send_failed_at",
            ),
            "classes": ("collapse",),
        }),
        ("Policies", {
            "fields": ("pet_policy", "utilities_included", "legal_terms", "internal_notes"),
            "classes": ("collapse",),
        }),
        ("Signature Workflow", {
            "fields": (
                "signing_method", "esign_provider", "esign_envelope_id", "esign_status",
                "esign_sent_at", "esign_completed_at", "esign_error_message",
            ),
        }),
        ("Approval", {
            "fields": ("pending_changes", "created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    def get_queryset(self, request):
        return Lease.all_objects.select_related("client", "tenant", "rental_property")


@admin.register(LeaseApprovalEntry)
class LeaseApprovalEntryAdmin(admin.ModelAdmin):
    list_display = ("lease", "action", "actor", "created_at")
    list_filter = ("action",)
    search_fields = ("lease__lease_number", "notes")


@admin.register(LeaseDocument)
class LeaseDocumentAdmin(admin.ModelAdmin):
    list_display = ("lease", "document_type", "status", "file_size", "generated_at")
    list_filter = ("document_type", "status")
    search_fields = ("lease__lease_number", "file_key")
