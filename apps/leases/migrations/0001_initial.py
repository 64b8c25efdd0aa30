import uuid
from decimal import Decimal

import django.core.serializers.json
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import apps.leases.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        ("properties", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Lease",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("deleted_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                (
                    "luid",
                    models.CharField(
                        default=apps.leases.models.generate_luid, editable=False, max_length=32, unique=True
                    ),
                ),
                (
                    "lease_number",
                    models.CharField(db_index=True, default=apps.leases.models.generate_lease_number, max_length=32),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("draft_renewal", "Draft Renewal"),
                            ("pending_signature", "Pending Signature"),
                            ("ready_for_signature", "Ready for Signature"),
                            ("active", "Active"),
                            ("expired", "Expired"),
                            ("terminated", "Terminated"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=20,
                    ),
                ),
                (
                    "approval_status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("pending", "Pending Approval"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=10,
                    ),
                ),
                (
                    "lease_type",
                    models.CharField(
                        choices=[("fixed", "Fixed Term"), ("month_to_month", "Month to Month")],
                        default="fixed",
                        max_length=15,
                    ),
                ),
                ("template_type", models.CharField(blank=True, default="residential-single-family", max_length=50)),
                (
                    "co_tenants",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text='e.g. [{"name": "...", "email": "...", "phone": "..."}]',
                    ),
                ),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(db_index=True)),
                ("move_in_date", models.DateField(blank=True, null=True)),
                ("move_out_date", models.DateField(blank=True, null=True)),
                ("termination_date", models.DateField(blank=True, null=True)),
                ("termination_reason", models.TextField(blank=True, default="")),
                ("monthly_rent", models.DecimalField(decimal_places=2, max_digits=10)),
                ("security_deposit", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                ("rent_due_day", models.PositiveSmallIntegerField(default=1)),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("late_fee_amount", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                (
                    "late_fee_type",
                    models.CharField(
                        choices=[("flat", "Flat Amount"), ("percent", "Percentage of Rent"), ("daily", "Daily Amount")],
                        default="flat",
                        max_length=10,
                    ),
                ),
                ("late_fee_grace_days", models.PositiveSmallIntegerField(default=5)),
                ("auto_renew", models.BooleanField(default=False)),
                ("renewal_require_approval", models.BooleanField(default=True)),
                ("days_before_expiry_to_generate_renewal", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("enable_auto_send_for_signature", models.BooleanField(default=False)),
                ("days_before_expiry_to_auto_send_signature", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("renewal_term_months", models.PositiveSmallIntegerField(blank=True, null=True)),
                (
                    "pet_policy",
                    models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                ("utilities_included", models.JSONField(blank=True, default=list)),
                (
                    "legal_terms",
                    models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder),
                ),
                ("internal_notes", models.TextField(blank=True, default="")),
                (
                    "signing_method",
                    models.CharField(
                        choices=[("pending", "Not Decided"), ("manual", "Manual"), ("electronic", "Electronic")],
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("esign_provider", models.CharField(blank=True, default="", max_length=30)),
                ("esign_envelope_id", models.CharField(blank=True, db_index=True, default="", max_length=100)),
                (
                    "esign_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("draft", "Draft"),
                            ("sent", "Sent"),
                            ("completed", "Completed"),
                            ("declined", "Declined"),
                            ("voided", "Voided"),
                            ("failed", "Failed"),
                        ],
                        default="",
                        max_length=10,
                    ),
                ),
                ("esign_sent_at", models.DateTimeField(blank=True, null=True)),
                ("esign_completed_at", models.DateTimeField(blank=True, null=True)),
                ("esign_error_message", models.TextField(blank=True, default="")),
                (
                    "pending_changes",
                    models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True),
                ),
                ("auto_send_failure_reason", models.CharField(blank=True, default="", max_length=50)),
                ("auto_send_failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="leases", to="accounts.client"
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="leases",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "tenant_invitation",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="leases",
                        to="accounts.invitation",
                    ),
                ),
                (
                    "rental_property",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="leases", to="properties.property"
                    ),
                ),
                (
                    "unit",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="leases",
                        to="properties.unit",
                    ),
                ),
                (
                    "previous_lease",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="renewals",
                        to="leases.lease",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="leases_lease_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="leases_lease_updated",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "deleted_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="leases_lease_deleted",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-start_date"],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            ~models.Q(status="active")
                            | models.Q(approval_status="approved")
                            | models.Q(approval_status="pending", pending_changes__isnull=False)
                        ),
                        name="lease_active_requires_approval",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(pending_changes__isnull=True) | models.Q(approval_status="pending"),
                        name="lease_pending_changes_only_while_pending",
                    ),
                    models.CheckConstraint(
                        condition=(
                            models.Q(tenant__isnull=False, tenant_invitation__isnull=True)
                            | models.Q(tenant__isnull=True, tenant_invitation__isnull=False)
                        ),
                        name="lease_single_tenant_reference",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LeaseSignature",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("tenant", "Tenant"),
                            ("co_tenant", "Co-Tenant"),
                            ("property_manager", "Property Manager"),
                            ("landlord", "Landlord"),
                        ],
                        max_length=20,
                    ),
                ),
                ("co_tenant_name", models.CharField(blank=True, default="", max_length=200)),
                ("co_tenant_email", models.EmailField(blank=True, default="", max_length=254)),
                (
                    "signature_method",
                    models.CharField(
                        choices=[("manual", "Manual"), ("electronic", "Electronic")],
                        default="electronic",
                        max_length=10,
                    ),
                ),
                ("signed_at", models.DateTimeField()),
                (
                    "lease",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="signatures", to="leases.lease"
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="lease_signatures",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["signed_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(user__isnull=False),
                        fields=("lease", "user"),
                        name="unique_signature_per_user",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(user__isnull=True) & ~models.Q(co_tenant_email=""),
                        fields=("lease", "co_tenant_email"),
                        name="unique_signature_per_co_tenant_email",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LeaseApprovalEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("approved", "Approved"),
                            ("auto_approved", "Auto-Approved"),
                            ("rejected", "Rejected"),
                            ("overridden", "Overridden"),
                        ],
                        max_length=15,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "lease",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="approval_entries",
                        to="leases.lease",
                    ),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        help_text="Empty for actions taken by the system.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="lease_approval_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "verbose_name_plural": "Lease approval entries",
            },
        ),
        migrations.CreateModel(
            name="LeaseActivity",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("action", models.CharField(max_length=40)),
                ("changes", models.JSONField(blank=True, default=list)),
                (
                    "lease",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="activity", to="leases.lease"
                    ),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="lease_activity",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "verbose_name_plural": "Lease activity",
            },
        ),
        migrations.CreateModel(
            name="LeaseDocument",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "document_type",
                    models.CharField(
                        choices=[("lease_agreement", "Lease Agreement"), ("addendum", "Addendum"), ("other", "Other")],
                        default="lease_agreement",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("active", "Active"),
                            ("failed", "Failed"),
                            ("superseded", "Superseded"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("file_key", models.CharField(blank=True, default="", max_length=500)),
                ("file_size", models.PositiveIntegerField(default=0)),
                ("error_message", models.TextField(blank=True, default="")),
                ("generated_at", models.DateTimeField(blank=True, null=True)),
                (
                    "lease",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="documents", to="leases.lease"
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
