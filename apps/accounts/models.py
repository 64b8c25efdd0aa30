import secrets
import uuid

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone

from apps.core.models import TimeStampedModel


def generate_cuid():
    return secrets.token_hex(6).upper()


class Client(TimeStampedModel):
    """A property-management organization; every lease is scoped to one."""

    cuid = models.CharField(max_length=32, unique=True, default=generate_cuid, editable=False)
    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True, db_index=True)

    # Sender identity used for e-signature requests (falls back to settings)
    company_email = models.EmailField(blank=True, default="")
    legal_entity_name = models.CharField(max_length=200, blank=True, default="")

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class User(AbstractUser):
    ROLE_CHOICES = [
        ("admin", "Admin"),
        ("manager", "Manager"),
        ("staff", "Staff"),
        ("tenant", "Tenant"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    client = models.ForeignKey(
        Client, on_delete=models.PROTECT, null=True, blank=True, related_name="users"
    )
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default="tenant", db_index=True)
    supervisor = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="supervised_users",
        limit_choices_to={"role__in": ["admin", "manager"]},
    )

    class Meta:
        ordering = ["last_name", "first_name"]

    def __str__(self):
        return self.get_full_name() or self.username

    @property
    def is_tenant(self):
        return self.role == "tenant"

    @property
    def is_approval_role(self):
        return self.role in ("admin", "manager")

    @property
    def is_staff_role(self):
        return self.role == "staff"


class Invitation(TimeStampedModel):
    """Invitation for a tenant who does not have an account yet."""

    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("accepted", "Accepted"),
        ("revoked", "Revoked"),
        ("expired", "Expired"),
    ]

    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name="invitations")
    invitee_email = models.EmailField(db_index=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    role = models.CharField(max_length=10, choices=User.ROLE_CHOICES, default="tenant")
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="pending", db_index=True)
    token = models.CharField(max_length=64, unique=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    invited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_invitations",
    )
    accepted_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="accepted_invitations",
    )
    accepted_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Invitation for {self.invitee_email} ({self.status})"

    def save(self, *args, **kwargs):
        if not self.token:
            self.token = secrets.token_urlsafe(32)
        if not self.expires_at:
            self.expires_at = timezone.now() + timezone.timedelta(days=7)
        super().save(*args, **kwargs)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_expired(self):
        return self.expires_at is not None and timezone.now() >= self.expires_at

    @property
    def is_pending(self):
        return self.status == "pending" and not self.is_expired
