from django.conf import settings
from django.db import models

from apps.core.models import TimeStampedModel


class Notification(TimeStampedModel):
    CHANNEL_CHOICES = [
        ("in_app", "In-App"),
        ("email", "Email"),
    ]
    CATEGORY_CHOICES = [
        ("lease", "Lease"),
        ("approval", "Approval"),
        ("esignature", "E-Signature"),
        ("system", "System"),
    ]

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications"
    )
    channel = models.CharField(max_length=10, choices=CHANNEL_CHOICES, default="in_app")
    category = models.CharField(max_length=15, choices=CATEGORY_CHOICES, default="system")
    title = models.CharField(max_length=255)
    body = models.TextField()
    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)
    action_url = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.title} -> {self.recipient}"


class NotificationLog(TimeStampedModel):
    """Audit log for outbound email dispatches."""

    LOG_STATUS_CHOICES = [
        ("sent", "Sent"),
        ("failed", "Failed"),
    ]

    channel = models.CharField(max_length=5, default="email")
    status = models.CharField(max_length=6, choices=LOG_STATUS_CHOICES)
    recipient = models.CharField(max_length=255, help_text="Email address")
    subject = models.CharField(max_length=500, blank=True, default="")
    body_preview = models.TextField(
        blank=True, default="", help_text="First 500 chars of the message body"
    )
    error_message = models.TextField(blank=True, default="")
    source = models.CharField(
        max_length=30,
        blank=True,
        default="",
        help_text="Where the dispatch originated: notification, invitation, esignature, etc.",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.channel} to {self.recipient} ({self.status})"
