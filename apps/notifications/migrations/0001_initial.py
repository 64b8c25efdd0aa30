import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "channel",
                    models.CharField(
                        choices=[("in_app", "In-App"), ("email", "Email")],
                        default="in_app",
                        max_length=10,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("lease", "Lease"),
                            ("approval", "Approval"),
                            ("esignature", "E-Signature"),
                            ("system", "System"),
                        ],
                        default="system",
                        max_length=15,
                    ),
                ),
                ("title", models.CharField(max_length=255)),
                ("body", models.TextField()),
                ("is_read", models.BooleanField(db_index=True, default=False)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("action_url", models.CharField(blank=True, default="", max_length=500)),
                (
                    "recipient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="NotificationLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("channel", models.CharField(default="email", max_length=5)),
                ("status", models.CharField(choices=[("sent", "Sent"), ("failed", "Failed")], max_length=6)),
                ("recipient", models.CharField(help_text="Email address", max_length=255)),
                ("subject", models.CharField(blank=True, default="", max_length=500)),
                (
                    "body_preview",
                    models.TextField(blank=True, default="", help_text="First 500 chars of the message body"),
                ),
                ("error_message", models.TextField(blank=True, default="")),
                (
                    "source",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Where the dispatch originated: notification, invitation, esignature, etc.",
                        max_length=30,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
