from django.conf import settings
from django.db import models

from apps.core.models import AuditMixin, TimeStampedModel


class Property(TimeStampedModel, AuditMixin):
    PROPERTY_TYPE_CHOICES = [
        ("single_family", "Single Family"),
        ("multi_family", "Multi Family"),
        ("apartment", "Apartment Complex"),
        ("condo", "Condominium"),
        ("townhouse", "Townhouse"),
        ("commercial", "Commercial"),
    ]

    client = models.ForeignKey(
        "accounts.Client", on_delete=models.PROTECT, related_name="properties"
    )
    name = models.CharField(max_length=200)
    property_type = models.CharField(
        max_length=20, choices=PROPERTY_TYPE_CHOICES, default="single_family"
    )
    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=50)
    zip_code = models.CharField(max_length=10)
    is_active = models.BooleanField(default=True, db_index=True)
    managed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="managed_properties",
    )

    class Meta:
        verbose_name_plural = "Properties"
        ordering = ["name"]

    def __str__(self):
        return self.name

    @property
    def full_address(self):
        parts = [self.address_line1]
        if self.address_line2:
            parts.append(self.address_line2)
        parts.append(f"{self.city}, {self.state} {self.zip_code}")
        return ", ".join(parts)


class Unit(TimeStampedModel):
    STATUS_CHOICES = [
        ("vacant", "Vacant"),
        ("occupied", "Occupied"),
        ("maintenance", "Under Maintenance"),
    ]

    property = models.ForeignKey(Property, on_delete=models.CASCADE, related_name="units")
    unit_number = models.CharField(max_length=20)
    status = models.CharField(max_length=15, choices=STATUS_CHOICES, default="vacant", db_index=True)

    class Meta:
        ordering = ["property", "unit_number"]
        unique_together = [("property", "unit_number")]

    def __str__(self):
        return f"{self.property.name} - Unit {self.unit_number}"
