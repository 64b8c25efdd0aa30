from django.contrib import admin

from .models import Property, Unit


class UnitInline(admin.TabularInline):
    model = Unit
    extra = 0


@admin.register(Property)
class PropertyAdmin(admin.ModelAdmin):
    list_display = ("name", "client", "property_type", "city", "state", "managed_by", "is_active")
    list_filter = ("property_type", "state", "is_active", "client")
    search_fields = ("name", "address_line1", "city")
    inlines = [UnitInline]


@admin.register(Unit)
class UnitAdmin(admin.ModelAdmin):
    list_display = ("__str__", "status")
    list_filter = ("status", "property")
    search_fields = ("unit_number", "property__name")
