from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import Client, Invitation, User


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ("name", "cuid", "legal_entity_name", "company_email", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "cuid", "legal_entity_name")


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "first_name", "last_name", "client", "role", "is_active")
    list_filter = ("role", "is_active", "is_staff", "client")
    search_fields = ("username", "email", "first_name", "last_name")
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Property Manager", {
            "fields": ("client", "role", "supervisor"),
        }),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Property Manager", {
            "fields": ("client", "role", "email", "first_name", "last_name"),
        }),
    )


@admin.register(Invitation)
class InvitationAdmin(admin.ModelAdmin):
    list_display = ("invitee_email", "client", "role", "status", "expires_at", "accepted_at")
    list_filter = ("status", "role")
    search_fields = ("invitee_email", "first_name", "last_name")
    readonly_fields = ("token", "accepted_user", "accepted_at")
