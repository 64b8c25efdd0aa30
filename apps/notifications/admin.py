from django.contrib import admin

from .models import Notification, NotificationLog


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "recipient", "channel", "category", "is_read", "created_at")
    list_filter = ("channel", "category", "is_read")
    search_fields = ("title", "body", "recipient__username", "recipient__email")


@admin.register(NotificationLog)
class NotificationLogAdmin(admin.ModelAdmin):
    list_display = ("channel", "status", "recipient", "subject", "source", "created_at")
    list_filter = ("channel", "status", "source")
    search_fields = ("recipient", "subject")
    readonly_fields = ("channel", "status", "recipient", "subject", "body_preview", "error_message", "source")
