from django.apps import AppConfig


class LeasesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.leases"
    verbose_name = "Leases"

    def ready(self):
        from .documents import connect_handlers

        connect_handlers()
