from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path

from apps.core.views import health_check, liveness_check, readiness_check

urlpatterns = [
    # Health check endpoints for container orchestration
    path("health/", health_check, name="health_check"),
    path("live/", liveness_check, name="liveness_check"),
    path("ready/", readiness_check, name="readiness_check"),
    # Django admin
    path("django-admin/", admin.site.urls),
    path("api/", include("apps.leases.urls")),
    path("webhooks/", include("apps.leases.urls_webhooks")),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
