from django.urls import path

from . import views

app_name = "lease_webhooks"

urlpatterns = [
    path("esignature/<slug:provider>/", views.esignature_webhook, name="esignature_webhook"),
]
