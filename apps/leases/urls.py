from django.urls import path

from . import views

app_name = "leases"

urlpatterns = [
    path("leases/", views.lease_collection, name="lease_collection"),
    path("leases/pending-approvals/", views.pending_approvals, name="pending_approvals"),
    path("leases/expiring/", views.expiring_leases, name="expiring_leases"),
    path("leases/bulk-approve/", views.bulk_approve, name="bulk_approve"),
    path("leases/bulk-reject/", views.bulk_reject, name="bulk_reject"),
    path("leases/<str:luid>/", views.lease_detail, name="lease_detail"),
    path("leases/<str:luid>/activate/", views.lease_activate, name="lease_activate"),
    path("leases/<str:luid>/terminate/", views.lease_terminate, name="lease_terminate"),
    path("leases/<str:luid>/cancel/", views.lease_cancel, name="lease_cancel"),
    path("leases/<str:luid>/approve/", views.lease_approve, name="lease_approve"),
    path("leases/<str:luid>/reject/", views.lease_reject, name="lease_reject"),
    path("leases/<str:luid>/renew/", views.lease_renew, name="lease_renew"),
    path("leases/<str:luid>/renewal-form/", views.renewal_form_data, name="renewal_form_data"),
    path(
        "leases/<str:luid>/approve-for-signature/",
        views.renewal_approve_for_signature,
        name="renewal_approve_for_signature",
    ),
    path("leases/<str:luid>/send-for-signature/", views.lease_send_for_signature, name="lease_send_signature"),
    path("leases/<str:luid>/revoke-signature/", views.lease_revoke_signature, name="lease_revoke_signature"),
]
