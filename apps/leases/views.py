import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.decorators import json_body, lease_api, staff_required
from apps.core.exceptions import LeaseError, NotFoundError
from apps.core.services.esignature.factory import get_gateway_for_provider

from .esignature import ESignatureService, handle_esignature_webhook
from .models import Lease
from .renewals import RenewalService
from .services import LeaseService

logger = logging.getLogger(__name__)


def lease_to_dict(lease):
    return {
        "luid": lease.luid,
        "lease_number": lease.lease_number,
        "status": lease.status,
        "approval_status": lease.approval_status,
        "tenant_id": lease.tenant_id,
        "tenant_invitation_id": lease.tenant_invitation_id,
        "property": {"id": lease.rental_property_id, "unit_id": lease.unit_id},
        "duration": {
            "start_date": lease.start_date,
            "end_date": lease.end_date,
            "move_in_date": lease.move_in_date,
            "move_out_date": lease.move_out_date,
            "termination_date": lease.termination_date,
        },
        "fees": {
            "monthly_rent": lease.monthly_rent,
            "security_deposit": lease.security_deposit,
            "rent_due_day": lease.rent_due_day,
            "currency": lease.currency,
            "late_fee_amount": lease.late_fee_amount,
            "late_fee_type": lease.late_fee_type,
            "late_fee_grace_days": lease.late_fee_grace_days,
        },
        "renewal_options": {
            "auto_renew": lease.auto_renew,
            "require_approval": lease.renewal_require_approval,
            "days_before_expiry_to_generate_renewal": lease.days_before_expiry_to_generate_renewal,
            "enable_auto_send_for_signature": lease.enable_auto_send_for_signature,
            "days_before_expiry_to_auto_send_signature": lease.days_before_expiry_to_auto_send_signature,
            "renewal_term_months": lease.renewal_term_months,
        },
        "signing_method": lease.signing_method,
        "e_signature": {
            "provider": lease.esign_provider,
            "envelope_id": lease.esign_envelope_id,
            "status": lease.esign_status,
            "sent_at": lease.esign_sent_at,
            "completed_at": lease.esign_completed_at,
        },
        "pending_changes": lease.pending_changes,
        "previous_lease_id": lease.previous_lease_id,
        "created_at": lease.created_at,
        "updated_at": lease.updated_at,
    }


# ---------------------------------------------------------------------------
# Leases
# ---------------------------------------------------------------------------


@staff_required
@lease_api
@require_http_methods(["GET", "POST"])
def lease_collection(request):
    client = request.user.client
    if request.method == "POST":
        lease = LeaseService.create_lease(client, json_body(request), request.actor)
        return JsonResponse(lease_to_dict(lease), status=201)

    leases = Lease.objects.filter(client=client).select_related("rental_property")
    status = request.GET.get("status")
    if status:
        leases = leases.filter(status=status)
    return JsonResponse({"results": [lease_to_dict(lease) for lease in leases]})


@staff_required
@lease_api
@require_http_methods(["GET", "PATCH", "DELETE"])
def lease_detail(request, luid):
    client = request.user.client
    if request.method == "PATCH":
        result = LeaseService.update_lease(client, luid, json_body(request), request.actor)
        return JsonResponse(
            {
                "lease": lease_to_dict(result.lease),
                "requires_approval": result.requires_approval,
                "staged": list(result.staged),
            }
        )
    if request.method == "DELETE":
        LeaseService.delete_lease(client, luid, request.actor)
        return JsonResponse({"deleted": True})
    return JsonResponse(lease_to_dict(LeaseService.get_lease(client, luid)))


@staff_required
@lease_api
@require_POST
def lease_activate(request, luid):
    lease = LeaseService.activate_lease(request.user.client, luid, request.actor)
    return JsonResponse(lease_to_dict(lease))


@staff_required
@lease_api
@require_POST
def lease_terminate(request, luid):
    lease = LeaseService.terminate_lease(request.user.client, luid, json_body(request), request.actor)
    return JsonResponse(lease_to_dict(lease))


@staff_required
@lease_api
@require_POST
def lease_cancel(request, luid):
    reason = json_body(request).get("reason", "")
    lease = LeaseService.cancel_lease(request.user.client, luid, request.actor, reason)
    return JsonResponse(lease_to_dict(lease))


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


@staff_required
@lease_api
@require_POST
def lease_approve(request, luid):
    notes = json_body(request).get("notes", "")
    lease = LeaseService.approve_lease(request.user.client, luid, request.actor, notes)
    return JsonResponse(lease_to_dict(lease))


@staff_required
@lease_api
@require_POST
def lease_reject(request, luid):
    reason = json_body(request).get("reason", "")
    lease = LeaseService.reject_lease(request.user.client, luid, request.actor, reason)
    return JsonResponse(lease_to_dict(lease))


@staff_required
@lease_api
@require_POST
def bulk_approve(request):
    data = json_body(request)
    modified = LeaseService.bulk_approve_leases(
        request.user.client, data.get("luids") or [], request.actor, data.get("notes", "")
    )
    return JsonResponse({"modified": modified})


@staff_required
@lease_api
@require_POST
def bulk_reject(request):
    data = json_body(request)
    modified = LeaseService.bulk_reject_leases(
        request.user.client, data.get("luids") or [], request.actor, data.get("reason", "")
    )
    return JsonResponse({"modified": modified})


@staff_required
@lease_api
@require_GET
def pending_approvals(request):
    leases = LeaseService.list_pending_approvals(request.user.client, request.actor)
    return JsonResponse({"results": [lease_to_dict(lease) for lease in leases]})


@staff_required
@lease_api
@require_GET
def expiring_leases(request):
    days = request.GET.get("days", "30")
    if not days.isdigit():
        return JsonResponse({"error": "days must be a number."}, status=400)
    leases = LeaseService.get_expiring_leases(request.user.client, int(days))
    return JsonResponse({"results": [lease_to_dict(lease) for lease in leases]})


# ---------------------------------------------------------------------------
# Renewals
# ---------------------------------------------------------------------------


@staff_required
@lease_api
@require_POST
def lease_renew(request, luid):
    renewal = RenewalService.renew_lease(
        request.user.client, luid, json_body(request), user=request.user
    )
    return JsonResponse(lease_to_dict(renewal), status=201)


@staff_required
@lease_api
@require_POST
def renewal_approve_for_signature(request, luid):
    renewal = RenewalService.approve_renewal_for_signature(
        request.user.client, luid, request.actor, json_body(request)
    )
    return JsonResponse(lease_to_dict(renewal))


@staff_required
@lease_api
@require_GET
def renewal_form_data(request, luid):
    return JsonResponse(RenewalService.get_renewal_form_data(request.user.client, luid))


# ---------------------------------------------------------------------------
# E-signature
# ---------------------------------------------------------------------------


@staff_required
@lease_api
@require_POST
def lease_send_for_signature(request, luid):
    outcome = ESignatureService.send_lease_for_signature(request.user.client, luid, request.actor)
    return JsonResponse(
        {"lease": lease_to_dict(outcome.lease), "queued": outcome.queued},
        status=202 if outcome.queued else 200,
    )


@staff_required
@lease_api
@require_POST
def lease_revoke_signature(request, luid):
    reason = json_body(request).get("reason", "")
    lease = ESignatureService.revoke_lease_signature(request.user.client, luid, request.actor, reason)
    return JsonResponse(lease_to_dict(lease))


@csrf_exempt
@require_POST
def esignature_webhook(request, provider):
    """
    Provider callback for signature events.

    POST /webhooks/esignature/<provider>/
    The payload is authenticated by the provider's gateway before any lease
    is touched.
    """
    gateway = get_gateway_for_provider(provider)
    if gateway is None:
        return JsonResponse({"error": f"Unknown e-signature provider: {provider}"}, status=404)

    try:
        event = gateway.verify_webhook(request)
    except ValueError as e:
        logger.warning("Rejected %s webhook: %s", provider, e)
        return JsonResponse({"error": "Invalid webhook."}, status=403)

    if event is None:
        return JsonResponse({"status": "ok"})

    try:
        handle_esignature_webhook(event)
    except NotFoundError as e:
        logger.warning("%s webhook for unknown envelope %s", provider, event.envelope_id)
        return JsonResponse(e.as_dict(), status=404)
    except LeaseError as e:
        # Acknowledged so the provider does not redeliver an event that cannot apply
        logger.error(
            "%s webhook %s for envelope %s not applied: %s",
            provider,
            event.event_type,
            event.envelope_id,
            e.message,
        )
        return JsonResponse({"status": "ignored", **e.as_dict()})

    return JsonResponse({"status": "ok"})
