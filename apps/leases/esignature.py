"""
Electronic signature for leases.

``ESignatureService`` sends approved leases to the configured provider and
revokes envelopes. ``ESignatureReconciler`` applies the provider's webhook
events, which may arrive more than once, to the lease and its signature
ledger.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone

from django.core.files.storage import default_storage
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.core.actors import SYSTEM, actor_user
from apps.core.db import run_with_effects
from apps.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from apps.core.services.esignature.base import ESignatureError, SenderInfo, Signer
from apps.core.services.esignature.factory import default_sender, get_gateway_for_provider
from apps.notifications import services as notifications

from . import events
from .approvals import record_activity
from .models import ExistingUser, Lease, LeaseSignature
from .services import LeaseService, activate_locked, require_staff
from .transitions import enforce_approval, move_to

logger = logging.getLogger(__name__)

SENDABLE_STATUSES = ("draft", "draft_renewal", "ready_for_signature")


@dataclass
class SendOutcome:
    lease: Lease
    queued: bool = False


def sender_info_for(client):
    """The client's legal entity when it has one on file, else the default sender."""
    if client.company_email and client.legal_entity_name:
        return SenderInfo(name=client.legal_entity_name, email=client.company_email)
    return default_sender()


def validate_ready_for_signature(lease):
    if lease.status not in SENDABLE_STATUSES:
        raise ValidationError(
            f"A lease in status '{lease.status}' cannot be sent for signature.",
            {"status": [lease.status]},
        )
    if lease.esign_status == "sent":
        raise ConflictError("Lease has already been sent for signature.")
    enforce_approval(lease)

    errors = {}
    if lease.signing_method != "electronic":
        errors["signing_method"] = ["Lease must use the electronic signing method."]
    if not lease.esign_provider:
        errors["e_signature.provider"] = ["No e-signature provider is configured."]
    if not isinstance(lease.tenant_ref, ExistingUser):
        errors["tenant_id"] = ["The tenant has not accepted their invitation yet."]
    elif not lease.tenant.email:
        errors["tenant_id"] = ["The tenant has no email address."]
    if errors:
        raise ValidationError("Lease is not ready for signature.", errors)


def build_signers(lease):
    tenant = lease.tenant
    signers = [
        Signer(
            name=tenant.get_full_name() or tenant.username,
            email=tenant.email,
            role="tenant",
            user_id=str(tenant.pk),
        )
    ]
    for co_tenant in lease.co_tenants or []:
        if co_tenant.get("email"):
            signers.append(
                Signer(name=co_tenant.get("name", ""), email=co_tenant["email"], role="co_tenant")
            )
    manager = lease.rental_property.managed_by
    if manager is not None and manager.email:
        signers.append(
            Signer(
                name=manager.get_full_name() or manager.username,
                email=manager.email,
                role="property_manager",
                user_id=str(manager.pk),
            )
        )
    return signers


def revoke_envelope(lease, reason, raise_errors=True):
    """Ask the provider to revoke ``lease``'s envelope. Returns True on success."""
    gateway = get_gateway_for_provider(lease.esign_provider) if lease.esign_provider else None
    try:
        if gateway is None:
            raise ESignatureError(f"E-signature provider '{lease.esign_provider}' is not configured")
        gateway.revoke_document(lease.esign_envelope_id, reason)
    except ESignatureError as e:
        logger.error("Could not revoke envelope %s of lease %s: %s", lease.esign_envelope_id, lease.luid, e)
        if raise_errors:
            raise ExternalServiceError(f"Could not revoke the signature request: {e}") from e
        return False
    logger.info("Revoked envelope %s of lease %s", lease.esign_envelope_id, lease.luid)
    return True


class ESignatureService:
    """Send and revoke lease signature requests."""

    @staticmethod
    def send_lease_for_signature(client, luid, actor):
        """
        Send an approved, electronically signed lease to its provider.

        Without an agreement document a generation job is queued instead,
        and the send continues when that job completes.

        Returns:
            SendOutcome (``queued`` is True when waiting for the document)
        """
        require_staff(actor, "send leases for signature")
        lease = LeaseService.get_lease(client, luid)
        validate_ready_for_signature(lease)
        sender = sender_info_for(lease.client)

        document = lease.active_agreement
        if document is None:
            from .documents import enqueue_pdf_generation

            job_id = enqueue_pdf_generation(
                lease.pk,
                lease.template_type,
                sender.as_dict(),
                send_for_signature=True,
                requested_by_id=actor.id,
            )
            logger.info(
                "Lease %s has no agreement document; generation job %s queued before sending",
                lease.luid,
                job_id,
            )
            return SendOutcome(lease, queued=True)

        return SendOutcome(ESignatureService.deliver(lease, document, sender, actor))

    @staticmethod
    def deliver(lease, document, sender, actor):
        """Upload ``document`` to the provider and record the envelope on the lease."""
        gateway = get_gateway_for_provider(lease.esign_provider)
        if gateway is None:
            error = f"E-signature provider '{lease.esign_provider}' is not configured."
            _record_failure(lease.pk, error, actor)
            raise ExternalServiceError(error)

        with default_storage.open(document.file_key, "rb") as fh:
            pdf_bytes = fh.read()

        try:
            result = gateway.send_for_signature(
                title=f"Lease Agreement {lease.lease_number}",
                pdf_bytes=pdf_bytes,
                file_name=f"{lease.lease_number}.pdf",
                signers=build_signers(lease),
                sender=sender,
            )
        except ESignatureError as e:
            _record_failure(lease.pk, str(e), actor)
            raise ExternalServiceError(f"Sending lease for signature failed: {e}") from e

        return _record_sent(lease.pk, result.envelope_id, actor)

    @staticmethod
    def revoke_lease_signature(client, luid, actor, reason):
        require_staff(actor, "revoke signature requests")
        if not reason or not reason.strip():
            raise ValidationError("A revocation reason is required.", {"reason": ["Required."]})
        lease = LeaseService.get_lease(client, luid)
        if not lease.esign_envelope_id or lease.esign_status != "sent":
            raise ValidationError("Lease has no signature request in progress.")
        revoke_envelope(lease, reason)
        logger.info("Signature request for lease %s revoked by %s", luid, actor.display_name)
        return lease


def _record_sent(lease_id, envelope_id, actor):
    def _sent(effects):
        lease = Lease.objects.select_for_update().get(pk=lease_id)
        if lease.status not in SENDABLE_STATUSES:
            raise ConflictError(f"Lease changed to '{lease.status}' while it was being sent.")

        move_to(lease, "pending_signature")
        lease.esign_envelope_id = envelope_id
        lease.esign_status = "sent"
        lease.esign_sent_at = timezone.now()
        lease.esign_error_message = ""
        lease.auto_send_failure_reason = ""
        lease.auto_send_failed_at = None
        lease.updated_by = actor_user(actor)
        lease.save()
        record_activity(lease, actor, "sent_for_signature", ["status", "e_signature"])

        payload = events.ESignatureSent(
            lease_id=lease.pk, luid=lease.luid, envelope_id=envelope_id, provider=lease.esign_provider
        )
        effects.append(lambda: events.lease_events.emit(events.LEASE_ESIGNATURE_SENT, payload))
        effects.append(
            lambda: notifications.notify_lease_lifecycle_event(lease, "sent_for_signature")
        )
        return lease

    try:
        lease = run_with_effects(_sent)
    except ConflictError:
        # Cancelled while the provider call was in flight; the envelope must not stay open
        _revoke_orphan(lease_id, envelope_id)
        raise
    logger.info("Lease %s sent for signature (envelope %s)", lease.luid, envelope_id)
    return lease


def _revoke_orphan(lease_id, envelope_id):
    lease = Lease.objects.get(pk=lease_id)
    lease.esign_envelope_id = envelope_id
    revoke_envelope(lease, "Lease is no longer awaiting signature", raise_errors=False)


def _record_failure(lease_id, error, actor):
    def _failed(effects):
        lease = Lease.objects.select_for_update().get(pk=lease_id)
        lease.esign_status = "failed"
        lease.esign_error_message = error
        lease.updated_by = actor_user(actor)
        lease.save()
        record_activity(lease, actor, "signature_failed", ["e_signature"])

        payload = events.ESignatureFailed(lease_id=lease.pk, luid=lease.luid, error=error)
        effects.append(lambda: events.lease_events.emit(events.LEASE_ESIGNATURE_FAILED, payload))
        effects.append(
            lambda: notifications.notify_lease_lifecycle_event(
                lease,
                "signature_failed",
                recipients=[u for u in (lease.created_by, lease.rental_property.managed_by) if u],
            )
        )
        return lease

    lease = run_with_effects(_failed)
    logger.error("Sending lease %s for signature failed: %s", lease.luid, error)
    return lease


# =============================================================================
# Webhook reconciliation
# =============================================================================

# event type -> (eSignature status, lifecycle notification); the lease returns to draft
RETURN_TO_DRAFT = {
    "SendFailed": ("voided", "signature_failed"),
    "Declined": ("declined", "signature_declined"),
    "Expired": ("voided", None),
    "Revoked": ("draft", None),
}


def parse_signed_at(value):
    if value in (None, ""):
        return timezone.now()
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=dt_timezone.utc)
    parsed = parse_datetime(str(value))
    if parsed is None:
        return timezone.now()
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def resolve_signer(lease, email):
    """
    Match ``email`` against the tenant, then the co-tenants, then the property
    manager. Returns the ``LeaseSignature`` fields for the signer, or None.
    """
    email = (email or "").strip().lower()
    if not email:
        return None

    tenant = lease.tenant
    if tenant is not None and (tenant.email or "").lower() == email:
        return {"role": "tenant", "user": tenant}

    for co_tenant in lease.co_tenants or []:
        if (co_tenant.get("email") or "").lower() == email:
            return {
                "role": "co_tenant",
                "co_tenant_name": co_tenant.get("name", ""),
                "co_tenant_email": co_tenant["email"],
            }

    manager = lease.rental_property.managed_by
    if manager is not None and (manager.email or "").lower() == email:
        return {"role": "property_manager", "user": manager}
    return None


def record_signature(lease, email, signed_at):
    """Append a signature for ``email`` unless that signer already has one."""
    signer = resolve_signer(lease, email)
    if signer is None:
        logger.warning("Signer %s does not match any party of lease %s", email, lease.luid)
        return None

    existing = lease.signatures.all()
    if "user" in signer:
        existing = existing.filter(user=signer["user"])
    else:
        existing = existing.filter(user__isnull=True, co_tenant_email=signer["co_tenant_email"])
    if existing.exists():
        logger.info("Duplicate signature for %s on lease %s ignored", email, lease.luid)
        return None

    signature = LeaseSignature.objects.create(
        lease=lease,
        signature_method="electronic",
        signed_at=parse_signed_at(signed_at),
        **signer,
    )
    logger.info("Recorded %s signature on lease %s", signer["role"], lease.luid)
    return signature


class ESignatureReconciler:
    """Applies provider webhook events to the lease holding the envelope."""

    @staticmethod
    def handle_webhook(event_type, envelope_id, data=None, signer_email=None, signed_at=None, signers=()):
        """
        Args:
            event_type: provider event name (SendFailed, Completed, Declined,
                Expired, Revoked, Signed)
            envelope_id: provider document id stored on the lease
            data: raw event data
            signer_email, signed_at: the signer a ``Signed`` event is about
            signers: ``(email, signed_at)`` of every finished signer, recorded
                on ``Completed`` in case a ``Signed`` delivery was missed

        Raises:
            NotFoundError: no lease holds ``envelope_id``
        """
        data = data or {}

        def _reconcile(effects):
            lease = (
                Lease.objects.select_for_update()
                .filter(esign_envelope_id=envelope_id)
                .first()
                if envelope_id
                else None
            )
            if lease is None:
                raise NotFoundError(f"No lease found for envelope {envelope_id}.")

            if event_type == "Signed":
                if not signer_email:
                    logger.warning("Signed event for lease %s carries no signer", lease.luid)
                    return lease
                record_signature(lease, signer_email, signed_at)
                return lease

            if event_type == "Completed":
                return _complete(lease, data, signers, effects)

            if event_type in RETURN_TO_DRAFT:
                return _return_to_draft(lease, event_type, data, effects)

            logger.info("Unhandled e-signature event %s for lease %s", event_type, lease.luid)
            return lease

        lease = run_with_effects(_reconcile)
        logger.info("Processed %s webhook for envelope %s (lease %s)", event_type, envelope_id, lease.luid)
        return lease


def _complete(lease, data, signers, effects):
    if lease.status == "active":
        logger.info("Lease %s is already active; duplicate completion ignored", lease.luid)
        return lease

    for email, signed_at in signers:
        record_signature(lease, email, signed_at)

    lease.esign_status = "completed"
    lease.esign_completed_at = parse_signed_at(data.get("completedDate"))
    return activate_locked(lease, SYSTEM, effects, via="esignature", require_signature=True)


def _return_to_draft(lease, event_type, data, effects):
    if lease.status != "pending_signature" or lease.esign_status == "completed":
        logger.info(
            "Lease %s is %s (signing %s); late %s event ignored",
            lease.luid,
            lease.status,
            lease.esign_status,
            event_type,
        )
        return lease

    esign_status, notice = RETURN_TO_DRAFT[event_type]
    lease.esign_status = esign_status
    if event_type == "SendFailed":
        lease.esign_error_message = data.get("errorMessage") or "Send failed"
    elif event_type == "Declined":
        lease.esign_error_message = data.get("declineReason") or ""
    move_to(lease, "draft")
    lease.save()
    record_activity(lease, SYSTEM, f"esignature_{event_type.lower()}", ["e_signature", "status"])

    if event_type == "SendFailed":
        payload = events.ESignatureFailed(
            lease_id=lease.pk, luid=lease.luid, error=lease.esign_error_message
        )
        effects.append(lambda: events.lease_events.emit(events.LEASE_ESIGNATURE_FAILED, payload))
    if notice:
        effects.append(lambda: notifications.notify_lease_lifecycle_event(lease, notice))
    return lease


def handle_esignature_webhook(event):
    """Entry point for a verified ``WebhookEvent``."""
    return ESignatureReconciler.handle_webhook(
        event.event_type,
        event.envelope_id,
        data=event.data,
        signer_email=event.signer_email,
        signed_at=event.signed_at,
        signers=event.signers,
    )
