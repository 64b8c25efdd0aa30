"""
Django-Q2 tasks for the leases app.

The two renewal jobs are registered as cron schedules by
``manage.py register_lease_jobs`` (see ``apps.leases.jobs``). They can also be
queued by hand:
    from django_q.tasks import async_task
    async_task('apps.leases.tasks.process_auto_renewals')
    async_task('apps.leases.tasks.auto_send_renewals_for_signature')
"""

import logging

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from apps.core.actors import SYSTEM
from apps.core.db import run_with_effects
from apps.notifications import services as notifications

from . import events

logger = logging.getLogger(__name__)


def generate_lease_document(context_data):
    """
    Render the lease agreement, store it and announce the result.

    Args:
        context_data: ``DocumentJobContext.to_dict()`` of the requesting job

    Returns:
        dict with the job id, status and (on success) the stored file key.
    """
    from .models import Lease, LeaseDocument

    context = events.DocumentJobContext.from_dict(context_data)
    lease = (
        Lease.objects.select_related("client", "rental_property", "unit", "tenant", "tenant_invitation")
        .filter(pk=context.lease_id)
        .first()
    )
    if lease is None:
        error = f"Lease {context.lease_id} not found"
        logger.error("Document job %s: %s", context.job_id, error)
        events.lease_events.emit(events.UPLOAD_FAILED, events.UploadFailed(context=context, error=error))
        return {"job_id": context.job_id, "status": "failed", "error": error}

    document = LeaseDocument.objects.create(lease=lease, document_type="lease_agreement")
    try:
        render = import_string(settings.LEASE_DOCUMENT_RENDERER)
        pdf_bytes = render(lease, context.template_type, context.sender_info)
        file_key = default_storage.save(
            f"leases/{lease.luid}/{lease.lease_number}-{context.job_id[:8]}.pdf",
            ContentFile(pdf_bytes),
        )
    except Exception as e:
        logger.exception("Document job %s failed for lease %s", context.job_id, lease.luid)
        document.status = "failed"
        document.error_message = str(e)
        document.save(update_fields=["status", "error_message", "updated_at"])
        events.lease_events.emit(events.UPLOAD_FAILED, events.UploadFailed(context=context, error=str(e)))
        return {"job_id": context.job_id, "status": "failed", "error": str(e)}

    with transaction.atomic():
        lease.documents.filter(document_type="lease_agreement", status="active").update(
            status="superseded"
        )
        document.status = "active"
        document.file_key = file_key
        document.file_size = len(pdf_bytes)
        document.generated_at = timezone.now()
        document.save()

    logger.info("Generated lease agreement %s for lease %s (%d bytes)", file_key, lease.luid, len(pdf_bytes))
    events.lease_events.emit(
        events.UPLOAD_COMPLETED,
        events.UploadCompleted(context=context, document_id=document.pk, file_key=file_key),
    )
    return {"job_id": context.job_id, "status": "completed", "file_key": file_key}


# =============================================================================
# Renewal generation
# =============================================================================


def _notify_job_failure(title, lease, error):
    notifications.notify_system_error(
        title, f"Lease {lease.lease_number} ({lease.luid}): {error}", lease=lease
    )


def generate_renewal(lease, today, tolerance):
    """
    Create the renewal of one eligible lease when today falls in its window.

    Returns "created" or "skipped".
    """
    from .documents import enqueue_pdf_generation
    from .esignature import sender_info_for
    from .renewals import RenewalService, find_open_renewal, promote_auto_approved

    threshold = lease.days_before_expiry_to_generate_renewal
    days_until = lease.days_until_expiry(today)
    if not threshold - tolerance <= days_until <= threshold:
        return "skipped"

    existing = find_open_renewal(lease)
    if existing is not None:
        logger.info("Skipping %s: renewal %s exists (%s)", lease.luid, existing.luid, existing.status)
        return "skipped"

    if lease.signing_method == "manual" and lease.enable_auto_send_for_signature:
        logger.warning(
            "Lease %s combines auto-renew, manual signing and auto-send; auto-send will not run.",
            lease.luid,
        )

    renewal, created = RenewalService.create_or_get_renewal(lease.client, lease.luid, actor=SYSTEM)
    if not created:
        return "skipped"

    if not lease.renewal_require_approval:

        def _promote(effects):
            from .models import Lease

            locked = Lease.objects.select_for_update().select_related("previous_lease").get(pk=renewal.pk)
            return promote_auto_approved(locked, effects)

        if not run_with_effects(_promote):
            # Promotion happens once the agreement exists
            enqueue_pdf_generation(
                renewal.pk,
                renewal.template_type,
                sender_info_for(lease.client).as_dict(),
                promote_renewal=True,
            )

    notifications.notify_lease_lifecycle_event(
        renewal,
        "renewal_created",
        recipients=[u for u in (lease.rental_property.managed_by, lease.created_by) if u],
    )
    logger.info(
        "Created %s renewal %s for lease %s (%d days until expiry)",
        renewal.approval_status,
        renewal.luid,
        lease.luid,
        days_until,
    )
    return "created"


def process_auto_renewals(today=None):
    """
    Daily task: create renewals for active auto-renew leases nearing expiry.

    A lease is due when its days until expiry are within
    ``LEASE_RENEWAL_GENERATION_TOLERANCE_DAYS`` at or below its
    ``days_before_expiry_to_generate_renewal``. Leases are processed one at a
    time; a failure is logged and reported without stopping the batch.

    Returns:
        dict with created, skipped, and error counts.
    """
    from .models import Lease

    today = today or timezone.localdate()
    tolerance = settings.LEASE_RENEWAL_GENERATION_TOLERANCE_DAYS

    leases = (
        Lease.objects.filter(
            status="active",
            auto_renew=True,
            days_before_expiry_to_generate_renewal__isnull=False,
        )
        .select_related("client", "rental_property__managed_by", "created_by")
        .order_by("end_date")
    )

    results = {"created": 0, "skipped": 0, "errors": []}

    for lease in leases:
        try:
            results[generate_renewal(lease, today, tolerance)] += 1
        except Exception as e:
            logger.exception("Failed to create renewal for lease %s", lease.luid)
            results["errors"].append(f"{lease.luid}: {e}")
            _notify_job_failure("Automatic lease renewal failed", lease, e)

    logger.info(
        "process_auto_renewals: %d created, %d skipped, %d errors.",
        results["created"],
        results["skipped"],
        len(results["errors"]),
    )
    return results


# =============================================================================
# Renewal dispatch
# =============================================================================


class AutoSendFailure(Exception):
    def __init__(self, reason):
        self.reason = reason
        super().__init__(reason)


def send_renewal_as_system(renewal):
    from .esignature import ESignatureService

    return ESignatureService.send_lease_for_signature(renewal.client, renewal.luid, SYSTEM)


def _mark_auto_send_failure(renewal, reason):
    renewal.auto_send_failure_reason = reason
    renewal.auto_send_failed_at = timezone.now()
    renewal.save(update_fields=["auto_send_failure_reason", "auto_send_failed_at", "updated_at"])


def dispatch_renewal(renewal, send_for_signature_fn, today, grace_days):
    """
    Send one ready renewal when its send date has come.

    Returns "sent", "queued" (waiting on its agreement document) or
    "skipped"; raises ``AutoSendFailure`` for renewals that need manual
    attention.
    """
    original = renewal.previous_lease
    if original is None:
        raise AutoSendFailure("original_lease_missing")

    if not (renewal.enable_auto_send_for_signature or original.enable_auto_send_for_signature):
        return "skipped"

    if renewal.signing_method != "electronic":
        logger.info("Skipping %s: signing method is %s", renewal.luid, renewal.signing_method)
        return "skipped"

    if not renewal.esign_provider:
        _mark_auto_send_failure(renewal, "no_provider")
        raise AutoSendFailure("no_provider")

    days_before_send = (
        renewal.days_before_expiry_to_auto_send_signature
        or original.days_before_expiry_to_auto_send_signature
        or settings.LEASE_DEFAULT_SEND_FOR_SIGNATURE_DAYS
    )
    days_until = original.days_until_expiry(today)
    if days_until < -grace_days:
        logger.warning(
            "Skipping %s: original lease expired %d days ago; renewal needs manual review.",
            renewal.luid,
            -days_until,
        )
        _mark_auto_send_failure(renewal, "original_lease_expired")
        raise AutoSendFailure("original_lease_expired")

    if days_until > days_before_send:
        logger.info(
            "Renewal %s scheduled to send %d days before %s",
            renewal.luid,
            days_before_send,
            original.end_date,
        )
        return "skipped"

    outcome = send_for_signature_fn(renewal)
    if getattr(outcome, "queued", False):
        logger.info("Renewal %s has no agreement yet; document generation queued before sending", renewal.luid)
        return "queued"
    logger.info("Auto-sent renewal %s for signature (%d days until expiry)", renewal.luid, days_until)
    return "sent"


def auto_send_renewals_for_signature(send_for_signature_fn=None, today=None):
    """
    Daily task: send approved ``ready_for_signature`` renewals for signature
    once the original lease is within its send window.

    Args:
        send_for_signature_fn: callable taking the renewal; defaults to sending
            it through ``ESignatureService`` as the system
        today: date to evaluate send windows against

    Returns:
        dict with sent, queued, skipped and error counts.
    """
    from .models import Lease

    send = send_for_signature_fn or send_renewal_as_system
    today = today or timezone.localdate()
    grace_days = settings.LEASE_AUTO_SEND_GRACE_DAYS

    renewals = (
        Lease.objects.filter(
            status="ready_for_signature",
            approval_status="approved",
            previous_lease__isnull=False,
        )
        .select_related("client", "previous_lease", "rental_property__managed_by")
        .order_by("end_date")
    )

    results = {"sent": 0, "queued": 0, "skipped": 0, "errors": []}

    for renewal in renewals:
        try:
            results[dispatch_renewal(renewal, send, today, grace_days)] += 1
        except AutoSendFailure as e:
            logger.warning("Auto-send of renewal %s failed: %s", renewal.luid, e.reason)
            results["errors"].append(f"{renewal.luid}: {e.reason}")
        except Exception as e:
            logger.exception("Failed to auto-send renewal %s", renewal.luid)
            results["errors"].append(f"{renewal.luid}: {e}")
            _notify_job_failure("Automatic renewal send failed", renewal, e)

    logger.info(
        "auto_send_renewals_for_signature: %d sent, %d queued, %d skipped, %d errors.",
        results["sent"],
        results["queued"],
        results["skipped"],
        len(results["errors"]),
    )
    return results
