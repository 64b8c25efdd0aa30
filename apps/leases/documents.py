"""
Lease document generation queue.

Generation runs as a Django-Q2 task. The job context travels with the task
and comes back in the ``UPLOAD_COMPLETED``/``UPLOAD_FAILED`` event, where the
handlers below pick up whatever the requester asked to happen next.
"""

import logging

from django_q.tasks import async_task

from apps.core.actors import actor_for
from apps.core.db import run_with_effects
from apps.core.exceptions import LeaseError
from apps.core.services.esignature.base import SenderInfo
from apps.notifications import services as notifications

from .events import DocumentJobContext, UPLOAD_COMPLETED, UPLOAD_FAILED, lease_events
from .models import Lease

logger = logging.getLogger(__name__)


def enqueue_pdf_generation(
    lease_id,
    template_type,
    sender_info,
    send_for_signature=False,
    promote_renewal=False,
    requested_by_id=None,
):
    """Queue rendering of the lease agreement; returns the job id."""
    context = DocumentJobContext(
        lease_id=lease_id,
        template_type=template_type,
        sender_info=dict(sender_info or {}),
        send_for_signature=send_for_signature,
        promote_renewal=promote_renewal,
        requested_by_id=requested_by_id,
    )
    async_task(
        "apps.leases.tasks.generate_lease_document",
        context.to_dict(),
        task_name=f"lease-pdf-{context.job_id}",
    )
    logger.info("Queued document generation %s for lease %s", context.job_id, lease_id)
    return context.job_id


def _requester(context):
    from apps.accounts.models import User

    user = None
    if context.requested_by_id:
        user = User.objects.filter(pk=context.requested_by_id).first()
    return actor_for(user)


def on_upload_completed(payload):
    context = payload.context
    lease = (
        Lease.objects.select_related("client", "rental_property", "previous_lease")
        .filter(pk=context.lease_id)
        .first()
    )
    if lease is None:
        logger.warning("Lease %s for document job %s no longer exists", context.lease_id, context.job_id)
        return

    if context.promote_renewal:
        from .renewals import promote_auto_approved

        def _promote(effects):
            renewal = Lease.objects.select_for_update().get(pk=lease.pk)
            return promote_auto_approved(renewal, effects)

        run_with_effects(_promote)

    if context.send_for_signature:
        from .esignature import ESignatureService, validate_ready_for_signature

        lease.refresh_from_db()
        try:
            validate_ready_for_signature(lease)
            ESignatureService.deliver(
                lease,
                lease.active_agreement,
                SenderInfo(
                    name=context.sender_info.get("name", ""),
                    email=context.sender_info.get("email", ""),
                ),
                _requester(context),
            )
        except LeaseError as e:
            logger.error(
                "Sending lease %s for signature after document job %s failed: %s",
                lease.luid,
                context.job_id,
                e.message,
            )
            notifications.notify_system_error(
                "Lease signature request failed",
                f"Lease {lease.lease_number} could not be sent for signature: {e.message}",
                lease=lease,
            )


def on_upload_failed(payload):
    context = payload.context
    logger.error("Document job %s for lease %s failed: %s", context.job_id, context.lease_id, payload.error)
    lease = Lease.objects.filter(pk=context.lease_id).select_related("rental_property").first()
    notifications.notify_system_error(
        "Lease document generation failed",
        f"The lease agreement could not be generated: {payload.error}",
        lease=lease,
    )


def connect_handlers():
    lease_events.subscribe(UPLOAD_COMPLETED, on_upload_completed, dispatch_uid="leases.upload_completed")
    lease_events.subscribe(UPLOAD_FAILED, on_upload_failed, dispatch_uid="leases.upload_failed")
