"""
Lease agreement generation and the upload completion handlers.
"""

from unittest import mock

import pytest
from django.core.files.storage import default_storage

from apps.leases import events
from apps.leases.documents import enqueue_pdf_generation, on_upload_completed
from apps.leases.models import LeaseDocument
from apps.leases.tasks import generate_lease_document
from apps.notifications.models import Notification

from .fakes import STUB_PDF


def _context(lease, **fields):
    return events.DocumentJobContext(lease_id=lease.pk, template_type=lease.template_type, **fields)


class TestGenerateLeaseDocument:

    def test_stores_agreement_and_emits_completion(self, make_lease):
        lease = make_lease()
        received = []
        events.lease_events.subscribe(events.UPLOAD_COMPLETED, received.append, dispatch_uid="test-upload")
        try:
            result = generate_lease_document(_context(lease).to_dict())
        finally:
            events.lease_events.unsubscribe(events.UPLOAD_COMPLETED, "test-upload")

        assert result["status"] == "completed"
        document = lease.active_agreement
        assert document.file_key == result["file_key"]
        assert document.file_size == len(STUB_PDF)
        with default_storage.open(document.file_key, "rb") as fh:
            assert fh.read() == STUB_PDF
        (payload,) = received
        assert payload.document_id == document.pk
        assert payload.context.job_id == result["job_id"]

    def test_regeneration_supersedes_previous_agreement(self, make_lease):
        lease = make_lease()
        generate_lease_document(_context(lease).to_dict())
        generate_lease_document(_context(lease).to_dict())

        statuses = sorted(lease.documents.values_list("status", flat=True))
        assert statuses == ["active", "superseded"]

    def test_renderer_failure_marks_document_failed(self, make_lease, settings, manager_user):
        settings.LEASE_DOCUMENT_RENDERER = "tests.fakes.failing_renderer"
        lease = make_lease()

        result = generate_lease_document(_context(lease).to_dict())

        assert result == {"job_id": result["job_id"], "status": "failed", "error": "renderer exploded"}
        document = LeaseDocument.objects.get(lease=lease)
        assert document.status == "failed"
        assert lease.active_agreement is None
        assert Notification.objects.filter(
            recipient=manager_user, title="Lease document generation failed"
        ).exists()

    def test_missing_lease(self, db):
        context = events.DocumentJobContext(lease_id="00000000-0000-0000-0000-000000000000", template_type="x")
        assert generate_lease_document(context.to_dict())["status"] == "failed"


class TestJobContext:

    def test_dict_form_restores_the_context(self):
        context = events.DocumentJobContext(
            lease_id="abc",
            template_type="residential",
            sender_info={"name": "Co", "email": "co@example.com"},
            send_for_signature=True,
            requested_by_id="u1",
        )
        assert events.DocumentJobContext.from_dict(context.to_dict()) == context

    def test_enqueue_passes_context(self, make_lease, queued_jobs):
        lease = make_lease()
        job_id = enqueue_pdf_generation(lease.pk, "commercial", {"name": "Co"}, promote_renewal=True)

        args, kwargs = queued_jobs.call_args
        assert args[1]["job_id"] == job_id
        assert args[1]["template_type"] == "commercial"
        assert kwargs["task_name"] == f"lease-pdf-{job_id}"


class TestUploadCompletedHandler:

    def test_send_failure_alerts_staff(self, make_lease, with_agreement, manager_user):
        lease = make_lease(signing_method="electronic", esign_provider="boldsign", approval_status="pending")
        document = with_agreement(lease)
        payload = events.UploadCompleted(
            context=_context(lease, send_for_signature=True), document_id=document.pk, file_key=document.file_key
        )

        on_upload_completed(payload)

        lease.refresh_from_db()
        assert lease.status == "draft"
        assert Notification.objects.filter(
            recipient=manager_user, title="Lease signature request failed"
        ).exists()

    def test_plain_generation_does_nothing_more(self, make_lease, with_agreement, gateway):
        lease = make_lease()
        document = with_agreement(lease)
        with mock.patch("apps.leases.esignature.ESignatureService.deliver") as deliver:
            on_upload_completed(
                events.UploadCompleted(context=_context(lease), document_id=document.pk, file_key=document.file_key)
            )
        deliver.assert_not_called()


class TestAgreementHtml:

    def test_terms_markdown_and_parties(self, make_lease, unit):
        from apps.documents.services.pdf import LeasePDFGenerator

        lease = make_lease(unit=unit, legal_terms={"text": "**No smoking** on the premises."})
        html = LeasePDFGenerator(lease, sender_info={"name": "Harbor Holdings"})._build_html_document()

        assert "<strong>No smoking</strong>" in html
        assert "Harbor Holdings" in html
        assert "2B" in html
        assert "Residential Lease Agreement" in html

    def test_values_are_escaped(self, make_lease):
        from apps.documents.services.pdf import LeasePDFGenerator

        lease = make_lease(co_tenants=[{"name": "<script>x</script>"}])
        html = LeasePDFGenerator(lease)._build_html_document()
        assert "<script>" not in html
