"""
Lease lifecycle: creation, activation, termination, cancellation and deletion.
"""

from datetime import date
from decimal import Decimal

import pytest
from django.core import mail

from apps.accounts.models import Invitation
from apps.core.actors import HumanActor
from apps.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.leases import events
from apps.leases.models import Lease, LeaseSignature
from apps.leases.services import LeaseService
from apps.notifications.models import Notification


def _payload(rental_property, **extra):
    data = {
        "property": {"id": str(rental_property.pk)},
        "duration": {"start_date": "2025-01-01", "end_date": "2025-12-31"},
        "fees": {"monthly_rent": "1800.00", "security_deposit": "1800.00"},
    }
    data.update(extra)
    return data


# =============================================================================
# Creation
# =============================================================================


class TestCreateLease:

    def test_admin_creates_approved_draft(self, org, rental_property, tenant_user, admin):
        lease = LeaseService.create_lease(org, _payload(rental_property, tenant_id=str(tenant_user.pk)), admin)

        assert lease.status == "draft"
        assert lease.approval_status == "approved"
        assert lease.tenant == tenant_user
        assert lease.monthly_rent == Decimal("1800.00")
        entry = lease.approval_entries.get()
        assert entry.action == "created"
        assert entry.notes.startswith("Auto-approved")

    def test_staff_creation_waits_for_supervisor(self, org, rental_property, tenant_user, staff, manager_user):
        lease = LeaseService.create_lease(org, _payload(rental_property, tenant_id=str(tenant_user.pk)), staff)

        assert lease.approval_status == "pending"
        assert lease.pending_changes is None
        assert Notification.objects.filter(recipient=manager_user, title="Lease approval required").exists()

    def test_new_tenant_is_invited(self, org, rental_property, admin):
        data = _payload(
            rental_property,
            tenant_info={"email": "New.Tenant@Example.com", "first_name": "Nia", "last_name": "Park"},
        )
        lease = LeaseService.create_lease(org, data, admin)

        assert lease.tenant is None
        invitation = lease.tenant_invitation
        assert invitation.invitee_email == "new.tenant@example.com"
        assert invitation.status == "pending"
        assert any(invitation.token in message.body for message in mail.outbox)

    def test_pending_invitation_is_reused(self, org, rental_property, admin):
        info = {"email": "nia@example.com", "first_name": "Nia", "last_name": "Park"}
        first = LeaseService.create_lease(org, _payload(rental_property, tenant_info=info), admin)
        second = LeaseService.create_lease(org, _payload(rental_property, tenant_info=info), admin)

        assert first.tenant_invitation_id == second.tenant_invitation_id
        assert Invitation.objects.count() == 1

    def test_missing_required_fields_reported_together(self, org, admin):
        with pytest.raises(ValidationError) as exc:
            LeaseService.create_lease(org, {"fees": {"currency": "USD"}}, admin)

        assert {"property.id", "duration.start_date", "fees.monthly_rent", "tenant_id"} <= set(exc.value.errors)

    def test_tenant_id_and_info_are_exclusive(self, org, rental_property, tenant_user, admin):
        data = _payload(rental_property, tenant_id=str(tenant_user.pk), tenant_info={"email": "x@example.com"})
        with pytest.raises(ValidationError):
            LeaseService.create_lease(org, data, admin)

    def test_immutable_fields_refused(self, org, rental_property, tenant_user, admin):
        data = _payload(rental_property, tenant_id=str(tenant_user.pk), status="active")
        with pytest.raises(ValidationError):
            LeaseService.create_lease(org, data, admin)
        assert not Lease.objects.exists()

    def test_tenant_role_cannot_create(self, org, rental_property, tenant_user):
        with pytest.raises(ForbiddenError):
            LeaseService.create_lease(org, _payload(rental_property), HumanActor(tenant_user))

    def test_electronic_signing_gets_default_provider(self, org, rental_property, tenant_user, admin):
        data = _payload(rental_property, tenant_id=str(tenant_user.pk), signing_method="electronic")
        lease = LeaseService.create_lease(org, data, admin)
        assert lease.esign_provider == "boldsign"


# =============================================================================
# Activation
# =============================================================================


class TestActivateLease:

    def test_approved_draft_activates(self, make_lease, admin):
        lease = make_lease()
        received = []
        events.lease_events.subscribe(events.LEASE_ACTIVATED, received.append, dispatch_uid="test-activated")
        try:
            activated = LeaseService.activate_lease(lease.client, lease.luid, admin)
        finally:
            events.lease_events.unsubscribe(events.LEASE_ACTIVATED, "test-activated")

        assert activated.status == "active"
        assert activated.move_in_date == lease.start_date
        assert [event.luid for event in received] == [lease.luid]
        assert activated.activity.filter(action="activated").exists()

    @pytest.mark.parametrize(
        "approval_status,fragment",
        [("pending", "pending approval"), ("rejected", "rejected"), ("draft", "draft status")],
    )
    def test_activation_blocked_by_approval_status(self, make_lease, admin, approval_status, fragment):
        lease = make_lease(approval_status=approval_status)
        with pytest.raises(ValidationError) as exc:
            LeaseService.activate_lease(lease.client, lease.luid, admin)

        assert fragment in exc.value.message
        lease.refresh_from_db()
        assert lease.status == "draft"

    def test_already_active_conflicts(self, active_lease, admin):
        with pytest.raises(ConflictError):
            LeaseService.activate_lease(active_lease.client, active_lease.luid, admin)

    def test_invited_tenant_blocks_activation(self, org, rental_property, admin):
        data = _payload(rental_property, tenant_info={"email": "nia@example.com"})
        lease = LeaseService.create_lease(org, data, admin)

        with pytest.raises(ValidationError) as exc:
            LeaseService.activate_lease(org, lease.luid, admin)
        assert "tenant_id" in exc.value.errors

    def test_unknown_lease(self, org, admin):
        with pytest.raises(NotFoundError):
            LeaseService.activate_lease(org, "NOPE", admin)

    def test_other_clients_lease_is_invisible(self, make_lease, other_org, admin):
        lease = make_lease()
        with pytest.raises(NotFoundError):
            LeaseService.get_lease(other_org, lease.luid)


# =============================================================================
# Termination and cancellation
# =============================================================================


class TestTerminateLease:

    def test_terminate_active_lease(self, active_lease, manager):
        lease = LeaseService.terminate_lease(
            active_lease.client,
            active_lease.luid,
            {"termination_date": "2024-09-30", "reason": "Tenant relocating for work", "move_out_date": "2024-10-01"},
            manager,
        )

        assert lease.status == "terminated"
        assert lease.termination_date == date(2024, 9, 30)
        assert lease.move_out_date == date(2024, 10, 1)

    def test_move_out_before_termination_keeps_lease_active(self, active_lease, manager):
        with pytest.raises(ValidationError) as exc:
            LeaseService.terminate_lease(
                active_lease.client,
                active_lease.luid,
                {"termination_date": "2024-09-30", "reason": "Tenant relocating for work", "move_out_date": "2024-09-01"},
                manager,
            )

        assert "move_out_date" in exc.value.errors
        assert Lease.objects.get(pk=active_lease.pk).status == "active"

    def test_short_reason_rejected(self, active_lease, manager):
        with pytest.raises(ValidationError) as exc:
            LeaseService.terminate_lease(
                active_lease.client, active_lease.luid, {"termination_date": "2024-09-30", "reason": "moving"}, manager
            )
        assert "reason" in exc.value.errors

    def test_only_active_leases(self, make_lease, manager):
        lease = make_lease()
        with pytest.raises(ValidationError):
            LeaseService.terminate_lease(
                lease.client, lease.luid, {"termination_date": "2024-09-30", "reason": "Tenant relocating"}, manager
            )


class TestCancelLease:

    def test_cancel_draft(self, make_lease, admin):
        lease = make_lease(approval_status="pending")
        cancelled = LeaseService.cancel_lease(lease.client, lease.luid, admin, "Tenant withdrew")

        assert cancelled.status == "cancelled"
        assert cancelled.approval_status == "draft"

    def test_cancel_revokes_sent_envelope(self, make_lease, admin, gateway):
        lease = make_lease(
            status="pending_signature", esign_provider="boldsign", esign_envelope_id="env-9", esign_status="sent"
        )
        cancelled = LeaseService.cancel_lease(lease.client, lease.luid, admin, "Tenant withdrew")

        assert cancelled.esign_status == "voided"
        assert gateway.revoked == [("env-9", "Tenant withdrew")]

    def test_active_lease_cannot_be_cancelled(self, active_lease, admin):
        with pytest.raises(ValidationError):
            LeaseService.cancel_lease(active_lease.client, active_lease.luid, admin)


class TestDeleteLease:

    def test_soft_delete_draft(self, make_lease, admin):
        lease = make_lease()
        assert LeaseService.delete_lease(lease.client, lease.luid, admin) is True

        assert not Lease.objects.filter(pk=lease.pk).exists()
        assert Lease.all_objects.get(pk=lease.pk).deleted_by == admin.user

    def test_active_lease_cannot_be_deleted(self, active_lease, admin):
        with pytest.raises(ValidationError):
            LeaseService.delete_lease(active_lease.client, active_lease.luid, admin)


class TestExpiringLeases:

    def test_window_and_bounds(self, make_lease, org):
        soon = make_lease(status="active", end_date=date(2025, 1, 20))
        make_lease(status="active", end_date=date(2025, 6, 1))
        make_lease(end_date=date(2025, 1, 15))

        found = LeaseService.get_expiring_leases(org, days=30, today=date(2025, 1, 1))
        assert list(found) == [soon]

        with pytest.raises(ValidationError):
            LeaseService.get_expiring_leases(org, days=0)
        with pytest.raises(ValidationError):
            LeaseService.get_expiring_leases(org, days=366)


class TestSignatureLedger:

    def test_one_signature_per_user(self, active_lease, tenant_user):
        from django.db import IntegrityError, transaction
        from django.utils import timezone

        LeaseSignature.objects.create(lease=active_lease, role="tenant", user=tenant_user, signed_at=timezone.now())
        with pytest.raises(IntegrityError), transaction.atomic():
            LeaseSignature.objects.create(lease=active_lease, role="tenant", user=tenant_user, signed_at=timezone.now())
