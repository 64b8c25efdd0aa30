"""
Approval ledger: staging, locking, override, approve and reject.
"""

from decimal import Decimal

import pytest

from apps.core.exceptions import ConflictError, ForbiddenError, ValidationError
from apps.core.actors import HumanActor
from apps.leases.models import Lease
from apps.leases.services import LeaseService
from apps.notifications.models import Notification


@pytest.fixture
def second_staff(org, manager_user):
    from apps.accounts.models import User

    user = User.objects.create_user(
        username="quinn", email="quinn@example.com", password="x", client=org, role="staff",
        supervisor=manager_user,
    )
    return HumanActor(user)


# =============================================================================
# Staging
# =============================================================================


class TestStaging:

    def test_staff_rent_change_is_staged_not_applied(self, active_lease, staff):
        result = LeaseService.update_lease(
            active_lease.client, active_lease.luid, {"fees": {"late_fee_amount": 75}}, staff
        )

        assert result.requires_approval is True
        assert result.staged == ("fees.late_fee_amount",)
        lease = Lease.objects.get(pk=active_lease.pk)
        assert lease.late_fee_amount == Decimal("0")
        assert lease.status == "active"
        assert lease.approval_status == "pending"
        assert lease.pending_changes["fees.late_fee_amount"] == 75
        assert lease.pending_changes["updated_by"] == str(staff.id)

    def test_staff_operational_change_applies_directly(self, make_lease, staff):
        lease = make_lease()
        result = LeaseService.update_lease(lease.client, lease.luid, {"internal_notes": "keys at desk"}, staff)

        assert result.requires_approval is False
        lease.refresh_from_db()
        assert lease.internal_notes == "keys at desk"
        assert lease.pending_changes is None

    def test_staging_notifies_supervisor(self, make_lease, staff, manager_user):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1600}}, staff)

        assert Notification.objects.filter(recipient=manager_user, category="approval").exists()

    def test_missing_supervisor_still_stages(self, make_lease, lone_staff_user, caplog):
        lease = make_lease()
        actor = HumanActor(lone_staff_user)
        result = LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1600}}, actor)

        assert result.requires_approval is True
        assert "has no supervisor" in caplog.text

    def test_same_staff_member_can_restage(self, make_lease, staff):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1600}}, staff)
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1650}}, staff)

        lease.refresh_from_db()
        assert lease.pending_changes["fees.monthly_rent"] == 1650


class TestLocking:

    def test_other_staff_member_is_locked_out(self, active_lease, staff, second_staff):
        LeaseService.update_lease(active_lease.client, active_lease.luid, {"legal_terms": {"a": 1}}, staff)

        with pytest.raises(ConflictError):
            LeaseService.update_lease(
                active_lease.client, active_lease.luid, {"legal_terms": {"b": 2}}, second_staff
            )

        lease = Lease.objects.get(pk=active_lease.pk)
        assert lease.pending_changes["legal_terms"] == {"a": 1}

    def test_draft_lock_applies_to_high_impact_changes(self, make_lease, staff, second_staff):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1600}}, staff)

        with pytest.raises(ConflictError):
            LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1700}}, second_staff)


class TestOverride:

    def test_admin_direct_edit_supersedes_pending_changes(self, make_lease, staff, admin, staff_user):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1600}}, staff)

        result = LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 1800}}, admin)

        assert result.requires_approval is False
        lease.refresh_from_db()
        assert lease.monthly_rent == Decimal("1800")
        assert lease.pending_changes is None
        assert lease.approval_status == "approved"
        assert lease.approval_entries.filter(action="overridden").count() == 1
        assert Notification.objects.filter(recipient=staff_user, title__icontains="overridden").exists()

    def test_override_keeps_unapproved_lease_pending(self, org, rental_property, tenant_user, staff, admin):
        lease = LeaseService.create_lease(
            org,
            {
                "tenant_id": str(tenant_user.pk),
                "property": {"id": str(rental_property.pk)},
                "duration": {"start_date": "2025-01-01", "end_date": "2025-12-31"},
                "fees": {"monthly_rent": 1500},
            },
            staff,
        )
        LeaseService.update_lease(org, lease.luid, {"fees": {"monthly_rent": 1600}}, staff)

        LeaseService.update_lease(org, lease.luid, {"internal_notes": "Keys at front desk"}, admin)

        lease.refresh_from_db()
        assert lease.pending_changes is None
        assert lease.approval_status == "pending"
        assert lease.monthly_rent == Decimal("1500")
        assert not lease.approval_entries.filter(action="approved").exists()
        with pytest.raises(ValidationError):
            LeaseService.activate_lease(org, lease.luid, admin)


# =============================================================================
# Decisions
# =============================================================================


class TestApprove:

    def test_approve_applies_staged_changes(self, make_lease, staff, manager):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 2000}}, staff)
        entries_before = lease.approval_entries.count()

        LeaseService.approve_lease(lease.client, lease.luid, manager, "Looks right")

        lease.refresh_from_db()
        assert lease.monthly_rent == Decimal("2000")
        assert lease.pending_changes is None
        assert lease.approval_status == "approved"
        assert lease.approval_entries.count() == entries_before + 1
        assert lease.approval_entries.last().action == "approved"

    def test_approve_on_active_lease_keeps_it_active(self, active_lease, staff, admin):
        LeaseService.update_lease(active_lease.client, active_lease.luid, {"fees": {"rent_due_day": 5}}, staff)
        LeaseService.approve_lease(active_lease.client, active_lease.luid, admin)

        lease = Lease.objects.get(pk=active_lease.pk)
        assert lease.status == "active"
        assert lease.rent_due_day == 5

    def test_staff_cannot_approve(self, make_lease, staff):
        lease = make_lease(approval_status="pending")
        with pytest.raises(ForbiddenError):
            LeaseService.approve_lease(lease.client, lease.luid, staff)

    def test_already_approved_rejected(self, make_lease, admin):
        lease = make_lease()
        with pytest.raises(ValidationError):
            LeaseService.approve_lease(lease.client, lease.luid, admin, "again")

    def test_rejected_lease_needs_notes_to_approve(self, make_lease, admin):
        lease = make_lease(approval_status="rejected")
        with pytest.raises(ValidationError):
            LeaseService.approve_lease(lease.client, lease.luid, admin)

        LeaseService.approve_lease(lease.client, lease.luid, admin, "Reviewed with tenant")
        lease.refresh_from_db()
        assert lease.approval_status == "approved"

    def test_requester_is_told_of_decision(self, make_lease, staff, staff_user, manager):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 2000}}, staff)
        LeaseService.approve_lease(lease.client, lease.luid, manager)

        assert Notification.objects.filter(recipient=staff_user, title="Lease changes approved").exists()


class TestReject:

    def test_reject_discards_staged_changes(self, make_lease, staff, admin):
        lease = make_lease()
        LeaseService.update_lease(lease.client, lease.luid, {"fees": {"monthly_rent": 2000}}, staff)

        LeaseService.reject_lease(lease.client, lease.luid, admin, "Rent too high")

        lease.refresh_from_db()
        assert lease.monthly_rent == Decimal("1500")
        assert lease.pending_changes is None
        assert lease.approval_status == "rejected"
        assert lease.approval_entries.last().notes == "Rent too high"

    def test_reject_on_active_lease_keeps_it_approved(self, active_lease, staff, admin):
        LeaseService.update_lease(active_lease.client, active_lease.luid, {"fees": {"rent_due_day": 5}}, staff)
        LeaseService.reject_lease(active_lease.client, active_lease.luid, admin, "Not this month")

        lease = Lease.objects.get(pk=active_lease.pk)
        assert lease.status == "active"
        assert lease.approval_status == "approved"
        assert lease.rent_due_day == 1

    def test_reason_required(self, make_lease, admin):
        lease = make_lease(approval_status="pending")
        with pytest.raises(ValidationError):
            LeaseService.reject_lease(lease.client, lease.luid, admin, "  ")


class TestBulk:

    def test_bulk_approve_counts_only_pending(self, make_lease, admin):
        pending = [make_lease(approval_status="pending") for _ in range(2)]
        approved = make_lease()

        modified = LeaseService.bulk_approve_leases(
            approved.client, [lease.luid for lease in pending] + [approved.luid, "MISSING"], admin
        )

        assert modified == 2
        assert set(Lease.objects.values_list("approval_status", flat=True)) == {"approved"}

    def test_bulk_reject_requires_reason(self, make_lease, admin):
        lease = make_lease(approval_status="pending")
        with pytest.raises(ValidationError):
            LeaseService.bulk_reject_leases(lease.client, [lease.luid], admin, "")

    def test_bulk_reject(self, make_lease, manager):
        leases = [make_lease(approval_status="pending") for _ in range(3)]
        modified = LeaseService.bulk_reject_leases(
            leases[0].client, [lease.luid for lease in leases], manager, "Incomplete paperwork"
        )
        assert modified == 3
        assert Lease.objects.filter(approval_status="rejected").count() == 3

    def test_bulk_requires_approval_role(self, make_lease, staff):
        lease = make_lease(approval_status="pending")
        with pytest.raises(ForbiddenError):
            LeaseService.bulk_approve_leases(lease.client, [lease.luid], staff)

    def test_pending_listing(self, make_lease, admin, staff):
        pending = make_lease(approval_status="pending")
        make_lease()

        assert list(LeaseService.list_pending_approvals(pending.client, admin)) == [pending]
        with pytest.raises(ForbiddenError):
            LeaseService.list_pending_approvals(pending.client, staff)
