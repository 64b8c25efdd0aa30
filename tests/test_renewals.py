"""
Renewal creation, approval for signature and form data.
"""

from datetime import date
from decimal import Decimal

import pytest

from apps.core.actors import SYSTEM
from apps.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.leases.models import Lease
from apps.leases.renewals import RenewalService, renewal_dates
from apps.notifications.models import Notification


@pytest.fixture
def renewable(make_lease):
    return make_lease(
        status="active",
        pet_policy={"allowed": True, "max_pets": 1},
        co_tenants=[{"name": "Robin", "email": "robin@example.com"}],
        signing_method="electronic",
        esign_provider="boldsign",
        renewal_require_approval=False,
    )


# =============================================================================
# Creation
# =============================================================================


class TestCreateRenewal:

    def test_default_term_follows_original(self, renewable, admin_user):
        renewal = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)

        assert renewal.status == "draft_renewal"
        assert renewal.previous_lease == renewable
        assert renewal.start_date == date(2025, 3, 2)
        assert renewal.end_date == date(2026, 3, 2)
        assert renewal.move_in_date == date(2025, 3, 2)
        assert renewal.monthly_rent == Decimal("1500.00")
        assert renewal.tenant_id == renewable.tenant_id
        assert renewal.signing_method == "electronic"
        assert renewal.esign_provider == "boldsign"
        assert renewal.esign_envelope_id == ""

    def test_documents_are_copied_not_shared(self, renewable, admin_user):
        renewal = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        renewal.pet_policy["max_pets"] = 3
        renewal.save()

        renewable.refresh_from_db()
        assert renewable.pet_policy == {"allowed": True, "max_pets": 1}
        assert renewal.co_tenants == renewable.co_tenants

    def test_overrides_apply(self, renewable, admin_user):
        renewal = RenewalService.renew_lease(
            renewable.client,
            renewable.luid,
            {"fees": {"monthly_rent": "1575.00"}, "renewal_options": {"renewal_term_months": 6}},
            user=admin_user,
        )
        assert renewal.monthly_rent == Decimal("1575.00")
        assert renewal.end_date == date(2025, 9, 2)

    def test_start_must_follow_original_end(self, renewable, admin_user):
        with pytest.raises(ValidationError) as exc:
            RenewalService.renew_lease(
                renewable.client,
                renewable.luid,
                {"duration": {"start_date": "2025-03-01", "end_date": "2026-02-28"}},
                user=admin_user,
            )
        assert "duration.start_date" in exc.value.errors
        assert not Lease.objects.filter(previous_lease=renewable).exists()

    @pytest.mark.parametrize("path", ["tenant_id", "property.id", "property.unit_id"])
    def test_parties_cannot_be_overridden(self, renewable, admin_user, path):
        with pytest.raises(ValidationError):
            RenewalService.renew_lease(renewable.client, renewable.luid, {path: "x"}, user=admin_user)

    def test_only_active_leases_renew(self, make_lease, admin_user):
        lease = make_lease()
        with pytest.raises(ValidationError):
            RenewalService.renew_lease(lease.client, lease.luid, user=admin_user)

    def test_unknown_lease(self, org, admin_user):
        with pytest.raises(NotFoundError):
            RenewalService.renew_lease(org, "MISSING", user=admin_user)

    def test_tenant_cannot_renew(self, renewable, tenant_user):
        with pytest.raises(ForbiddenError):
            RenewalService.renew_lease(renewable.client, renewable.luid, user=tenant_user)


class TestRenewalUniqueness:

    def test_second_manual_renewal_conflicts(self, renewable, admin_user):
        RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        with pytest.raises(ConflictError):
            RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        assert Lease.objects.filter(previous_lease=renewable).count() == 1

    def test_system_call_returns_existing_renewal(self, renewable, admin_user):
        first = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        renewal, created = RenewalService.create_or_get_renewal(renewable.client, renewable.luid)

        assert created is False
        assert renewal.pk == first.pk

    def test_cancelled_renewal_does_not_block(self, renewable, admin_user):
        first = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        Lease.objects.filter(pk=first.pk).update(status="cancelled")

        second = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        assert second.pk != first.pk


class TestRenewalApprovalStatus:

    def test_human_renewal_is_approved(self, make_lease, admin_user):
        original = make_lease(status="active", renewal_require_approval=True)
        renewal = RenewalService.renew_lease(original.client, original.luid, user=admin_user)
        assert renewal.approval_status == "approved"

    def test_system_renewal_waits_when_approval_required(self, make_lease, admin_user):
        original = make_lease(status="active", renewal_require_approval=True)
        renewal = RenewalService.create_renewal(original.client, original.luid, actor=SYSTEM)

        assert renewal.approval_status == "pending"
        assert renewal.created_by is None
        assert renewal.approval_entries.get().notes == "Auto-renewal created by system"
        assert Notification.objects.filter(recipient=admin_user, title="Lease approval required").exists()

    def test_system_renewal_approved_when_not_required(self, renewable):
        renewal = RenewalService.create_renewal(renewable.client, renewable.luid, actor=SYSTEM)
        assert renewal.approval_status == "approved"


# =============================================================================
# Approval for signature
# =============================================================================


class TestApproveForSignature:

    def test_draft_renewal_becomes_ready(self, make_lease, manager):
        original = make_lease(status="active", renewal_require_approval=True)
        renewal = RenewalService.create_renewal(original.client, original.luid, actor=SYSTEM)

        approved = RenewalService.approve_renewal_for_signature(
            original.client, renewal.luid, manager, {"fees": {"monthly_rent": "1600"}}
        )

        assert approved.status == "ready_for_signature"
        assert approved.approval_status == "approved"
        assert approved.monthly_rent == Decimal("1600")
        assert approved.approval_entries.last().notes == "Approved for signature with modifications"

    def test_only_draft_renewals(self, active_lease, manager):
        with pytest.raises(ValidationError):
            RenewalService.approve_renewal_for_signature(active_lease.client, active_lease.luid, manager)

    def test_staff_cannot_approve(self, renewable, admin_user, staff):
        renewal = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        with pytest.raises(ForbiddenError):
            RenewalService.approve_renewal_for_signature(renewable.client, renewal.luid, staff)


class TestRenewalFormData:

    def test_active_lease_proposes_next_term(self, renewable):
        data = RenewalService.get_renewal_form_data(renewable.client, renewable.luid, today=date(2025, 2, 1))

        assert data["duration"]["start_date"] == date(2025, 3, 2)
        assert data["duration"]["end_date"] == date(2026, 3, 2)
        assert data["days_until_expiry"] == 28
        assert data["has_open_renewal"] is False
        assert data["renewal_options"]["days_before_expiry_to_generate_renewal"] == 30
        assert data["pet_policy"] == {"allowed": True, "max_pets": 1}

    def test_draft_renewal_returns_its_own_dates(self, renewable, admin_user):
        renewal = RenewalService.renew_lease(renewable.client, renewable.luid, user=admin_user)
        data = RenewalService.get_renewal_form_data(renewable.client, renewal.luid)

        assert data["duration"]["start_date"] == renewal.start_date

    def test_ineligible_status(self, make_lease):
        lease = make_lease()
        with pytest.raises(ValidationError):
            RenewalService.get_renewal_form_data(lease.client, lease.luid)

    def test_renewal_dates_helper(self, make_lease):
        lease = make_lease(end_date=date(2024, 1, 31))
        assert renewal_dates(lease, 1) == (date(2024, 2, 1), date(2024, 3, 1))
