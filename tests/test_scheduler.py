"""
Scheduled renewal jobs: generation window, auto-send dispatch and cron
registration.
"""

from datetime import date, datetime, timedelta, timezone as dt_timezone

import pytest
from django_q.models import Schedule

from apps.leases.jobs import DEFAULT_JOBS, JobDescriptor, lease_jobs, register_schedules
from apps.leases.models import Lease
from apps.leases.tasks import auto_send_renewals_for_signature, process_auto_renewals

END = date(2025, 3, 1)


@pytest.fixture
def auto_renewing(make_lease):
    def _make(**fields):
        values = {
            "status": "active",
            "auto_renew": True,
            "days_before_expiry_to_generate_renewal": 30,
            "renewal_require_approval": True,
        }
        values.update(fields)
        return make_lease(**values)

    return _make


@pytest.fixture
def ready_renewal(make_lease):
    def _make(original=None, **fields):
        original = original or make_lease(status="active", enable_auto_send_for_signature=True)
        values = {
            "status": "ready_for_signature",
            "previous_lease": original,
            "start_date": date(2025, 3, 2),
            "end_date": date(2026, 3, 2),
            "signing_method": "electronic",
            "esign_provider": "boldsign",
            "enable_auto_send_for_signature": True,
        }
        values.update(fields)
        return make_lease(**values)

    return _make


# =============================================================================
# Renewal generation
# =============================================================================


class TestGenerationWindow:

    @pytest.mark.parametrize("days_until,expected", [(31, 0), (30, 1), (29, 1), (28, 0)])
    def test_window_is_threshold_minus_tolerance(self, auto_renewing, days_until, expected):
        original = auto_renewing()

        results = process_auto_renewals(today=END - timedelta(days=days_until))

        assert results["created"] == expected
        assert Lease.objects.filter(previous_lease=original).count() == expected

    def test_running_twice_creates_one_renewal(self, auto_renewing):
        original = auto_renewing()
        today = END - timedelta(days=30)

        first = process_auto_renewals(today=today)
        second = process_auto_renewals(today=today + timedelta(days=1))

        assert first["created"] == 1
        assert second == {"created": 0, "skipped": 1, "errors": []}
        assert Lease.objects.filter(previous_lease=original).count() == 1

    def test_leases_without_auto_renew_are_ignored(self, auto_renewing):
        auto_renewing(auto_renew=False)
        auto_renewing(days_before_expiry_to_generate_renewal=None)

        assert process_auto_renewals(today=END - timedelta(days=30)) == {"created": 0, "skipped": 0, "errors": []}

    def test_renewal_needing_approval_stays_pending(self, auto_renewing):
        original = auto_renewing()
        process_auto_renewals(today=END - timedelta(days=30))

        renewal = Lease.objects.get(previous_lease=original)
        assert renewal.status == "draft_renewal"
        assert renewal.approval_status == "pending"
        assert renewal.created_by is None

    def test_one_failure_does_not_stop_the_batch(self, auto_renewing, monkeypatch):
        from apps.leases import renewals

        broken = auto_renewing()
        healthy = auto_renewing(end_date=END + timedelta(days=1), start_date=date(2024, 3, 3))
        real = renewals.RenewalService.create_or_get_renewal

        def flaky(client, luid, overrides=None, actor=None):
            if luid == broken.luid:
                raise RuntimeError("database hiccup")
            return real(client, luid, overrides, actor)

        monkeypatch.setattr(renewals.RenewalService, "create_or_get_renewal", staticmethod(flaky))
        results = process_auto_renewals(today=END - timedelta(days=29))

        assert results["created"] == 1
        assert results["errors"] == [f"{broken.luid}: database hiccup"]
        assert Lease.objects.filter(previous_lease=healthy).exists()


class TestAutoApprovedRenewals:

    def test_document_is_requested_with_promotion(self, auto_renewing, queued_jobs):
        original = auto_renewing(renewal_require_approval=False)
        process_auto_renewals(today=END - timedelta(days=30))

        renewal = Lease.objects.get(previous_lease=original)
        assert renewal.status == "draft_renewal"
        assert renewal.approval_status == "approved"
        (call,) = queued_jobs.call_args_list
        assert call.args[0] == "apps.leases.tasks.generate_lease_document"
        context = call.args[1]
        assert context["promote_renewal"] is True
        assert context["send_for_signature"] is False
        assert context["lease_id"] == str(renewal.pk)

    def test_generated_document_promotes_renewal(self, auto_renewing):
        original = auto_renewing(renewal_require_approval=False)
        process_auto_renewals(today=END - timedelta(days=30))

        renewal = Lease.objects.get(previous_lease=original)
        assert renewal.status == "ready_for_signature"
        assert renewal.has_generated_document
        assert renewal.approval_entries.filter(action="auto_approved").count() == 1


# =============================================================================
# Renewal dispatch
# =============================================================================


class TestAutoSend:

    def test_sends_on_target_day_exactly_once(self, ready_renewal, gateway, with_agreement):
        renewal = ready_renewal()
        with_agreement(renewal)

        early = auto_send_renewals_for_signature(today=END - timedelta(days=15))
        due = auto_send_renewals_for_signature(today=END - timedelta(days=14))
        again = auto_send_renewals_for_signature(today=END - timedelta(days=13))

        assert early == {"sent": 0, "queued": 0, "skipped": 1, "errors": []}
        assert due["sent"] == 1
        assert again == {"sent": 0, "queued": 0, "skipped": 0, "errors": []}
        assert len(gateway.sent) == 1
        renewal.refresh_from_db()
        assert renewal.status == "pending_signature"
        assert renewal.esign_envelope_id == "env-123"

    def test_renewal_without_agreement_is_counted_as_queued(self, ready_renewal, gateway, queued_jobs):
        renewal = ready_renewal()

        results = auto_send_renewals_for_signature(today=END - timedelta(days=14))

        assert results == {"sent": 0, "queued": 1, "skipped": 0, "errors": []}
        assert queued_jobs.call_count == 1
        assert queued_jobs.call_args[0][1]["send_for_signature"] is True
        assert gateway.sent == []
        renewal.refresh_from_db()
        assert renewal.status == "ready_for_signature"

    def test_days_before_send_prefers_renewal_setting(self, ready_renewal):
        renewal = ready_renewal(days_before_expiry_to_auto_send_signature=20)
        sent = []

        results = auto_send_renewals_for_signature(sent.append, today=END - timedelta(days=20))

        assert results["sent"] == 1
        assert sent == [renewal]

    def test_original_setting_enables_send(self, make_lease, ready_renewal):
        original = make_lease(status="active", enable_auto_send_for_signature=True)
        ready_renewal(original=original, enable_auto_send_for_signature=False)
        sent = []

        auto_send_renewals_for_signature(sent.append, today=END - timedelta(days=1))
        assert len(sent) == 1

    def test_disabled_auto_send_is_skipped(self, make_lease, ready_renewal):
        original = make_lease(status="active")
        ready_renewal(original=original, enable_auto_send_for_signature=False)

        results = auto_send_renewals_for_signature(lambda r: None, today=END)
        assert results == {"sent": 0, "queued": 0, "skipped": 1, "errors": []}

    def test_missing_provider_is_recorded(self, ready_renewal):
        renewal = ready_renewal(esign_provider="")

        results = auto_send_renewals_for_signature(lambda r: None, today=END)

        assert results["errors"] == [f"{renewal.luid}: no_provider"]
        renewal.refresh_from_db()
        assert renewal.auto_send_failure_reason == "no_provider"
        assert renewal.auto_send_failed_at is not None

    def test_long_expired_original_needs_manual_review(self, ready_renewal):
        renewal = ready_renewal()
        sent = []

        within_grace = auto_send_renewals_for_signature(sent.append, today=END + timedelta(days=7))
        past_grace = auto_send_renewals_for_signature(sent.append, today=END + timedelta(days=8))

        assert within_grace["sent"] == 1
        assert past_grace["errors"] == [f"{renewal.luid}: original_lease_expired"]
        renewal.refresh_from_db()
        assert renewal.auto_send_failure_reason == "original_lease_expired"

    def test_send_failure_is_reported_and_batch_continues(self, ready_renewal):
        first = ready_renewal()
        second = ready_renewal(end_date=date(2026, 3, 3))
        sent = []

        def send(renewal):
            if renewal.pk == first.pk:
                raise RuntimeError("provider down")
            sent.append(renewal)

        results = auto_send_renewals_for_signature(send, today=END)

        assert results["sent"] == 1
        assert results["errors"] == [f"{first.luid}: provider down"]
        assert sent == [second]


# =============================================================================
# Job registration
# =============================================================================


class TestJobs:

    def test_defaults(self):
        jobs = {job.name: job for job in lease_jobs()}
        assert jobs["process-auto-renewals"].schedule == "0 0 * * *"
        assert jobs["auto-send-renewals-for-signature"].schedule == "0 9 * * *"
        assert all(job.enabled and job.timeout_ms == 600000 for job in jobs.values())

    def test_overrides_from_settings(self, settings):
        settings.LEASE_JOBS = {"process-auto-renewals": {"schedule": "30 2 * * *", "enabled": False, "func": "x"}}
        job = {job.name: job for job in lease_jobs()}["process-auto-renewals"]

        assert job.schedule == "30 2 * * *"
        assert job.enabled is False
        assert job.func == "apps.leases.tasks.process_auto_renewals"

    def test_invalid_cron_rejected(self, settings):
        settings.LEASE_JOBS = {"auto-send-renewals-for-signature": {"schedule": "every day"}}
        with pytest.raises(ValueError):
            lease_jobs()

    def test_next_run(self):
        job = JobDescriptor(name="j", func="f", schedule="0 9 * * *")
        now = datetime(2025, 1, 1, 10, 0, tzinfo=dt_timezone.utc)
        assert job.next_run(now) == datetime(2025, 1, 2, 9, 0, tzinfo=dt_timezone.utc)


@pytest.mark.django_db
class TestRegisterSchedules:

    def test_creates_cron_schedules(self):
        results = register_schedules()

        assert results == {"registered": [job.name for job in DEFAULT_JOBS], "removed": []}
        schedule = Schedule.objects.get(name="process-auto-renewals")
        assert schedule.schedule_type == Schedule.CRON
        assert schedule.cron == "0 0 * * *"
        assert schedule.func == "apps.leases.tasks.process_auto_renewals"

    def test_reregistering_updates_in_place(self):
        register_schedules()
        changed = tuple(
            JobDescriptor(name=job.name, func=job.func, schedule="15 3 * * *") for job in DEFAULT_JOBS
        )
        register_schedules(changed)

        assert Schedule.objects.count() == len(DEFAULT_JOBS)
        assert set(Schedule.objects.values_list("cron", flat=True)) == {"15 3 * * *"}

    def test_disabled_job_is_removed(self):
        register_schedules()
        disabled = (JobDescriptor(name="process-auto-renewals", func="f", schedule="0 0 * * *", enabled=False),)

        results = register_schedules(disabled)

        assert results["removed"] == ["process-auto-renewals"]
        assert not Schedule.objects.filter(name="process-auto-renewals").exists()

    def test_management_command(self):
        from django.core.management import call_command

        call_command("register_lease_jobs")
        assert Schedule.objects.filter(name="auto-send-renewals-for-signature").exists()
