"""Scheduled lease jobs and their registration as Django-Q2 cron schedules."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from croniter import croniter
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobDescriptor:
    name: str
    func: str
    schedule: str
    enabled: bool = True
    timeout_ms: int = 600000
    description: str = ""

    @property
    def timeout_seconds(self):
        return max(1, self.timeout_ms // 1000)

    def next_run(self, now=None):
        return croniter(self.schedule, now or timezone.now()).get_next(datetime)


DEFAULT_JOBS = (
    JobDescriptor(
        name="process-auto-renewals",
        func="apps.leases.tasks.process_auto_renewals",
        schedule="0 0 * * *",
        description="Create renewal leases for auto-renew leases nearing expiry",
    ),
    JobDescriptor(
        name="auto-send-renewals-for-signature",
        func="apps.leases.tasks.auto_send_renewals_for_signature",
        schedule="0 9 * * *",
        description="Send approved renewals for e-signature when their send date arrives",
    ),
)


def lease_jobs():
    """``DEFAULT_JOBS`` with the per-job overrides from ``settings.LEASE_JOBS``."""
    overrides = getattr(settings, "LEASE_JOBS", {}) or {}
    jobs = []
    for job in DEFAULT_JOBS:
        options = overrides.get(job.name, {})
        job = replace(job, **{k: v for k, v in options.items() if k in ("schedule", "enabled", "timeout_ms")})
        if not croniter.is_valid(job.schedule):
            raise ValueError(f"Invalid cron expression for job {job.name}: {job.schedule}")
        jobs.append(job)
    return tuple(jobs)


def register_schedules(jobs=None, now=None):
    """
    Create or update a cron ``Schedule`` for every enabled job and delete the
    schedules of disabled ones.

    Returns:
        dict with registered and removed job names.
    """
    from django_q.models import Schedule

    results = {"registered": [], "removed": []}
    for job in jobs if jobs is not None else lease_jobs():
        if not job.enabled:
            deleted, _ = Schedule.objects.filter(name=job.name).delete()
            if deleted:
                results["removed"].append(job.name)
                logger.info("Removed schedule for disabled job %s", job.name)
            continue

        Schedule.objects.update_or_create(
            name=job.name,
            defaults={
                "func": job.func,
                "schedule_type": Schedule.CRON,
                "cron": job.schedule,
                "repeats": -1,
                "kwargs": f"timeout={job.timeout_seconds}",
                "next_run": job.next_run(now),
            },
        )
        results["registered"].append(job.name)
        logger.info("Registered job %s (%s, timeout %ss)", job.name, job.schedule, job.timeout_seconds)
    return results
