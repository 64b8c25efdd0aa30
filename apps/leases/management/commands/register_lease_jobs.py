"""
Management command to register the scheduled lease jobs with Django-Q2.

Usage:
    python manage.py register_lease_jobs          # Create/update cron schedules
    python manage.py register_lease_jobs --list   # Show job descriptors only
"""

from django.core.management.base import BaseCommand

from apps.leases.jobs import lease_jobs, register_schedules


class Command(BaseCommand):
    help = "Create or update the Django-Q2 schedules for the lease renewal jobs"

    def add_arguments(self, parser):
        parser.add_argument(
            "--list",
            action="store_true",
            help="List the job descriptors without touching the schedules",
        )

    def handle(self, *args, **options):
        jobs = lease_jobs()

        if options["list"]:
            for job in jobs:
                state = "enabled" if job.enabled else "disabled"
                self.stdout.write(f"  {job.name}: {job.schedule} ({state}, timeout {job.timeout_ms} ms)")
            return

        results = register_schedules(jobs)
        for name in results["registered"]:
            self.stdout.write(f"  Registered: {name}")
        for name in results["removed"]:
            self.stdout.write(self.style.WARNING(f"  Removed: {name}"))
        self.stdout.write(self.style.SUCCESS("Lease jobs registered."))
