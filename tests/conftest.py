from datetime import date
from decimal import Decimal
from unittest import mock

import pytest

from apps.accounts.models import Client, User
from apps.core.actors import HumanActor
from apps.leases.models import Lease, LeaseDocument
from apps.properties.models import Property, Unit

from .fakes import FakeGateway


@pytest.fixture
def org(db):
    return Client.objects.create(
        name="Harbor Property Group",
        company_email="leasing@harbor.example",
        legal_entity_name="Harbor Property Group LLC",
    )


@pytest.fixture
def other_org(db):
    return Client.objects.create(name="Elsewhere Rentals")


def _user(org, username, role, **extra):
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="x",
        first_name=username.title(),
        last_name="Tester",
        client=org,
        role=role,
        **extra,
    )


@pytest.fixture
def admin_user(org):
    return _user(org, "alice", "admin")


@pytest.fixture
def manager_user(org):
    return _user(org, "morgan", "manager")


@pytest.fixture
def staff_user(org, manager_user):
    return _user(org, "sam", "staff", supervisor=manager_user)


@pytest.fixture
def lone_staff_user(org):
    return _user(org, "lee", "staff")


@pytest.fixture
def tenant_user(org):
    return _user(org, "terry", "tenant")


@pytest.fixture
def admin(admin_user):
    return HumanActor(admin_user)


@pytest.fixture
def manager(manager_user):
    return HumanActor(manager_user)


@pytest.fixture
def staff(staff_user):
    return HumanActor(staff_user)


@pytest.fixture
def rental_property(org, manager_user):
    return Property.objects.create(
        client=org,
        name="Maple Court",
        address_line1="12 Maple Court",
        city="Portland",
        state="OR",
        zip_code="97201",
        managed_by=manager_user,
    )


@pytest.fixture
def unit(rental_property):
    return Unit.objects.create(property=rental_property, unit_number="2B")


@pytest.fixture
def make_lease(org, tenant_user, rental_property, admin_user):
    def _make(**fields):
        values = {
            "client": org,
            "tenant": tenant_user,
            "rental_property": rental_property,
            "start_date": date(2024, 3, 2),
            "end_date": date(2025, 3, 1),
            "monthly_rent": Decimal("1500.00"),
            "security_deposit": Decimal("1500.00"),
            "status": "draft",
            "approval_status": "approved",
            "created_by": admin_user,
        }
        values.update(fields)
        return Lease.objects.create(**values)

    return _make


@pytest.fixture
def active_lease(make_lease):
    return make_lease(status="active", approval_status="approved")


@pytest.fixture
def with_agreement():
    def _attach(lease, file_key=None):
        from django.core.files.base import ContentFile
        from django.core.files.storage import default_storage

        from .fakes import STUB_PDF

        key = default_storage.save(file_key or f"leases/{lease.luid}/agreement.pdf", ContentFile(STUB_PDF))
        return LeaseDocument.objects.create(
            lease=lease, document_type="lease_agreement", status="active", file_key=key, file_size=len(STUB_PDF)
        )

    return _attach


@pytest.fixture
def gateway():
    fake = FakeGateway()
    with mock.patch("apps.leases.esignature.get_gateway_for_provider", return_value=fake):
        yield fake


@pytest.fixture
def queued_jobs():
    """Captures ``async_task`` calls from the document queue instead of running them."""
    with mock.patch("apps.leases.documents.async_task") as patched:
        yield patched
