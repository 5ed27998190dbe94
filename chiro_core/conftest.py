# chiro_core/conftest.py
import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

from chiro_core.facilities.models import Facility
from chiro_core.iam.models import FacilityMembership, Role, UserProfile
from chiro_core.patients.services import PatientService
from chiro_core.tenants.models import Tenant


def _staff_user(*, username, group, tenant, facility):
    """
    auth_user -> UserProfile -> FacilityMembership, plus the RBAC group.
    """
    User = get_user_model()
    user = User.objects.create_user(username=username, password="testpass", is_active=True)

    g, _ = Group.objects.get_or_create(name=group)
    user.groups.add(g)

    profile = UserProfile.objects.create(user=user, tenant=tenant, is_active=True)
    role, _ = Role.objects.get_or_create(
        tenant=tenant,
        code=group.lower(),
        defaults={"name": group.title(), "is_active": True},
    )
    FacilityMembership.objects.create(
        tenant=tenant,
        facility=facility,
        user_profile=profile,
        role=role,
        is_active=True,
    )
    return user


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(code="test-practice", name="Test Practice")


@pytest.fixture
def facility(db, tenant):
    return Facility.objects.create(tenant=tenant, code="main", name="Main Clinic")


@pytest.fixture
def user(db, tenant, facility):
    """ADMIN staff member of `facility`."""
    return _staff_user(username="admin", group="ADMIN", tenant=tenant, facility=facility)


@pytest.fixture
def staff_user(db, tenant, facility):
    """Front-desk (RECEPTION) member of `facility`."""
    return _staff_user(username="reception", group="RECEPTION", tenant=tenant, facility=facility)


@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def staff_client(staff_user):
    c = APIClient()
    c.force_authenticate(user=staff_user)
    return c


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(code="other-practice", name="Other Practice")


@pytest.fixture
def other_facility(db, other_tenant):
    return Facility.objects.create(tenant=other_tenant, code="other", name="Other Clinic")


@pytest.fixture
def make_patient(db, tenant, facility, user):
    """
    Factory: make_patient("Maria", "Garcia", dob=date(1980, 5, 2), phone="555-0100")
    Goes through PatientService so derived columns and audit rows are real.
    """

    def _make(first_name="Test", last_name="Patient", *, dob=None, phone=None, tenant_obj=None, **demo):
        t = tenant_obj or tenant
        return PatientService.create_patient(
            tenant_id=t.id,
            facility_id=facility.id,
            actor_user_id=user.id,
            demographics={"first_name": first_name, "last_name": last_name, "date_of_birth": dob, **demo},
            contact={"mobile_phone": phone} if phone else None,
        )

    return _make


@pytest.fixture
def patient(make_patient):
    return make_patient("Test", "Patient")
