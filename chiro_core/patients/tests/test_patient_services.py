from datetime import date
from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound

from chiro_core.audit.models import AuditEvent
from chiro_core.common.api.exceptions import BadRequestError, ConflictError
from chiro_core.patients.models import (
    Household,
    HouseholdMember,
    PatientContact,
    PatientDemographics,
    PatientInsurance,
    PatientStatus,
)
from chiro_core.patients.services import (
    HouseholdService,
    InsuranceService,
    PatientService,
    generate_mrn,
)

pytestmark = pytest.mark.django_db


def _scope(tenant, facility, user):
    return {"tenant_id": tenant.id, "facility_id": facility.id, "actor_user_id": user.id}


def test_generated_mrn_shape():
    mrn = generate_mrn()
    assert mrn.startswith("P")
    assert mrn[1:].isalnum() and mrn[1:].upper() == mrn[1:]
    assert len(mrn) >= 10


def test_create_patient_derives_phonetic_codes_and_ssn_last4(tenant, facility, user):
    p = PatientService.create_patient(
        **_scope(tenant, facility, user),
        demographics={"first_name": "Catherine", "last_name": "Smith", "ssn": "123-45-6789"},
        contact={"mobile_phone": "555-0100"},
    )

    demo = PatientDemographics.objects.get(patient=p)
    assert demo.first_name_soundex == "C365"
    assert demo.last_name_soundex == "S530"
    assert demo.ssn_last4 == "6789"
    assert p.status == PatientStatus.ACTIVE
    assert PatientContact.objects.get(patient=p).is_primary is True
    assert AuditEvent.objects.filter(event_code="patient.created", entity_id=p.id).count() == 1


def test_name_update_recomputes_phonetic_codes(tenant, facility, user, make_patient):
    p = make_patient("Robert", "Smith")

    PatientService.update_patient(
        **_scope(tenant, facility, user),
        patient_id=p.id,
        data={"last_name": "Jackson"},
    )

    demo = PatientDemographics.objects.get(patient=p)
    assert demo.last_name == "Jackson"
    assert demo.last_name_soundex == "J500"
    assert demo.first_name_soundex == "R163"


def test_update_cannot_archive_through_status(tenant, facility, user, patient):
    with pytest.raises(BadRequestError):
        PatientService.update_patient(
            **_scope(tenant, facility, user),
            patient_id=patient.id,
            data={"status": PatientStatus.ARCHIVED},
        )


def test_archive_twice_is_bad_request_and_restore_reverts(tenant, facility, user, patient):
    PatientService.archive_patient(**_scope(tenant, facility, user), patient_id=patient.id)
    patient.refresh_from_db()
    assert patient.status == PatientStatus.ARCHIVED
    assert patient.archived_at is not None

    with pytest.raises(BadRequestError):
        PatientService.archive_patient(**_scope(tenant, facility, user), patient_id=patient.id)

    PatientService.restore_patient(**_scope(tenant, facility, user), patient_id=patient.id)
    patient.refresh_from_db()
    assert patient.status == PatientStatus.ACTIVE
    assert patient.archived_at is None


def test_patient_of_other_tenant_is_not_found(tenant, facility, user, other_tenant, make_patient):
    foreign = make_patient("Other", "Person", tenant_obj=other_tenant)

    with pytest.raises(NotFound):
        PatientService.archive_patient(**_scope(tenant, facility, user), patient_id=foreign.id)


def test_new_primary_contact_unsets_previous_primary(tenant, facility, user, make_patient):
    p = make_patient("Ana", "Lopez", phone="555-0001")

    PatientService.add_contact(
        **_scope(tenant, facility, user),
        patient_id=p.id,
        data={"mobile_phone": "555-0002"},
        is_primary=True,
    )

    primaries = PatientContact.objects.filter(patient=p, is_primary=True)
    assert primaries.count() == 1
    assert primaries.get().mobile_phone == "555-0002"
    assert PatientContact.objects.filter(patient=p).count() == 2


def test_contact_keeps_digits_of_best_phone(tenant, facility, user, patient):
    contact = PatientService.add_contact(
        **_scope(tenant, facility, user),
        patient_id=patient.id,
        data={"home_phone": "+1 (555) 010-0100"},
        is_primary=True,
    )
    assert contact.phone_digits == "15550100100"

    contact.mobile_phone = "555.0199"
    contact.save(update_fields=["mobile_phone"])
    contact.refresh_from_db()
    assert contact.phone_digits == "5550199"


def test_single_active_insurance_per_type(tenant, facility, user, patient):
    first = InsuranceService.add_insurance(
        **_scope(tenant, facility, user),
        patient_id=patient.id,
        data={"type": "PRIMARY", "payer_name": "Acme Health", "policy_number": "A-1", "copay": Decimal("25.00")},
    )
    second = InsuranceService.add_insurance(
        **_scope(tenant, facility, user),
        patient_id=patient.id,
        data={"type": "PRIMARY", "payer_name": "Blue Plan", "policy_number": "B-2"},
    )
    secondary = InsuranceService.add_insurance(
        **_scope(tenant, facility, user),
        patient_id=patient.id,
        data={"type": "SECONDARY", "payer_name": "Gap Co", "policy_number": "G-3"},
    )

    first.refresh_from_db()
    assert first.is_active is False
    active = PatientInsurance.objects.filter(patient=patient, is_active=True)
    assert set(active.values_list("id", flat=True)) == {second.id, secondary.id}

    # re-activating the old policy retires the current one
    InsuranceService.update_insurance(
        **_scope(tenant, facility, user),
        insurance_id=first.id,
        data={"is_active": True},
    )
    second.refresh_from_db()
    assert second.is_active is False


def test_remove_and_verify_insurance(tenant, facility, user, patient):
    ins = InsuranceService.add_insurance(
        **_scope(tenant, facility, user),
        patient_id=patient.id,
        data={"payer_name": "Acme Health", "policy_number": "A-1"},
    )

    verified = InsuranceService.verify_insurance(**_scope(tenant, facility, user), insurance_id=ins.id, notes="called payer")
    assert verified.verified_at is not None
    assert verified.verified_by_id == user.id

    removed = InsuranceService.remove_insurance(**_scope(tenant, facility, user), insurance_id=ins.id)
    assert removed.is_active is False
    assert PatientInsurance.objects.filter(id=ins.id).exists()


def test_household_single_head_and_guarantor(tenant, facility, user, make_patient):
    mom = make_patient("Ana", "Lopez")
    dad = make_patient("Luis", "Lopez")
    kid = make_patient("Sofia", "Lopez")

    household = HouseholdService.create_household(
        **_scope(tenant, facility, user),
        name="Lopez family",
        head_patient_id=mom.id,
        relationship="PARENT",
    )
    HouseholdService.add_member(
        **_scope(tenant, facility, user),
        household_id=household.id,
        patient_id=dad.id,
        relationship="SPOUSE",
        is_head_of_house=True,
    )
    HouseholdService.add_member(
        **_scope(tenant, facility, user),
        household_id=household.id,
        patient_id=kid.id,
        relationship="CHILD",
    )

    members = HouseholdMember.objects.filter(household=household)
    assert members.filter(is_head_of_house=True).get().patient_id == dad.id
    assert members.filter(is_guarantor=True).get().patient_id == mom.id


def test_patient_in_one_household_only(tenant, facility, user, make_patient):
    p = make_patient("Ana", "Lopez")
    h1 = HouseholdService.create_household(**_scope(tenant, facility, user), name="One", head_patient_id=p.id)
    h2 = HouseholdService.create_household(**_scope(tenant, facility, user), name="Two")

    with pytest.raises(ConflictError):
        HouseholdService.add_member(
            **_scope(tenant, facility, user),
            household_id=h2.id,
            patient_id=p.id,
            relationship="OTHER",
        )
    assert HouseholdMember.objects.get(patient=p).household_id == h1.id


def test_removing_last_member_deletes_household(tenant, facility, user, make_patient):
    p = make_patient("Ana", "Lopez")
    household = HouseholdService.create_household(**_scope(tenant, facility, user), name="Solo", head_patient_id=p.id)
    member = HouseholdMember.objects.get(patient=p)

    HouseholdService.remove_member(**_scope(tenant, facility, user), member_id=member.id)

    assert not Household.objects.filter(id=household.id).exists()


def test_dob_stored_as_date(tenant, facility, user, make_patient):
    p = make_patient("Maria", "Garcia", dob=date(1980, 5, 2))
    assert PatientDemographics.objects.get(patient=p).date_of_birth == date(1980, 5, 2)
