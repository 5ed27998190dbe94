from datetime import date

import pytest
from django.db import transaction
from rest_framework.exceptions import ValidationError

from chiro_core.audit.models import AuditEvent
from chiro_core.common.api.exceptions import BadRequestError
from chiro_core.dedup.api.serializers import MergeResultSerializer
from chiro_core.dedup.models import PatientMerge
from chiro_core.dedup.services import MergeFields, PatientMergeService
from chiro_core.patients.models import (
    EmergencyContact,
    HouseholdMember,
    Patient,
    PatientContact,
    PatientDemographics,
    PatientDocument,
    PatientInsurance,
    PatientStatus,
)
from chiro_core.patients.services import DocumentService, HouseholdService, InsuranceService, PatientService
from chiro_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db

DOB = date(1980, 5, 2)


@pytest.fixture
def ctx(tenant, facility, user):
    return {"tenant_id": tenant.id, "facility_id": facility.id, "actor_user_id": user.id}


def _document(ctx, patient, name):
    return DocumentService.create_document(
        patient_id=patient.id,
        data={"file_name": name, "file_size": 100, "mime_type": "application/pdf", "storage_key": f"docs/{name}"},
        **ctx,
    )


def _insurance(ctx, patient, payer, copay="25.50"):
    return InsuranceService.add_insurance(
        patient_id=patient.id,
        data={"type": "PRIMARY", "payer_name": payer, "policy_number": f"{payer}-1", "copay": copay},
        **ctx,
    )


def _merge(ctx, source, target, fields=None, reason="Duplicate registration"):
    return PatientMergeService.merge(
        source_patient_id=source.id,
        target_patient_id=target.id,
        fields=fields,
        reason=reason,
        **ctx,
    )


def test_merge_moves_records_and_archives_source(api_client, tenant, facility, ctx, make_patient):
    source = make_patient("Maria", "Garcia", dob=DOB, phone="555-0100")
    target = make_patient("Maria", "Garcia", dob=DOB, phone="555-0199")
    _document(ctx, source, "intake.pdf")
    _document(ctx, source, "consent.pdf")
    _document(ctx, target, "id.pdf")
    _insurance(ctx, source, "Acme")
    _insurance(ctx, target, "Blue")

    r = api_client.post(
        "/api/v1/dedup/merge/",
        {
            "source_patient_id": str(source.id),
            "target_patient_id": str(target.id),
            "fields_to_keep_from_source": {"insurances": True, "documents": True},
            "reason": "Same person registered twice",
        },
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 200, r.data
    assert r.data["success"] is True
    assert r.data["target_patient_id"] == str(target.id)
    assert r.data["source_patient_archived"] is True

    source.refresh_from_db()
    assert source.status == PatientStatus.ARCHIVED
    assert source.archived_at is not None

    assert PatientDocument.objects.filter(patient=target).count() == 3
    assert PatientDocument.objects.filter(patient=source).count() == 0

    target_ins = PatientInsurance.objects.filter(patient=target)
    assert target_ins.count() == 2
    assert target_ins.filter(is_active=True).get().payer_name == "Blue"

    # contacts were not requested
    assert PatientContact.objects.filter(patient=source).count() == 1

    merge = PatientMerge.objects.get()
    assert str(merge.id) == r.data["merge_id"]
    assert merge.merged_by_id == ctx["actor_user_id"]
    assert merge.fields_kept["insurances"] is True

    event = AuditEvent.objects.get(event_code="patient.merged")
    assert event.entity_id == target.id
    assert event.metadata["source_patient_id"] == str(source.id)


def test_archived_source_cannot_be_merged_again(api_client, tenant, facility, ctx, make_patient):
    source = make_patient("Maria", "Garcia", dob=DOB)
    target = make_patient("Maria", "Garcia", dob=DOB)
    _merge(ctx, source, target)

    r = api_client.post(
        "/api/v1/dedup/merge/",
        {"source_patient_id": str(source.id), "target_patient_id": str(target.id), "reason": "again"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 400
    assert r.data["error"]["code"] == "bad_request"
    assert r.data["error"]["message"] == "Cannot merge an archived patient"
    assert PatientMerge.objects.count() == 1


def test_failed_step_rolls_back_everything(monkeypatch, ctx, make_patient):
    source = make_patient("Maria", "Garcia", dob=DOB, phone="555-0100")
    target = make_patient("Maria", "Garcia", dob=DOB)
    _document(ctx, source, "intake.pdf")

    def boom(**kwargs):
        raise RuntimeError("storage offline")

    monkeypatch.setattr(PatientMergeService, "_transfer_documents", staticmethod(boom))

    with pytest.raises(RuntimeError):
        _merge(ctx, source, target, fields={"contacts": True, "documents": True})

    source.refresh_from_db()
    assert source.status == PatientStatus.ACTIVE
    assert PatientContact.objects.filter(patient=source).count() == 1
    assert PatientDocument.objects.filter(patient=source).count() == 1
    assert PatientMerge.objects.count() == 0
    assert not AuditEvent.objects.filter(event_code="patient.merged").exists()


def test_selected_demographics_are_copied(ctx, make_patient):
    source = make_patient("Katherine", "Smyth", dob=DOB, occupation="")
    target = make_patient("Kathy", "Smith", dob=DOB, occupation="Carpenter")

    _merge(ctx, source, target, fields={"demographics": ["first_name", "occupation"]})

    demo = PatientDemographics.objects.get(patient=target)
    assert demo.first_name == "Katherine"
    assert demo.first_name_soundex == "K365"
    # blank on the source: target keeps its value
    assert demo.occupation == "Carpenter"
    assert demo.last_name == "Smith"


def test_contacts_move_without_taking_primary(ctx, make_patient):
    source = make_patient("Maria", "Garcia", phone="555-0100")
    target = make_patient("Maria", "Garcia", phone="555-0199")

    _merge(ctx, source, target, fields={"contacts": True})

    contacts = PatientContact.objects.filter(patient=target)
    assert contacts.count() == 2
    assert contacts.get(is_primary=True).mobile_phone == "555-0199"


def test_source_leaves_its_household(ctx, make_patient):
    source = make_patient("Maria", "Garcia")
    target = make_patient("Maria", "Garcia")
    household = HouseholdService.create_household(name="Garcia", head_patient_id=source.id, **ctx)

    merge = _merge(ctx, source, target)

    assert not HouseholdMember.objects.filter(patient=source).exists()
    assert not HouseholdMember.objects.filter(patient=target).exists()
    assert merge.source_snapshot["household"]["household_id"] == str(household.id)


def test_snapshot_keeps_prior_state_without_ssn(ctx, make_patient):
    source = make_patient("Maria", "Garcia", dob=DOB, ssn="123-45-6789")
    target = make_patient("Maria", "Garcia", dob=DOB)
    _insurance(ctx, source, "Acme", copay="25.50")
    _document(ctx, source, "intake.pdf")

    merge = _merge(ctx, source, target)
    snap = merge.source_snapshot

    assert snap["mrn"] == source.mrn
    assert snap["status"] == PatientStatus.ACTIVE
    assert "ssn" not in snap["demographics"]
    assert snap["demographics"]["ssn_last4"] == "6789"
    assert snap["demographics"]["date_of_birth"] == "1980-05-02"
    assert snap["insurances"][0]["copay"] == "25.50"
    assert snap["document_count"] == 1


def test_validation_errors(ctx, make_patient):
    a = make_patient("Maria", "Garcia")
    b = make_patient("Maria", "Garcia")

    with pytest.raises(BadRequestError):
        _merge(ctx, a, a)

    with pytest.raises(ValidationError):
        _merge(ctx, a, b, reason="   ")

    with pytest.raises(ValidationError):
        _merge(ctx, a, b, fields={"demographics": ["mrn"]})

    assert PatientMerge.objects.count() == 0


def test_merge_is_admin_only(staff_client, tenant, facility, make_patient):
    a = make_patient("Maria", "Garcia")
    b = make_patient("Maria", "Garcia")

    r = staff_client.post(
        "/api/v1/dedup/merge/",
        {"source_patient_id": str(a.id), "target_patient_id": str(b.id), "reason": "dup"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 403
    assert r.data["error"]["code"] == "permission_denied"


def test_cross_tenant_merge_is_not_found(api_client, tenant, facility, other_tenant, make_patient):
    mine = make_patient("Maria", "Garcia")
    foreign = make_patient("Maria", "Garcia", tenant_obj=other_tenant)

    r = api_client.post(
        "/api/v1/dedup/merge/",
        {"source_patient_id": str(foreign.id), "target_patient_id": str(mine.id), "reason": "dup"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 404
    assert r.data["error"]["message"] == "One or both patients not found"
    foreign.refresh_from_db()
    assert foreign.status == PatientStatus.ACTIVE


def test_history_is_newest_first_and_visible_to_staff(staff_client, tenant, facility, ctx, make_patient):
    target = make_patient("Maria", "Garcia")
    first = make_patient("Maria", "Garcia")
    second = make_patient("Maria", "Garcia")
    _merge(ctx, first, target)
    latest = _merge(ctx, second, target)

    r = staff_client.get("/api/v1/dedup/history/", {"patient_id": str(target.id)}, **scoped(tenant, facility))
    assert r.status_code == 200, r.data
    assert len(r.data) == 2
    assert r.data[0]["id"] == str(latest.id)
    assert r.data[0]["source_patient_id"] == str(second.id)


def test_merge_records_are_immutable(ctx, make_patient):
    merge = _merge(ctx, make_patient("A", "B"), make_patient("A", "B"))

    merge.reason = "edited"
    with pytest.raises(ValueError):
        merge.save()
    with pytest.raises(ValueError):
        merge.delete()


def test_merge_fields_defaults():
    fields = MergeFields.from_dict(None)
    assert fields.documents is True
    assert fields.contacts is False
    assert fields.as_json()["demographics"] == []


def test_full_transfer_moves_every_kind_of_record(ctx, make_patient):
    source = make_patient("Maria", "Garcia", dob=DOB, phone="555-0100")
    target = make_patient("Maria", "Garcia", dob=DOB, phone="555-0199")
    PatientService.add_emergency_contact(
        patient_id=source.id,
        data={"name": "Luis Garcia", "relationship": "Brother", "phone": "555-0300"},
        is_primary=True,
        **ctx,
    )
    _insurance(ctx, source, "Acme")
    _document(ctx, source, "intake.pdf")

    _merge(
        ctx,
        source,
        target,
        fields={
            "demographics": ["middle_name"],
            "contacts": True,
            "emergency_contacts": True,
            "insurances": True,
            "documents": True,
        },
    )

    for model in (PatientContact, EmergencyContact, PatientInsurance, PatientDocument):
        assert not model.objects.filter(patient=source).exists()
    assert PatientContact.objects.filter(patient=target).count() == 2
    assert PatientDocument.objects.filter(patient=target).count() == 1
    assert PatientInsurance.objects.get(patient=target).is_active is False


def test_emergency_contacts_move_without_taking_primary(ctx, make_patient):
    source = make_patient("Maria", "Garcia")
    target = make_patient("Maria", "Garcia")
    for patient, name in ((source, "Luis Garcia"), (target, "Rosa Garcia")):
        PatientService.add_emergency_contact(
            patient_id=patient.id,
            data={"name": name, "relationship": "Sibling", "phone": "555-0300"},
            is_primary=True,
            **ctx,
        )

    _merge(ctx, source, target, fields={"emergency_contacts": True})

    moved = EmergencyContact.objects.filter(patient=target)
    assert moved.count() == 2
    assert moved.get(is_primary=True).name == "Rosa Garcia"
    assert moved.get(name="Luis Garcia").is_primary is False


def test_households_stay_separate(ctx, make_patient):
    source = make_patient("Maria", "Garcia")
    sibling = make_patient("Sofia", "Garcia")
    target = make_patient("Maria", "Garcia")
    spouse = make_patient("Juan", "Perez")
    old_home = HouseholdService.create_household(name="Garcia", head_patient_id=source.id, **ctx)
    HouseholdService.add_member(household_id=old_home.id, patient_id=sibling.id, relationship="SIBLING", **ctx)
    new_home = HouseholdService.create_household(name="Perez", head_patient_id=target.id, **ctx)
    HouseholdService.add_member(household_id=new_home.id, patient_id=spouse.id, relationship="SPOUSE", **ctx)

    _merge(ctx, source, target)

    assert HouseholdMember.objects.get(patient=target).household_id == new_home.id
    assert HouseholdMember.objects.filter(household=new_home).count() == 2
    assert list(HouseholdMember.objects.filter(household=old_home).values_list("patient_id", flat=True)) == [sibling.id]
    assert not HouseholdMember.objects.filter(patient=source).exists()


def test_source_changed_under_the_lock_rolls_back(monkeypatch, ctx, make_patient):
    source = make_patient("Maria", "Garcia")
    target = make_patient("Maria", "Garcia")
    _document(ctx, source, "intake.pdf")

    snapshot = PatientMergeService._snapshot

    def concurrent_status_change(patient):
        # another writer flips the row after it was read
        Patient.objects.filter(id=patient.id).update(status=PatientStatus.INACTIVE)
        return snapshot(patient)

    monkeypatch.setattr(PatientMergeService, "_snapshot", staticmethod(concurrent_status_change))

    with pytest.raises(BadRequestError) as exc:
        _merge(ctx, source, target)
    assert str(exc.value.detail) == "Cannot merge an archived patient"

    source.refresh_from_db()
    assert source.status == PatientStatus.ACTIVE
    assert PatientDocument.objects.filter(patient=source).count() == 1
    assert PatientMerge.objects.count() == 0


def test_archive_step_requires_the_status_read_under_lock(make_patient):
    source = make_patient("Maria", "Garcia")

    with pytest.raises(BadRequestError):
        with transaction.atomic():
            PatientMergeService._archive_source(source=source, expected_status=PatientStatus.INACTIVE)

    source.refresh_from_db()
    assert source.status == PatientStatus.ACTIVE


def test_merge_response_is_rendered_from_the_record(api_client, tenant, facility, make_patient):
    source = make_patient("Maria", "Garcia")
    target = make_patient("Maria", "Garcia")

    r = api_client.post(
        "/api/v1/dedup/merge/",
        {"source_patient_id": str(source.id), "target_patient_id": str(target.id), "reason": "dup"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 200, r.data

    record = PatientMerge.objects.get()
    assert r.data == MergeResultSerializer(record).data
    assert r.data == {
        "success": True,
        "merge_id": str(record.id),
        "target_patient_id": str(target.id),
        "source_patient_archived": True,
    }
