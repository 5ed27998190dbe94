import pytest

from chiro_core.patients.models import PatientInsurance
from chiro_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def _create(client, tenant, facility, **demo):
    payload = {"demographics": {"first_name": "Pat", "last_name": "One", **demo}}
    r = client.post("/api/v1/patients/", payload, format="json", **scoped(tenant, facility))
    assert r.status_code == 201, r.data
    return r.data


def test_patient_create_and_retrieve(api_client, tenant, facility):
    created = _create(api_client, tenant, facility, ssn="123-45-6789")

    r = api_client.get(f"/api/v1/patients/{created['id']}/", **scoped(tenant, facility))
    assert r.status_code == 200, r.data
    assert r.data["id"] == created["id"]
    assert r.data["mrn"].startswith("P")
    assert r.data["demographics"]["last_name_soundex"] == "O500"
    assert r.data["demographics"]["ssn_last4"] == "6789"
    assert "ssn" not in r.data["demographics"]


def test_patient_patch_updates_demographics(api_client, tenant, facility):
    created = _create(api_client, tenant, facility)

    p = api_client.patch(
        f"/api/v1/patients/{created['id']}/",
        {"last_name": "Smyth", "preferred_name": "Patty"},
        format="json",
        **scoped(tenant, facility),
    )
    assert p.status_code == 200, p.data
    assert p.data["demographics"]["last_name"] == "Smyth"
    assert p.data["demographics"]["last_name_soundex"] == "S530"
    assert p.data["demographics"]["preferred_name"] == "Patty"


def test_empty_patch_is_rejected(api_client, tenant, facility):
    created = _create(api_client, tenant, facility)
    r = api_client.patch(f"/api/v1/patients/{created['id']}/", {}, format="json", **scoped(tenant, facility))
    assert r.status_code == 400
    assert r.data["error"]["code"] == "validation_error"


def test_search_matches_phonetically_and_hides_archived(api_client, tenant, facility, make_patient):
    smith = make_patient("Catherine", "Smith")
    archived = make_patient("Kathryn", "Smith")
    make_patient("Other", "Jones")
    api_client.post(f"/api/v1/patients/{archived.id}/archive/", **scoped(tenant, facility))

    r = api_client.get("/api/v1/patients/", {"q": "Smyth"}, **scoped(tenant, facility))
    assert r.status_code == 200, r.data
    assert [row["id"] for row in r.data["results"]] == [str(smith.id)]

    r = api_client.get("/api/v1/patients/", {"q": "Smyth", "status": "ARCHIVED"}, **scoped(tenant, facility))
    assert [row["id"] for row in r.data["results"]] == [str(archived.id)]


def test_list_filters_by_date_of_birth(api_client, tenant, facility, make_patient):
    from datetime import date

    target = make_patient("Maria", "Garcia", dob=date(1980, 5, 2))
    make_patient("Maria", "Lopez", dob=date(1975, 1, 1))

    r = api_client.get("/api/v1/patients/", {"date_of_birth": "1980-05-02"}, **scoped(tenant, facility))
    assert r.status_code == 200, r.data
    assert [row["id"] for row in r.data["results"]] == [str(target.id)]


def test_patients_of_other_tenant_are_invisible(api_client, tenant, facility, other_tenant, make_patient):
    foreign = make_patient("Hidden", "Person", tenant_obj=other_tenant)

    r = api_client.get(f"/api/v1/patients/{foreign.id}/", **scoped(tenant, facility))
    assert r.status_code == 404


def test_insurance_endpoints(staff_client, tenant, facility, patient):
    r = staff_client.post(
        f"/api/v1/patients/{patient.id}/insurances/",
        {"type": "PRIMARY", "payer_name": "Acme Health", "policy_number": "A-1", "copay": "20.00"},
        format="json",
        **scoped(tenant, facility),
    )
    assert r.status_code == 201, r.data
    ins_id = r.data["id"]
    assert r.data["copay"] == "20.00"

    v = staff_client.post(f"/api/v1/insurances/{ins_id}/verify/", {"notes": "ok"}, format="json", **scoped(tenant, facility))
    assert v.status_code == 200, v.data
    assert v.data["verified_at"] is not None

    d = staff_client.delete(f"/api/v1/insurances/{ins_id}/", **scoped(tenant, facility))
    assert d.status_code == 200, d.data
    assert PatientInsurance.objects.get(id=ins_id).is_active is False


def test_contacts_and_documents_subresources(staff_client, tenant, facility, patient):
    c = staff_client.post(
        f"/api/v1/patients/{patient.id}/contacts/",
        {"mobile_phone": "555-0100", "is_primary": True},
        format="json",
        **scoped(tenant, facility),
    )
    assert c.status_code == 201, c.data
    assert c.data["is_primary"] is True

    d = staff_client.post(
        f"/api/v1/patients/{patient.id}/documents/",
        {"type": "PHOTO_ID", "file_name": "id.png", "file_size": 1024, "mime_type": "image/png", "storage_key": "k/1"},
        format="json",
        **scoped(tenant, facility),
    )
    assert d.status_code == 201, d.data

    listing = staff_client.get(f"/api/v1/patients/{patient.id}/documents/", **scoped(tenant, facility))
    assert listing.status_code == 200
    assert listing.data["count"] == 1


def test_document_delete_is_admin_only(staff_client, api_client, tenant, facility, patient):
    d = staff_client.post(
        f"/api/v1/patients/{patient.id}/documents/",
        {"file_name": "note.pdf", "file_size": 10, "mime_type": "application/pdf", "storage_key": "k/2"},
        format="json",
        **scoped(tenant, facility),
    )
    doc_id = d.data["id"]

    denied = staff_client.delete(f"/api/v1/documents/{doc_id}/", **scoped(tenant, facility))
    assert denied.status_code == 403

    ok = api_client.delete(f"/api/v1/documents/{doc_id}/", **scoped(tenant, facility))
    assert ok.status_code == 204


def test_household_endpoints(staff_client, tenant, facility, make_patient):
    head = make_patient("Ana", "Lopez")
    kid = make_patient("Sofia", "Lopez")

    h = staff_client.post(
        "/api/v1/households/",
        {"name": "Lopez family", "head_patient_id": str(head.id), "relationship": "PARENT"},
        format="json",
        **scoped(tenant, facility),
    )
    assert h.status_code == 201, h.data
    hid = h.data["id"]

    m = staff_client.post(
        f"/api/v1/households/{hid}/members/",
        {"patient_id": str(kid.id), "relationship": "CHILD"},
        format="json",
        **scoped(tenant, facility),
    )
    assert m.status_code == 201, m.data

    dup = staff_client.post(
        f"/api/v1/households/{hid}/members/",
        {"patient_id": str(kid.id), "relationship": "CHILD"},
        format="json",
        **scoped(tenant, facility),
    )
    assert dup.status_code == 409
    assert dup.data["error"]["code"] == "conflict"

    mine = staff_client.get(f"/api/v1/patients/{kid.id}/household/", **scoped(tenant, facility))
    assert mine.status_code == 200
    assert mine.data["household"]["id"] == hid
    assert len(mine.data["household"]["members"]) == 2
