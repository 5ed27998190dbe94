import json
import uuid

import pytest
from django.contrib.auth.models import User
from django.test import RequestFactory

from chiro_core.common.middleware import TenantFacilityScopeMiddleware
from chiro_core.tests.helpers import scoped

pytestmark = pytest.mark.django_db


def test_middleware_missing_scope_returns_error_envelope():
    rf = RequestFactory()
    req = rf.get("/api/v1/patients/")
    req.user = User.objects.create_user(username="u1", password="pass123")

    mw = TenantFacilityScopeMiddleware(get_response=lambda r: None)
    resp = mw.process_request(req)

    assert resp is not None
    assert resp.status_code == 400

    body = json.loads(resp.content.decode("utf-8"))
    assert body["error"]["code"] == "validation_error"
    assert "Missing scope headers" in body["error"]["message"]
    assert body["error"]["request_id"]


def test_unknown_patient_is_not_found_envelope(api_client, tenant, facility):
    r = api_client.get(f"/api/v1/patients/{uuid.uuid4()}/", **scoped(tenant, facility))

    assert r.status_code == 404
    assert r.data["error"]["code"] == "not_found"
    assert r.data["error"]["message"] == "Patient not found."
    assert r.data["error"]["details"] is None


def test_invalid_state_transition_is_bad_request_envelope(api_client, tenant, facility, patient):
    r = api_client.post(f"/api/v1/patients/{patient.id}/restore/", **scoped(tenant, facility))

    assert r.status_code == 400
    assert r.data["error"]["code"] == "bad_request"
    assert r.data["error"]["message"] == "Patient is not archived."


def test_field_errors_land_in_details(api_client, tenant, facility):
    r = api_client.post(
        "/api/v1/patients/",
        {"demographics": {"first_name": "No Last Name"}},
        format="json",
        **scoped(tenant, facility),
    )

    assert r.status_code == 400
    assert r.data["error"]["code"] == "validation_error"
    assert "last_name" in r.data["error"]["details"]["demographics"]


def test_role_denied_is_permission_denied_envelope(staff_client, tenant, facility):
    r = staff_client.get("/api/v1/dedup/duplicates/", **scoped(tenant, facility))

    assert r.status_code == 403
    assert r.data["error"]["code"] == "permission_denied"
