# chiro_core/iam/scope.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import UUID

from rest_framework.exceptions import PermissionDenied, ValidationError

from chiro_core.iam.services.membership import is_user_member_of_facility


@dataclass(frozen=True)
class Scope:
    """The practice and clinic a request acts on behalf of."""

    tenant_id: UUID
    facility_id: UUID


# canonical names first; the X-Chiro-* spelling is still sent by older clients
TENANT_HEADERS = ("X-Tenant-Id", "X-Chiro-Tenant-Id")
FACILITY_HEADERS = ("X-Facility-Id", "X-Chiro-Facility-Id")

MISSING_SCOPE_MSG = "Missing scope headers. Provide X-Tenant-Id and X-Facility-Id."
INVALID_SCOPE_MSG = "Invalid scope headers. Provide valid UUIDs for X-Tenant-Id and X-Facility-Id."
NOT_A_MEMBER_MSG = "You do not have access to the selected facility."


def parse_uuid(value) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _first_header(request, names) -> Optional[str]:
    headers = getattr(request, "headers", None) or {}
    for name in names:
        value = headers.get(name) or request.META.get("HTTP_" + name.upper().replace("-", "_"))
        if value:
            return value
    return None


def read_scope_headers(request) -> Tuple[Optional[str], Optional[str]]:
    """Raw (tenant, facility) header values, either spelling."""
    return _first_header(request, TENANT_HEADERS), _first_header(request, FACILITY_HEADERS)


def scope_from_headers(request) -> Scope | None:
    """
    None when neither header is sent; 400 when only one is sent or a value
    is not a UUID.
    """
    tenant_raw, facility_raw = read_scope_headers(request)
    if not tenant_raw and not facility_raw:
        return None
    if not tenant_raw or not facility_raw:
        raise ValidationError(MISSING_SCOPE_MSG)

    tenant_id, facility_id = parse_uuid(tenant_raw), parse_uuid(facility_raw)
    if tenant_id is None or facility_id is None:
        raise ValidationError(INVALID_SCOPE_MSG)
    return Scope(tenant_id=tenant_id, facility_id=facility_id)


def assert_user_membership(user, scope: Scope) -> None:
    if not user or not getattr(user, "is_authenticated", False):
        raise PermissionDenied("Authentication required to set scope.")

    if not is_user_member_of_facility(user_id=user.id, tenant_id=scope.tenant_id, facility_id=scope.facility_id):
        raise PermissionDenied(NOT_A_MEMBER_MSG)


def attach_scope(request, scope: Scope) -> Scope:
    request.tenant_id = scope.tenant_id
    request.facility_id = scope.facility_id
    request.scope = scope
    return scope


def apply_scope_from_headers(request, user=None) -> Scope | None:
    """
    Called by the JWT authentication class once the user is known: validates the
    headers (if any), checks clinic membership and pins the scope on the request.
    """
    scope = scope_from_headers(request)
    if scope is None:
        return None

    assert_user_membership(user or getattr(request, "user", None), scope)
    return attach_scope(request, scope)
