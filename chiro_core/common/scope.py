# chiro_core/common/scope.py
"""
View-side scope helpers. Every API view starts with `scope = require_scope(request)`.
"""
from __future__ import annotations

from rest_framework.exceptions import ValidationError

from chiro_core.iam.scope import (
    MISSING_SCOPE_MSG,
    Scope,
    assert_user_membership,
    attach_scope,
    parse_uuid,
    read_scope_headers,
    scope_from_headers,
)

__all__ = ["Scope", "actor_user_id", "parse_uuid", "read_scope_headers", "require_scope"]


def require_scope(request) -> Scope:
    """
    Scope already pinned by the middleware or the auth class wins (membership was
    checked there). Otherwise the headers are read and membership is checked here,
    so force-authenticated test clients get the same 400/403 behaviour.
    """
    tenant_id = parse_uuid(getattr(request, "tenant_id", None))
    facility_id = parse_uuid(getattr(request, "facility_id", None))
    if tenant_id and facility_id:
        return Scope(tenant_id=tenant_id, facility_id=facility_id)

    scope = scope_from_headers(request)
    if scope is None:
        raise ValidationError(MISSING_SCOPE_MSG)

    assert_user_membership(getattr(request, "user", None), scope)
    return attach_scope(request, scope)


def actor_user_id(request) -> int | None:
    user = getattr(request, "user", None)
    if user is not None and getattr(user, "is_authenticated", False):
        return user.id
    return None
