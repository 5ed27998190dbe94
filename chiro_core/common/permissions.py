# chiro_core/common/permissions.py

from __future__ import annotations

from typing import Set

from rest_framework.permissions import BasePermission, SAFE_METHODS

# Group/role names (Django auth Group names recommended)
ROLE_ADMIN = "ADMIN"
ROLE_DOCTOR = "DOCTOR"
ROLE_CHIROPRACTOR = "CHIROPRACTOR"
ROLE_NURSE = "NURSE"
ROLE_RECEPTION = "RECEPTION"
ROLE_BILLING = "BILLING"
ROLE_READONLY = "READONLY"

ALL_STAFF = {
    ROLE_ADMIN,
    ROLE_DOCTOR,
    ROLE_CHIROPRACTOR,
    ROLE_NURSE,
    ROLE_RECEPTION,
    ROLE_BILLING,
    ROLE_READONLY,
}
CLINICAL = {ROLE_ADMIN, ROLE_DOCTOR, ROLE_CHIROPRACTOR, ROLE_NURSE}
FRONT_DESK = CLINICAL | {ROLE_RECEPTION}


def _user_roles(user) -> Set[str]:
    """
    Resolve roles from:
    1) Django groups: user.groups (recommended)
    2) Optional user.role attribute (if the user model has it)

    Default behavior:
    - If authenticated user has no roles/groups, treat them as READONLY.
    """
    roles: Set[str] = set()

    if not user or not getattr(user, "is_authenticated", False):
        return roles

    # Superuser treated as admin
    if getattr(user, "is_superuser", False):
        roles.add(ROLE_ADMIN)
        return roles

    if hasattr(user, "groups"):
        roles.update(user.groups.values_list("name", flat=True))

    if hasattr(user, "role") and user.role:
        roles.add(str(user.role))

    if not roles:
        roles.add(ROLE_READONLY)

    return roles


def user_has_role(user, *roles: str) -> bool:
    return bool(_user_roles(user) & set(roles))


class BaseRolePermission(BasePermission):
    """
    Base permission class for role-based access control.

    Key behavior:
    - Requires authentication.
    - ADMIN bypass.
    - Uses allowed_roles_per_action for strict RBAC.
    - If action is unknown and request is SAFE, fall back to list/retrieve
      instead of denying.

    Tenant/facility scope is resolved by the views (common.scope.require_scope)
    so missing headers surface as 400, not 403.
    """
    message = "You do not have permission to perform this action."

    allowed_roles_per_action = {
        "list": ALL_STAFF,
        "retrieve": ALL_STAFF,
        "create": {ROLE_ADMIN},
        "update": {ROLE_ADMIN},
        "partial_update": {ROLE_ADMIN},
        "destroy": {ROLE_ADMIN},
    }
    # GET on a dual-method @action (list + create sub-resources) may be wider than the write
    read_roles_per_action: dict = {}

    def _infer_action(self, request, view) -> str | None:
        action = getattr(view, "action", None)
        if action:
            return action

        kwargs = getattr(view, "kwargs", {}) or {}
        is_detail = "pk" in kwargs or "id" in kwargs

        method = request.method.upper()
        if method in ("GET", "HEAD", "OPTIONS"):
            return "retrieve" if is_detail else "list"
        if method == "POST":
            return "create"
        if method == "PUT":
            return "update"
        if method == "PATCH":
            return "partial_update"
        if method == "DELETE":
            return "destroy"
        return None

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False

        roles = _user_roles(user)

        if ROLE_ADMIN in roles:
            return True

        action = self._infer_action(request, view)
        allowed = None
        if request.method in SAFE_METHODS:
            allowed = self.read_roles_per_action.get(action)
        if allowed is None:
            allowed = self.allowed_roles_per_action.get(action)

        if allowed is None and request.method in SAFE_METHODS:
            kwargs = getattr(view, "kwargs", {}) or {}
            is_detail = "pk" in kwargs or "id" in kwargs
            read_action = "retrieve" if is_detail else "list"
            allowed = self.allowed_roles_per_action.get(read_action)

        if allowed is not None:
            return bool(roles & allowed)

        # Unknown action => deny by default
        return False

    def has_object_permission(self, request, view, obj) -> bool:
        return self.has_permission(request, view)


class PatientPermission(BaseRolePermission):
    """Permissions for the patient registry (demographics, contacts, insurance, documents)"""
    allowed_roles_per_action = {
        "list": ALL_STAFF,
        "retrieve": ALL_STAFF,
        "create": FRONT_DESK,
        "update": CLINICAL,
        "partial_update": CLINICAL,
        "destroy": {ROLE_ADMIN},
        "archive": CLINICAL,
        "restore": {ROLE_ADMIN},
        "contacts": FRONT_DESK,
        "emergency_contacts": FRONT_DESK,
        "insurances": FRONT_DESK | {ROLE_BILLING},
        "documents": FRONT_DESK,
        "household": ALL_STAFF,
    }
    read_roles_per_action = {
        "contacts": ALL_STAFF,
        "emergency_contacts": ALL_STAFF,
        "insurances": ALL_STAFF,
        "documents": ALL_STAFF,
    }


class DocumentPermission(BaseRolePermission):
    """Document metadata; hard removal is admin only"""
    allowed_roles_per_action = {
        "list": ALL_STAFF,
        "retrieve": ALL_STAFF,
        "update": FRONT_DESK,
        "partial_update": FRONT_DESK,
        "destroy": {ROLE_ADMIN},
    }


class PatientMergePermission(BaseRolePermission):
    """Duplicate detection and merge are administrator actions; history is readable by staff"""
    allowed_roles_per_action = {
        "duplicates": {ROLE_ADMIN},
        "compare": {ROLE_ADMIN},
        "merge": {ROLE_ADMIN},
        "history": ALL_STAFF,
    }


class AuditPermission(BaseRolePermission):
    """Permissions for Audit log access"""
    allowed_roles_per_action = {
        "list": {ROLE_ADMIN},
        "retrieve": {ROLE_ADMIN},
        "create": set(),
        "update": set(),
        "partial_update": set(),
        "destroy": set(),
    }


class InsurancePermission(BaseRolePermission):
    """Coverage records are maintained by the front desk and billing"""
    allowed_roles_per_action = {
        "list": ALL_STAFF,
        "retrieve": ALL_STAFF,
        "partial_update": FRONT_DESK | {ROLE_BILLING},
        "destroy": FRONT_DESK | {ROLE_BILLING},
        "verify": FRONT_DESK | {ROLE_BILLING},
    }


class HouseholdPermission(BaseRolePermission):
    allowed_roles_per_action = {
        "list": ALL_STAFF,
        "retrieve": ALL_STAFF,
        "create": FRONT_DESK,
        "members": FRONT_DESK,
        "member": FRONT_DESK,
    }
