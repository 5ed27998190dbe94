# chiro_core/common/middleware.py
from __future__ import annotations

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from chiro_core.common.api.exceptions import build_error_envelope
from chiro_core.common.scope import parse_uuid, read_scope_headers
from chiro_core.iam.scope import INVALID_SCOPE_MSG, MISSING_SCOPE_MSG, NOT_A_MEMBER_MSG, Scope


class TenantFacilityScopeMiddleware(MiddlewareMixin):
    """
    Resolves the practice (tenant) and clinic (facility) for session-authenticated
    API calls and rejects the request early when the scope is unusable:

      missing header(s)          -> 400 validation_error
      header is not a UUID       -> 400 validation_error
      user not on clinic's staff -> 403 permission_denied

    Anonymous requests pass through untouched; JWT callers are scoped by
    iam.auth once DRF has authenticated them, and views call require_scope()
    either way.
    """

    API_PREFIX = "/api/"
    OPEN_PREFIXES = ("/api/docs/", "/api/schema/")
    API_ROOTS = ("/api/", "/api/v1/")

    def _needs_scope(self, path: str) -> bool:
        if not path.startswith(self.API_PREFIX) or path in self.API_ROOTS:
            return False
        return not path.startswith(self.OPEN_PREFIXES)

    def _reject(self, request, status_code: int, code: str, message: str) -> JsonResponse:
        body = build_error_envelope(request=request, code=code, message=message)
        return JsonResponse(body, status=status_code)

    def process_request(self, request):
        request.scope = None
        request.tenant_id = None
        request.facility_id = None

        if not self._needs_scope(getattr(request, "path", "") or ""):
            return None

        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated:
            return None

        tenant_raw, facility_raw = read_scope_headers(request)
        if not (tenant_raw and facility_raw):
            return self._reject(request, 400, "validation_error", MISSING_SCOPE_MSG)

        tenant_id, facility_id = parse_uuid(tenant_raw), parse_uuid(facility_raw)
        if tenant_id is None or facility_id is None:
            return self._reject(request, 400, "validation_error", INVALID_SCOPE_MSG)

        # looked up at call time so tests can patch membership
        from chiro_core.iam.services import membership

        if not membership.is_user_member_of_facility(user_id=user.id, tenant_id=tenant_id, facility_id=facility_id):
            return self._reject(request, 403, "permission_denied", NOT_A_MEMBER_MSG)

        request.scope = Scope(tenant_id=tenant_id, facility_id=facility_id)
        request.tenant_id = tenant_id
        request.facility_id = facility_id
        return None
