# chiro_core/iam/auth.py

from __future__ import annotations

from django.conf import settings
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication

from chiro_core.iam.scope import apply_scope_from_headers


class CookieOrHeaderJWTAuthentication(JWTAuthentication):
    """
    Practice staff authentication. The access token is read from
      1) Authorization: Bearer <access>
      2) the HttpOnly access cookie (SIMPLE_JWT["AUTH_COOKIE"])

    Once the user is known:
      - a deactivated practice profile is rejected (401)
      - X-Tenant-Id / X-Facility-Id are validated against facility membership
    """

    def _raw_token(self, request):
        header = self.get_header(request)
        if header:
            return self.get_raw_token(header)
        cookie_name = settings.SIMPLE_JWT.get("AUTH_COOKIE", "chiro_access")
        return request.COOKIES.get(cookie_name) or None

    def authenticate(self, request):
        raw_token = self._raw_token(request)
        if raw_token is None:
            return None

        validated_token = self.get_validated_token(raw_token)
        user = self.get_user(validated_token)

        profile = getattr(user, "chiro_profile", None)
        if profile is not None and not profile.is_active:
            raise AuthenticationFailed("Practice profile is deactivated.", code="profile_inactive")

        apply_scope_from_headers(request, user=user)
        return user, validated_token
