# chiro_core/common/openapi.py
from __future__ import annotations

from drf_spectacular.openapi import AutoSchema
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter


class ChiroAutoSchema(AutoSchema):
    """
    Global OpenAPI improvements:

    - Adds scope headers (X-Tenant-Id, X-Facility-Id) to every scoped endpoint
    - Skips them for the schema/docs views
    """

    SCOPE_HEADERS = [
        OpenApiParameter(
            name="X-Tenant-Id",
            type=OpenApiTypes.UUID,
            location=OpenApiParameter.HEADER,
            required=True,
            description="Tenant (organization) scope UUID.",
        ),
        OpenApiParameter(
            name="X-Facility-Id",
            type=OpenApiTypes.UUID,
            location=OpenApiParameter.HEADER,
            required=True,
            description="Facility scope UUID; the caller must be an active member.",
        ),
    ]

    def _is_unscoped_endpoint(self) -> bool:
        view = getattr(self, "view", None)
        if view is None:
            return False

        if view.__class__.__name__ in {"SpectacularAPIView", "SpectacularSwaggerView"}:
            return True

        path = getattr(getattr(view, "request", None), "path", "") or ""
        return "/api/schema/" in path or "/api/docs/" in path

    def get_override_parameters(self):
        params = list(super().get_override_parameters() or [])

        if not self._is_unscoped_endpoint():
            existing = {p.name.lower() for p in params}
            for p in self.SCOPE_HEADERS:
                if p.name.lower() not in existing:
                    params.append(p)

        return params
