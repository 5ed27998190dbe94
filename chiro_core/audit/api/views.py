# chiro_core/audit/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from chiro_core.audit.api.serializers import AuditEventSerializer
from chiro_core.audit.models import AuditEvent
from chiro_core.audit.selectors import list_audit_events
from chiro_core.common.permissions import AuditPermission
from chiro_core.common.scope import require_scope


class AuditEventViewSet(viewsets.GenericViewSet):
    """
    List audit events for the caller's organization (admin only).
    """
    permission_classes = [AuditPermission]

    serializer_class = AuditEventSerializer
    queryset = AuditEvent.objects.none()

    @extend_schema(
        tags=["Audit"],
        responses={200: AuditEventSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="entity_type", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="Filter by entity type (e.g. Patient, PatientInsurance, PatientMerge)."),
            OpenApiParameter(name="entity_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="event_code", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="Filter by event code (e.g. patient.merged)."),
            OpenApiParameter(name="actor_user_id", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="limit", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False,
                             description="Max records to return (default 200, max 500)."),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        entity_id = None
        entity_id_raw = request.query_params.get("entity_id") or None
        if entity_id_raw:
            try:
                entity_id = UUID(str(entity_id_raw))
            except ValueError:
                raise ValidationError({"entity_id": "Invalid UUID."})

        actor_user_id = None
        actor_user_raw = request.query_params.get("actor_user_id")
        if actor_user_raw:
            try:
                actor_user_id = int(actor_user_raw)
            except ValueError:
                raise ValidationError({"actor_user_id": "Integer expected."})

        qs = list_audit_events(
            tenant_id=scope.tenant_id,
            entity_type=request.query_params.get("entity_type") or None,
            entity_id=entity_id,
            event_code=request.query_params.get("event_code") or None,
            actor_user_id=actor_user_id,
        )

        try:
            limit_n = int(request.query_params.get("limit") or 200)
        except ValueError:
            limit_n = 200
        limit_n = max(1, min(limit_n, 500))

        return Response(AuditEventSerializer(qs[:limit_n], many=True).data, status=status.HTTP_200_OK)
