# chiro_core/dedup/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from chiro_core.common.permissions import PatientMergePermission
from chiro_core.common.scope import actor_user_id, require_scope
from chiro_core.dedup.api.serializers import (
    CompareQuerySerializer,
    ComparisonSerializer,
    DuplicateGroupSerializer,
    DuplicateMatchSerializer,
    DuplicatesQuerySerializer,
    HistoryQuerySerializer,
    MergeRequestSerializer,
    MergeResultSerializer,
    PatientMergeSerializer,
)
from chiro_core.dedup.models import PatientMerge
from chiro_core.dedup.selectors import (
    compare_patients,
    find_duplicate_groups,
    find_duplicates_for_patient,
    get_merge_history,
    resolve_limit,
)
from chiro_core.dedup.services import MergeFields, PatientMergeService


class DedupViewSet(viewsets.GenericViewSet):
    """
    Duplicate review workflow: find candidates, compare side by side, merge.
    Scanning, comparing and merging are admin-only; history is visible to staff.
    """
    permission_classes = [PatientMergePermission]

    serializer_class = PatientMergeSerializer
    queryset = PatientMerge.objects.none()

    @extend_schema(
        tags=["Dedup"],
        parameters=[
            OpenApiParameter(name="patient_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False,
                             description="Candidates for this patient. Omit for a tenant-wide sweep returning groups."),
            OpenApiParameter(name="limit", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False,
                             description="Max candidates/groups (default 50, max 100)."),
        ],
        responses={200: DuplicateMatchSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="duplicates")
    def duplicates(self, request):
        scope = require_scope(request)

        q = DuplicatesQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        limit = resolve_limit(q.validated_data.get("limit"))
        patient_id = q.validated_data.get("patient_id")

        if patient_id is not None:
            matches = find_duplicates_for_patient(tenant_id=scope.tenant_id, patient_id=patient_id, limit=limit)
            return Response(DuplicateMatchSerializer(matches, many=True).data, status=status.HTTP_200_OK)

        groups = find_duplicate_groups(tenant_id=scope.tenant_id, limit=limit)
        return Response(DuplicateGroupSerializer(groups, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Dedup"],
        parameters=[
            OpenApiParameter(name="patient_id_1", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=True),
            OpenApiParameter(name="patient_id_2", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=True),
        ],
        responses={200: ComparisonSerializer},
    )
    @action(detail=False, methods=["get"], url_path="compare")
    def compare(self, request):
        scope = require_scope(request)

        q = CompareQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)

        comparison = compare_patients(
            tenant_id=scope.tenant_id,
            patient_id_1=q.validated_data["patient_id_1"],
            patient_id_2=q.validated_data["patient_id_2"],
        )
        return Response(ComparisonSerializer(comparison).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Dedup"], request=MergeRequestSerializer, responses={200: MergeResultSerializer})
    @action(detail=False, methods=["post"], url_path="merge")
    def merge(self, request):
        scope = require_scope(request)

        ser = MergeRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        record = PatientMergeService.merge(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            source_patient_id=data["source_patient_id"],
            target_patient_id=data["target_patient_id"],
            fields=MergeFields.from_dict(data.get("fields_to_keep_from_source")),
            reason=data["reason"],
        )

        return Response(MergeResultSerializer(record).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Dedup"],
        parameters=[
            OpenApiParameter(name="patient_id", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=True),
        ],
        responses={200: PatientMergeSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="history")
    def history(self, request):
        scope = require_scope(request)

        q = HistoryQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)

        qs = get_merge_history(tenant_id=scope.tenant_id, patient_id=q.validated_data["patient_id"])
        return Response(PatientMergeSerializer(qs, many=True).data, status=status.HTTP_200_OK)
