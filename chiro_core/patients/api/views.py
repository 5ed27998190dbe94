# chiro_core/patients/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from chiro_core.common.api.pagination import paginate
from chiro_core.common.permissions import (
    DocumentPermission,
    HouseholdPermission,
    InsurancePermission,
    PatientPermission,
)
from chiro_core.common.scope import actor_user_id, require_scope
from chiro_core.patients.api.filters import STATUS_CHOICES, PatientFilter
from chiro_core.patients.api.serializers import (
    ContactInputSerializer,
    ContactSerializer,
    DocumentInputSerializer,
    DocumentSerializer,
    DocumentUpdateSerializer,
    EmergencyContactInputSerializer,
    EmergencyContactSerializer,
    HouseholdCreateSerializer,
    HouseholdMemberInputSerializer,
    HouseholdMemberSerializer,
    HouseholdMemberUpdateSerializer,
    HouseholdSerializer,
    InsuranceInputSerializer,
    InsuranceSerializer,
    InsuranceUpdateSerializer,
    InsuranceVerifySerializer,
    PatientCreateSerializer,
    PatientSerializer,
    PatientUpdateSerializer,
)
from chiro_core.patients.models import Household, Patient, PatientDocument, PatientInsurance
from chiro_core.patients.selectors import (
    get_household_for_patient,
    get_patient,
    list_documents,
    search_patients,
)
from chiro_core.patients.services import (
    DocumentService,
    HouseholdService,
    InsuranceService,
    PatientService,
)


def _uuid_or_404(raw, what: str = "Patient") -> UUID:
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        raise NotFound(f"{what} not found.")


class PatientViewSet(viewsets.ViewSet):
    permission_classes = [PatientPermission]

    serializer_class = PatientSerializer
    queryset = Patient.objects.none()

    @extend_schema(
        tags=["Patients"],
        parameters=[
            OpenApiParameter(name="q", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="Search MRN, names (also phonetically), phone or email."),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             description="ACTIVE | INACTIVE | ARCHIVED | DECEASED (default: everything but ARCHIVED)."),
        ],
        responses={200: PatientSerializer(many=True)},
    )
    def list(self, request):
        scope = require_scope(request)

        status_q = (request.query_params.get("status") or "").strip().upper() or None
        if status_q and status_q not in STATUS_CHOICES:
            raise ValidationError({"status": f"Unknown status '{status_q}'."})

        qs = search_patients(tenant_id=scope.tenant_id, q=request.query_params.get("q"), status=status_q)

        f = PatientFilter(request.query_params, queryset=qs)
        if not f.is_valid():
            raise ValidationError(f.errors)

        return paginate(request, f.qs, PatientSerializer)

    @extend_schema(tags=["Patients"], responses={200: PatientSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        patient = get_patient(tenant_id=scope.tenant_id, patient_id=_uuid_or_404(pk))
        return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Patients"], request=PatientCreateSerializer, responses={201: PatientSerializer})
    def create(self, request):
        scope = require_scope(request)

        ser = PatientCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        patient = PatientService.create_patient(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            **ser.validated_data,
        )
        patient = get_patient(tenant_id=scope.tenant_id, patient_id=patient.id)
        return Response(PatientSerializer(patient).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Patients"], request=PatientUpdateSerializer, responses={200: PatientSerializer})
    def partial_update(self, request, pk=None):
        scope = require_scope(request)

        ser = PatientUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        PatientService.update_patient(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=_uuid_or_404(pk),
            data=ser.validated_data,
        )
        patient = get_patient(tenant_id=scope.tenant_id, patient_id=_uuid_or_404(pk))
        return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Patients"], request=None, responses={200: PatientSerializer})
    @action(detail=True, methods=["post"], url_path="archive")
    def archive(self, request, pk=None):
        scope = require_scope(request)
        patient = PatientService.archive_patient(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=_uuid_or_404(pk),
        )
        return Response({"id": str(patient.id), "status": patient.status}, status=status.HTTP_200_OK)

    @extend_schema(tags=["Patients"], request=None, responses={200: PatientSerializer})
    @action(detail=True, methods=["post"], url_path="restore")
    def restore(self, request, pk=None):
        scope = require_scope(request)
        patient = PatientService.restore_patient(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=_uuid_or_404(pk),
        )
        return Response({"id": str(patient.id), "status": patient.status}, status=status.HTTP_200_OK)

    # ------------------------------------------------------------
    # Sub-resources: GET lists, POST adds
    # ------------------------------------------------------------
    @extend_schema(tags=["Patients"], request=ContactInputSerializer, responses={200: ContactSerializer(many=True)})
    @action(detail=True, methods=["get", "post"], url_path="contacts")
    def contacts(self, request, pk=None):
        scope = require_scope(request)
        patient = get_patient(tenant_id=scope.tenant_id, patient_id=_uuid_or_404(pk))

        if request.method == "GET":
            qs = patient.contacts.order_by("-is_primary", "created_at")
            return Response(ContactSerializer(qs, many=True).data, status=status.HTTP_200_OK)

        ser = ContactInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        is_primary = data.pop("is_primary", False)

        contact = PatientService.add_contact(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=patient.id,
            data=data,
            is_primary=is_primary,
        )
        return Response(ContactSerializer(contact).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Patients"],
        request=EmergencyContactInputSerializer,
        responses={200: EmergencyContactSerializer(many=True)},
    )
    @action(detail=True, methods=["get", "post"], url_path="emergency-contacts")
    def emergency_contacts(self, request, pk=None):
        scope = require_scope(request)
        patient = get_patient(tenant_id=scope.tenant_id, patient_id=_uuid_or_404(pk))

        if request.method == "GET":
            qs = patient.emergency_contacts.order_by("-is_primary", "created_at")
            return Response(EmergencyContactSerializer(qs, many=True).data, status=status.HTTP_200_OK)

        ser = EmergencyContactInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        is_primary = data.pop("is_primary", False)

        contact = PatientService.add_emergency_contact(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=patient.id,
            data=data,
            is_primary=is_primary,
        )
        return Response(EmergencyContactSerializer(contact).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Patients"],
        request=InsuranceInputSerializer,
        responses={200: InsuranceSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="active", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False,
                             description="GET only: true lists active policies only."),
        ],
    )
    @action(detail=True, methods=["get", "post"], url_path="insurances")
    def insurances(self, request, pk=None):
        scope = require_scope(request)
        patient = get_patient(tenant_id=scope.tenant_id, patient_id=_uuid_or_404(pk))

        if request.method == "GET":
            qs = patient.insurances.order_by("type", "-is_active", "-created_at")
            if (request.query_params.get("active") or "").lower() in ("1", "true", "yes"):
                qs = qs.filter(is_active=True)
            return Response(InsuranceSerializer(qs, many=True).data, status=status.HTTP_200_OK)

        ser = InsuranceInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        ins = InsuranceService.add_insurance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=patient.id,
            data=ser.validated_data,
        )
        return Response(InsuranceSerializer(ins).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Patients"], request=DocumentInputSerializer, responses={200: DocumentSerializer(many=True)})
    @action(detail=True, methods=["get", "post"], url_path="documents")
    def documents(self, request, pk=None):
        scope = require_scope(request)
        patient_id = _uuid_or_404(pk)

        if request.method == "GET":
            get_patient(tenant_id=scope.tenant_id, patient_id=patient_id)
            qs = list_documents(
                tenant_id=scope.tenant_id,
                patient_id=patient_id,
                type=request.query_params.get("type") or None,
            )
            return paginate(request, qs, DocumentSerializer)

        ser = DocumentInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        doc = DocumentService.create_document(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            patient_id=patient_id,
            data=ser.validated_data,
        )
        return Response(DocumentSerializer(doc).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Patients"], responses={200: HouseholdSerializer})
    @action(detail=True, methods=["get"], url_path="household")
    def household(self, request, pk=None):
        scope = require_scope(request)
        member = get_household_for_patient(tenant_id=scope.tenant_id, patient_id=_uuid_or_404(pk))
        if member is None:
            return Response({"household": None}, status=status.HTTP_200_OK)
        return Response({"household": HouseholdSerializer(member.household).data}, status=status.HTTP_200_OK)


class InsuranceViewSet(viewsets.ViewSet):
    permission_classes = [InsurancePermission]

    serializer_class = InsuranceSerializer
    queryset = PatientInsurance.objects.none()

    @extend_schema(tags=["Insurance"], responses={200: InsuranceSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        ins = PatientInsurance.objects.filter(
            id=_uuid_or_404(pk, "Insurance"),
            patient__tenant_id=scope.tenant_id,
        ).first()
        if ins is None:
            raise NotFound("Insurance not found.")
        return Response(InsuranceSerializer(ins).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Insurance"], request=InsuranceUpdateSerializer, responses={200: InsuranceSerializer})
    def partial_update(self, request, pk=None):
        scope = require_scope(request)

        ser = InsuranceUpdateSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)

        ins = InsuranceService.update_insurance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            insurance_id=_uuid_or_404(pk, "Insurance"),
            data=ser.validated_data,
        )
        return Response(InsuranceSerializer(ins).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Insurance"], responses={200: InsuranceSerializer})
    def destroy(self, request, pk=None):
        scope = require_scope(request)
        ins = InsuranceService.remove_insurance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            insurance_id=_uuid_or_404(pk, "Insurance"),
        )
        return Response(InsuranceSerializer(ins).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Insurance"], request=InsuranceVerifySerializer, responses={200: InsuranceSerializer})
    @action(detail=True, methods=["post"], url_path="verify")
    def verify(self, request, pk=None):
        scope = require_scope(request)

        ser = InsuranceVerifySerializer(data=request.data or {})
        ser.is_valid(raise_exception=True)

        ins = InsuranceService.verify_insurance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            insurance_id=_uuid_or_404(pk, "Insurance"),
            notes=ser.validated_data.get("notes", ""),
        )
        return Response(InsuranceSerializer(ins).data, status=status.HTTP_200_OK)


class DocumentViewSet(viewsets.ViewSet):
    permission_classes = [DocumentPermission]

    serializer_class = DocumentSerializer
    queryset = PatientDocument.objects.none()

    @extend_schema(tags=["Documents"], responses={200: DocumentSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        doc = PatientDocument.objects.filter(
            id=_uuid_or_404(pk, "Document"),
            patient__tenant_id=scope.tenant_id,
        ).first()
        if doc is None:
            raise NotFound("Document not found.")
        return Response(DocumentSerializer(doc).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Documents"], request=DocumentUpdateSerializer, responses={200: DocumentSerializer})
    def partial_update(self, request, pk=None):
        scope = require_scope(request)

        ser = DocumentUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        doc = DocumentService.update_document(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            document_id=_uuid_or_404(pk, "Document"),
            data=ser.validated_data,
        )
        return Response(DocumentSerializer(doc).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Documents"], responses={204: None})
    def destroy(self, request, pk=None):
        scope = require_scope(request)
        DocumentService.delete_document(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            document_id=_uuid_or_404(pk, "Document"),
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class HouseholdViewSet(viewsets.ViewSet):
    permission_classes = [HouseholdPermission]

    serializer_class = HouseholdSerializer
    queryset = Household.objects.none()

    def _get(self, request, pk) -> Household:
        scope = require_scope(request)
        household = (
            Household.objects.filter(id=_uuid_or_404(pk, "Household"), tenant_id=scope.tenant_id)
            .prefetch_related("members")
            .first()
        )
        if household is None:
            raise NotFound("Household not found.")
        return household

    @extend_schema(tags=["Households"], responses={200: HouseholdSerializer})
    def retrieve(self, request, pk=None):
        return Response(HouseholdSerializer(self._get(request, pk)).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Households"], request=HouseholdCreateSerializer, responses={201: HouseholdSerializer})
    def create(self, request):
        scope = require_scope(request)

        ser = HouseholdCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        household = HouseholdService.create_household(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            **ser.validated_data,
        )
        return Response(HouseholdSerializer(self._get(request, household.id)).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Households"], request=HouseholdMemberInputSerializer, responses={201: HouseholdMemberSerializer})
    @action(detail=True, methods=["post"], url_path="members")
    def members(self, request, pk=None):
        scope = require_scope(request)

        ser = HouseholdMemberInputSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        member = HouseholdService.add_member(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            household_id=_uuid_or_404(pk, "Household"),
            **ser.validated_data,
        )
        return Response(HouseholdMemberSerializer(member).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Households"], request=HouseholdMemberUpdateSerializer, responses={200: HouseholdMemberSerializer})
    @action(detail=True, methods=["patch", "delete"], url_path=r"members/(?P<member_id>[^/.]+)")
    def member(self, request, pk=None, member_id=None):
        scope = require_scope(request)
        self._get(request, pk)
        mid = _uuid_or_404(member_id, "Household member")

        if request.method == "DELETE":
            HouseholdService.remove_member(
                tenant_id=scope.tenant_id,
                facility_id=scope.facility_id,
                actor_user_id=actor_user_id(request),
                member_id=mid,
            )
            return Response(status=status.HTTP_204_NO_CONTENT)

        ser = HouseholdMemberUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        member = HouseholdService.update_member(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=actor_user_id(request),
            member_id=mid,
            data=ser.validated_data,
        )
        return Response(HouseholdMemberSerializer(member).data, status=status.HTTP_200_OK)
