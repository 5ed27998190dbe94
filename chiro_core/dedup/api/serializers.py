# chiro_core/dedup/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from chiro_core.dedup.models import PatientMerge
from chiro_core.patients.api.serializers import (
    ContactSerializer,
    DemographicsSerializer,
    DocumentSummarySerializer,
    EmergencyContactSerializer,
    HouseholdMemberSerializer,
    InsuranceSerializer,
)


# ----------------------------------------------------------------------
# Query/input contracts
# ----------------------------------------------------------------------
class DuplicatesQuerySerializer(serializers.Serializer):
    patient_id = serializers.UUIDField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100)


class CompareQuerySerializer(serializers.Serializer):
    patient_id_1 = serializers.UUIDField()
    patient_id_2 = serializers.UUIDField()


class HistoryQuerySerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()


class MergeFieldsSerializer(serializers.Serializer):
    demographics = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    contacts = serializers.BooleanField(required=False, default=False)
    emergency_contacts = serializers.BooleanField(required=False, default=False)
    insurances = serializers.BooleanField(required=False, default=False)
    documents = serializers.BooleanField(required=False, default=True)


class MergeRequestSerializer(serializers.Serializer):
    source_patient_id = serializers.UUIDField()
    target_patient_id = serializers.UUIDField()
    fields_to_keep_from_source = MergeFieldsSerializer(required=False)
    reason = serializers.CharField(min_length=1, max_length=2000)


# ----------------------------------------------------------------------
# Outputs
# ----------------------------------------------------------------------
class DuplicatePatientSerializer(serializers.Serializer):
    """Compact patient card used in duplicate listings."""

    id = serializers.UUIDField()
    mrn = serializers.CharField()
    first_name = serializers.SerializerMethodField()
    last_name = serializers.SerializerMethodField()
    date_of_birth = serializers.SerializerMethodField()
    phone = serializers.SerializerMethodField()

    def _demo(self, obj):
        return getattr(obj, "demographics", None)

    def get_first_name(self, obj):
        return getattr(self._demo(obj), "first_name", None)

    def get_last_name(self, obj):
        return getattr(self._demo(obj), "last_name", None)

    def get_date_of_birth(self, obj):
        dob = getattr(self._demo(obj), "date_of_birth", None)
        return dob.isoformat() if dob else None

    def get_phone(self, obj):
        contacts = getattr(obj, "primary_contacts", None) or []
        return (contacts[0].best_phone or None) if contacts else None


class DuplicateMatchSerializer(serializers.Serializer):
    patient = DuplicatePatientSerializer()
    similarity_score = serializers.IntegerField(source="match.score")
    reasons = serializers.ListField(child=serializers.CharField(), source="match.reasons")


class DuplicateGroupSerializer(serializers.Serializer):
    patients = DuplicatePatientSerializer(many=True)
    reason = serializers.CharField()


class ComparedPatientSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    mrn = serializers.CharField()
    status = serializers.CharField()
    archived_at = serializers.DateTimeField(allow_null=True)
    created_at = serializers.DateTimeField()
    demographics = serializers.SerializerMethodField()
    contacts = ContactSerializer(many=True)
    emergency_contacts = EmergencyContactSerializer(many=True)
    insurances = InsuranceSerializer(many=True, source="active_insurances")
    documents = DocumentSummarySerializer(many=True)
    household = serializers.SerializerMethodField()

    def get_demographics(self, obj):
        demo = getattr(obj, "demographics", None)
        if demo is None:
            return None
        data = DemographicsSerializer(demo).data
        # full SSN is never returned; the key stays so clients render "hidden"
        data["ssn"] = None
        return data

    def get_household(self, obj):
        member = getattr(obj, "household_membership", None)
        return HouseholdMemberSerializer(member).data if member is not None else None


class ComparisonSerializer(serializers.Serializer):
    patient_1 = ComparedPatientSerializer()
    patient_2 = ComparedPatientSerializer()
    similarity_score = serializers.IntegerField(source="match.score")
    reasons = serializers.ListField(child=serializers.CharField(), source="match.reasons")


class MergeResultSerializer(serializers.Serializer):
    """Response of a completed merge, rendered from the PatientMerge row."""

    success = serializers.SerializerMethodField()
    merge_id = serializers.UUIDField(source="id", read_only=True)
    target_patient_id = serializers.UUIDField(read_only=True)
    source_patient_archived = serializers.BooleanField(source="source_patient.is_archived", read_only=True)

    def get_success(self, obj) -> bool:
        return True


class PatientMergeSerializer(serializers.ModelSerializer):
    source_patient_id = serializers.UUIDField(read_only=True)
    target_patient_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PatientMerge
        fields = [
            "id",
            "tenant_id",
            "source_patient_id",
            "target_patient_id",
            "merged_by",
            "reason",
            "source_snapshot",
            "fields_kept",
            "merged_at",
        ]
        read_only_fields = fields
