# chiro_core/patients/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from chiro_core.patients.models import (
    ContactPreference,
    DocumentType,
    EmergencyContact,
    Gender,
    Household,
    HouseholdMember,
    HouseholdRelationship,
    InsuranceType,
    Patient,
    PatientContact,
    PatientDemographics,
    PatientDocument,
    PatientInsurance,
    PatientStatus,
    SubscriberRelationship,
)


# ----------------------------------------------------------------------
# Read models
# ----------------------------------------------------------------------
class DemographicsSerializer(serializers.ModelSerializer):
    class Meta:
        model = PatientDemographics
        # ssn is never serialized; ssn_last4 is enough for identity checks
        fields = [
            "first_name",
            "middle_name",
            "last_name",
            "preferred_name",
            "date_of_birth",
            "gender",
            "pronouns",
            "ssn_last4",
            "language",
            "ethnicity",
            "race",
            "marital_status",
            "occupation",
            "employer",
            "notes",
            "first_name_soundex",
            "last_name_soundex",
        ]
        read_only_fields = fields


class ContactSerializer(serializers.ModelSerializer):
    class Meta:
        model = PatientContact
        fields = [
            "id",
            "is_primary",
            "contact_preference",
            "address_line1",
            "address_line2",
            "city",
            "state",
            "zip_code",
            "country",
            "home_phone",
            "mobile_phone",
            "work_phone",
            "email",
            "allow_sms",
            "allow_email",
            "allow_voicemail",
            "created_at",
        ]
        read_only_fields = fields


class EmergencyContactSerializer(serializers.ModelSerializer):
    class Meta:
        model = EmergencyContact
        fields = ["id", "name", "relationship", "phone", "alt_phone", "is_primary", "created_at"]
        read_only_fields = fields


class InsuranceSerializer(serializers.ModelSerializer):
    patient_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PatientInsurance
        fields = [
            "id",
            "patient_id",
            "type",
            "payer_name",
            "payer_id",
            "plan_name",
            "plan_type",
            "policy_number",
            "group_number",
            "subscriber_relationship",
            "subscriber_id",
            "subscriber_first_name",
            "subscriber_last_name",
            "subscriber_dob",
            "effective_date",
            "termination_date",
            "copay",
            "deductible",
            "deductible_met",
            "out_of_pocket_max",
            "out_of_pocket_met",
            "is_active",
            "verified_at",
            "verified_by",
            "verification_notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class DocumentSerializer(serializers.ModelSerializer):
    patient_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PatientDocument
        fields = [
            "id",
            "patient_id",
            "type",
            "file_name",
            "file_size",
            "mime_type",
            "storage_key",
            "description",
            "is_confidential",
            "uploaded_by",
            "uploaded_at",
        ]
        read_only_fields = fields


class DocumentSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = PatientDocument
        fields = ["id", "type", "file_name"]
        read_only_fields = fields


class HouseholdMemberSerializer(serializers.ModelSerializer):
    household_id = serializers.UUIDField(read_only=True)
    patient_id = serializers.UUIDField(read_only=True)
    household_name = serializers.CharField(source="household.name", read_only=True)

    class Meta:
        model = HouseholdMember
        fields = [
            "id",
            "household_id",
            "household_name",
            "patient_id",
            "relationship",
            "is_head_of_house",
            "is_guarantor",
        ]
        read_only_fields = fields


class HouseholdSerializer(serializers.ModelSerializer):
    members = HouseholdMemberSerializer(many=True, read_only=True)

    class Meta:
        model = Household
        fields = ["id", "tenant_id", "name", "members", "created_at"]
        read_only_fields = fields


class PatientSerializer(serializers.ModelSerializer):
    demographics = DemographicsSerializer(read_only=True)
    primary_contact = serializers.SerializerMethodField()

    class Meta:
        model = Patient
        fields = [
            "id",
            "tenant_id",
            "mrn",
            "status",
            "archived_at",
            "demographics",
            "primary_contact",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_primary_contact(self, obj):
        contacts = getattr(obj, "primary_contacts", None)
        if contacts is None:
            contacts = list(obj.contacts.filter(is_primary=True)[:1])
        return ContactSerializer(contacts[0]).data if contacts else None


# ----------------------------------------------------------------------
# Write contracts
# ----------------------------------------------------------------------
class DemographicsInputSerializer(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    middle_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    last_name = serializers.CharField(max_length=100)
    preferred_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    date_of_birth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=Gender.choices, required=False, allow_blank=True)
    pronouns = serializers.CharField(max_length=32, required=False, allow_blank=True)
    ssn = serializers.CharField(max_length=16, required=False, allow_blank=True, write_only=True)
    language = serializers.CharField(max_length=16, required=False)
    ethnicity = serializers.CharField(max_length=64, required=False, allow_blank=True)
    race = serializers.CharField(max_length=64, required=False, allow_blank=True)
    marital_status = serializers.CharField(max_length=32, required=False, allow_blank=True)
    occupation = serializers.CharField(max_length=128, required=False, allow_blank=True)
    employer = serializers.CharField(max_length=128, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class ContactInputSerializer(serializers.Serializer):
    is_primary = serializers.BooleanField(required=False, default=False)
    contact_preference = serializers.ChoiceField(choices=ContactPreference.choices, required=False)
    address_line1 = serializers.CharField(max_length=255, required=False, allow_blank=True)
    address_line2 = serializers.CharField(max_length=255, required=False, allow_blank=True)
    city = serializers.CharField(max_length=128, required=False, allow_blank=True)
    state = serializers.CharField(max_length=64, required=False, allow_blank=True)
    zip_code = serializers.CharField(max_length=16, required=False, allow_blank=True)
    country = serializers.CharField(max_length=2, required=False)
    home_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    mobile_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    work_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    allow_sms = serializers.BooleanField(required=False)
    allow_email = serializers.BooleanField(required=False)
    allow_voicemail = serializers.BooleanField(required=False)


class EmergencyContactInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    relationship = serializers.CharField(max_length=64)
    phone = serializers.CharField(max_length=32)
    alt_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    is_primary = serializers.BooleanField(required=False, default=False)


class PatientCreateSerializer(serializers.Serializer):
    demographics = DemographicsInputSerializer()
    contact = ContactInputSerializer(required=False)
    emergency_contact = EmergencyContactInputSerializer(required=False)
    status = serializers.ChoiceField(
        choices=[PatientStatus.ACTIVE, PatientStatus.INACTIVE],
        required=False,
        default=PatientStatus.ACTIVE,
    )


class PatientUpdateSerializer(DemographicsInputSerializer):
    """
    Partial update contract (PATCH): any demographic field plus status.
    """
    first_name = serializers.CharField(max_length=100, required=False)
    last_name = serializers.CharField(max_length=100, required=False)
    status = serializers.ChoiceField(
        choices=[PatientStatus.ACTIVE, PatientStatus.INACTIVE, PatientStatus.DECEASED],
        required=False,
    )

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("At least one field is required.")
        return attrs


class InsuranceInputSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=InsuranceType.choices, required=False, default=InsuranceType.PRIMARY)
    payer_name = serializers.CharField(max_length=255)
    payer_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    plan_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    plan_type = serializers.CharField(max_length=64, required=False, allow_blank=True)
    policy_number = serializers.CharField(max_length=64)
    group_number = serializers.CharField(max_length=64, required=False, allow_blank=True)
    subscriber_relationship = serializers.ChoiceField(choices=SubscriberRelationship.choices, required=False)
    subscriber_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    subscriber_first_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    subscriber_last_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    subscriber_dob = serializers.DateField(required=False, allow_null=True)
    effective_date = serializers.DateField(required=False, allow_null=True)
    termination_date = serializers.DateField(required=False, allow_null=True)
    copay = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    deductible = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    deductible_met = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    out_of_pocket_max = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    out_of_pocket_met = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)

    def validate(self, attrs):
        start, end = attrs.get("effective_date"), attrs.get("termination_date")
        if start and end and end < start:
            raise serializers.ValidationError({"termination_date": "Must not be before effective_date."})
        return attrs


class InsuranceUpdateSerializer(InsuranceInputSerializer):
    type = serializers.ChoiceField(choices=InsuranceType.choices, required=False)
    payer_name = serializers.CharField(max_length=255, required=False)
    policy_number = serializers.CharField(max_length=64, required=False)
    is_active = serializers.BooleanField(required=False)


class InsuranceVerifySerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DocumentInputSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=DocumentType.choices, required=False, default=DocumentType.OTHER)
    file_name = serializers.CharField(max_length=255)
    file_size = serializers.IntegerField(min_value=0)
    mime_type = serializers.CharField(max_length=128)
    storage_key = serializers.CharField(max_length=512)
    description = serializers.CharField(required=False, allow_blank=True)
    is_confidential = serializers.BooleanField(required=False, default=False)


class DocumentUpdateSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=DocumentType.choices, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    is_confidential = serializers.BooleanField(required=False)


class HouseholdCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    head_patient_id = serializers.UUIDField(required=False)
    relationship = serializers.ChoiceField(
        choices=HouseholdRelationship.choices,
        required=False,
        default=HouseholdRelationship.OTHER,
    )


class HouseholdMemberInputSerializer(serializers.Serializer):
    patient_id = serializers.UUIDField()
    relationship = serializers.ChoiceField(choices=HouseholdRelationship.choices)
    is_head_of_house = serializers.BooleanField(required=False, default=False)
    is_guarantor = serializers.BooleanField(required=False, default=False)


class HouseholdMemberUpdateSerializer(serializers.Serializer):
    relationship = serializers.ChoiceField(choices=HouseholdRelationship.choices, required=False)
    is_head_of_house = serializers.BooleanField(required=False)
    is_guarantor = serializers.BooleanField(required=False)
