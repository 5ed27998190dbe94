# chiro_core/patients/models.py
import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from chiro_core.common.models import TenantScopedModel, TimeStampedModel
from chiro_core.patients.phonetics import normalize_phone, soundex


class PatientStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    INACTIVE = "INACTIVE", "Inactive"
    ARCHIVED = "ARCHIVED", "Archived"
    DECEASED = "DECEASED", "Deceased"


class Gender(models.TextChoices):
    MALE = "MALE", "Male"
    FEMALE = "FEMALE", "Female"
    NON_BINARY = "NON_BINARY", "Non-binary"
    OTHER = "OTHER", "Other"
    PREFER_NOT_TO_SAY = "PREFER_NOT_TO_SAY", "Prefer not to say"


class ContactPreference(models.TextChoices):
    EMAIL = "EMAIL", "Email"
    PHONE = "PHONE", "Phone"
    SMS = "SMS", "SMS"
    MAIL = "MAIL", "Mail"


class InsuranceType(models.TextChoices):
    PRIMARY = "PRIMARY", "Primary"
    SECONDARY = "SECONDARY", "Secondary"
    TERTIARY = "TERTIARY", "Tertiary"


class SubscriberRelationship(models.TextChoices):
    SELF = "SELF", "Self"
    SPOUSE = "SPOUSE", "Spouse"
    CHILD = "CHILD", "Child"
    OTHER = "OTHER", "Other"


class DocumentType(models.TextChoices):
    INSURANCE_CARD_FRONT = "INSURANCE_CARD_FRONT", "Insurance card (front)"
    INSURANCE_CARD_BACK = "INSURANCE_CARD_BACK", "Insurance card (back)"
    PHOTO_ID = "PHOTO_ID", "Photo ID"
    CONSENT_FORM = "CONSENT_FORM", "Consent form"
    INTAKE_FORM = "INTAKE_FORM", "Intake form"
    CLINICAL_NOTE = "CLINICAL_NOTE", "Clinical note"
    LAB_RESULT = "LAB_RESULT", "Lab result"
    IMAGING = "IMAGING", "Imaging"
    REFERRAL = "REFERRAL", "Referral"
    OTHER = "OTHER", "Other"


class HouseholdRelationship(models.TextChoices):
    SPOUSE = "SPOUSE", "Spouse"
    PARENT = "PARENT", "Parent"
    CHILD = "CHILD", "Child"
    SIBLING = "SIBLING", "Sibling"
    GUARDIAN = "GUARDIAN", "Guardian"
    OTHER = "OTHER", "Other"


class Patient(TenantScopedModel):
    """
    Patient record owned by a practice (tenant).
    Archived, never deleted: merge sources and deactivated charts keep their row.
    """
    # human-readable medical record number, unique per tenant
    mrn = models.CharField(max_length=32)

    status = models.CharField(
        max_length=16,
        choices=PatientStatus.choices,
        default=PatientStatus.ACTIVE,
        db_index=True,
    )
    archived_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "patients_patient"
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "mrn"], name="uq_patient_tenant_mrn"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "status"]),
        ]

    @property
    def is_archived(self) -> bool:
        return self.status == PatientStatus.ARCHIVED

    def __str__(self) -> str:
        return self.mrn


class PatientDemographics(TimeStampedModel):
    """
    1:1 with Patient.

    first_name_soundex / last_name_soundex / ssn_last4 are derived columns:
    save() recomputes them from the current values, so every write path
    (create, update, merge) keeps them consistent.
    """
    patient = models.OneToOneField(Patient, on_delete=models.CASCADE, related_name="demographics")

    first_name = models.CharField(max_length=100)
    middle_name = models.CharField(max_length=100, blank=True, default="")
    last_name = models.CharField(max_length=100)
    preferred_name = models.CharField(max_length=100, blank=True, default="")
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=24, choices=Gender.choices, blank=True, default="")
    pronouns = models.CharField(max_length=32, blank=True, default="")

    # never serialized; only ssn_last4 leaves the database
    ssn = models.CharField(max_length=16, blank=True, default="")
    ssn_last4 = models.CharField(max_length=4, blank=True, default="")

    language = models.CharField(max_length=16, default="en")
    ethnicity = models.CharField(max_length=64, blank=True, default="")
    race = models.CharField(max_length=64, blank=True, default="")
    marital_status = models.CharField(max_length=32, blank=True, default="")
    occupation = models.CharField(max_length=128, blank=True, default="")
    employer = models.CharField(max_length=128, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    first_name_soundex = models.CharField(max_length=4, blank=True, default="", db_index=True)
    last_name_soundex = models.CharField(max_length=4, blank=True, default="", db_index=True)

    DERIVED_FIELDS = ("first_name_soundex", "last_name_soundex", "ssn_last4")

    class Meta:
        db_table = "patients_demographics"
        indexes = [
            models.Index(fields=["date_of_birth"]),
            models.Index(fields=["last_name", "first_name"]),
        ]

    def refresh_derived_fields(self) -> None:
        self.first_name_soundex = soundex(self.first_name)
        self.last_name_soundex = soundex(self.last_name)
        digits = "".join(ch for ch in (self.ssn or "") if ch.isdigit())
        self.ssn_last4 = digits[-4:] if len(digits) >= 4 else ""

    def save(self, *args, **kwargs):
        self.refresh_derived_fields()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | set(self.DERIVED_FIELDS)
        super().save(*args, **kwargs)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PatientContact(TimeStampedModel):
    """
    Address/phone/email record. At most one is_primary per patient
    (services unset the others before inserting a new primary).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name="contacts")

    is_primary = models.BooleanField(default=False)
    contact_preference = models.CharField(
        max_length=8,
        choices=ContactPreference.choices,
        default=ContactPreference.PHONE,
    )

    address_line1 = models.CharField(max_length=255, blank=True, default="")
    address_line2 = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=128, blank=True, default="")
    state = models.CharField(max_length=64, blank=True, default="")
    zip_code = models.CharField(max_length=16, blank=True, default="")
    country = models.CharField(max_length=2, default="US")

    home_phone = models.CharField(max_length=32, blank=True, default="", db_index=True)
    mobile_phone = models.CharField(max_length=32, blank=True, default="", db_index=True)
    work_phone = models.CharField(max_length=32, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    # digits of best_phone; duplicate search matches on this
    phone_digits = models.CharField(max_length=32, blank=True, default="", editable=False, db_index=True)

    allow_sms = models.BooleanField(default=True)
    allow_email = models.BooleanField(default=True)
    allow_voicemail = models.BooleanField(default=True)

    class Meta:
        db_table = "patients_contact"
        indexes = [
            models.Index(fields=["patient", "is_primary"]),
        ]

    @property
    def best_phone(self) -> str:
        return self.mobile_phone or self.home_phone or ""

    def save(self, *args, **kwargs):
        self.phone_digits = normalize_phone(self.best_phone)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | {"phone_digits"}
        super().save(*args, **kwargs)


class EmergencyContact(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name="emergency_contacts")

    name = models.CharField(max_length=255)
    relationship = models.CharField(max_length=64)
    phone = models.CharField(max_length=32)
    alt_phone = models.CharField(max_length=32, blank=True, default="")
    is_primary = models.BooleanField(default=False)

    class Meta:
        db_table = "patients_emergency_contact"


class PatientInsurance(TimeStampedModel):
    """
    Coverage record. At most one active policy per (patient, type); inactive rows
    are kept as history (including insurances carried over by a merge).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name="insurances")

    type = models.CharField(max_length=16, choices=InsuranceType.choices, default=InsuranceType.PRIMARY)
    payer_name = models.CharField(max_length=255)
    payer_id = models.CharField(max_length=64, blank=True, default="")
    plan_name = models.CharField(max_length=255, blank=True, default="")
    plan_type = models.CharField(max_length=64, blank=True, default="")
    policy_number = models.CharField(max_length=64)
    group_number = models.CharField(max_length=64, blank=True, default="")

    subscriber_relationship = models.CharField(
        max_length=8,
        choices=SubscriberRelationship.choices,
        default=SubscriberRelationship.SELF,
    )
    subscriber_id = models.CharField(max_length=64, blank=True, default="")
    subscriber_first_name = models.CharField(max_length=100, blank=True, default="")
    subscriber_last_name = models.CharField(max_length=100, blank=True, default="")
    subscriber_dob = models.DateField(null=True, blank=True)

    effective_date = models.DateField(null=True, blank=True)
    termination_date = models.DateField(null=True, blank=True)

    copay = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    deductible = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    deductible_met = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    out_of_pocket_max = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    out_of_pocket_met = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    is_active = models.BooleanField(default=True, db_index=True)

    verified_at = models.DateTimeField(null=True, blank=True)
    verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="verified_insurances",
        null=True,
        blank=True,
    )
    verification_notes = models.TextField(blank=True, default="")

    DECIMAL_FIELDS = ("copay", "deductible", "deductible_met", "out_of_pocket_max", "out_of_pocket_met")

    class Meta:
        db_table = "patients_insurance"
        constraints = [
            models.UniqueConstraint(
                fields=["patient", "type"],
                condition=Q(is_active=True),
                name="uq_active_insurance_per_type",
            ),
        ]
        indexes = [
            models.Index(fields=["patient", "type", "is_active"]),
        ]


class PatientDocument(TimeStampedModel):
    """
    Uploaded file metadata (the blob lives in object storage under storage_key).
    Documents can be re-pointed at another patient, which is how merges carry them over.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="documents")

    type = models.CharField(max_length=32, choices=DocumentType.choices, default=DocumentType.OTHER)
    file_name = models.CharField(max_length=255)
    file_size = models.PositiveBigIntegerField(default=0)
    mime_type = models.CharField(max_length=128)
    storage_key = models.CharField(max_length=512)
    description = models.TextField(blank=True, default="")
    is_confidential = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="uploaded_patient_documents",
        null=True,
        blank=True,
    )
    uploaded_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "patients_document"
        indexes = [
            models.Index(fields=["patient", "type"]),
        ]


class Household(TenantScopedModel):
    name = models.CharField(max_length=255)

    class Meta:
        db_table = "patients_household"

    def __str__(self) -> str:
        return self.name


class HouseholdMember(TimeStampedModel):
    """
    Join row Patient <-> Household.
    A patient belongs to at most one household (unique patient); one head of
    house and one guarantor per household (services clear the flag on others).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    household = models.ForeignKey(Household, on_delete=models.CASCADE, related_name="members")
    patient = models.OneToOneField(Patient, on_delete=models.CASCADE, related_name="household_membership")

    relationship = models.CharField(max_length=16, choices=HouseholdRelationship.choices)
    is_head_of_house = models.BooleanField(default=False)
    is_guarantor = models.BooleanField(default=False)

    class Meta:
        db_table = "patients_household_member"
        constraints = [
            models.UniqueConstraint(
                fields=["household"],
                condition=Q(is_head_of_house=True),
                name="uq_household_single_head",
            ),
            models.UniqueConstraint(
                fields=["household"],
                condition=Q(is_guarantor=True),
                name="uq_household_single_guarantor",
            ),
        ]
