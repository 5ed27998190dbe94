# chiro_core/patients/services.py
from __future__ import annotations

import logging
import secrets
import time
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from chiro_core.audit.services import AuditService
from chiro_core.common.api.exceptions import BadRequestError, ConflictError
from chiro_core.patients.models import (
    EmergencyContact,
    Household,
    HouseholdMember,
    InsuranceType,
    Patient,
    PatientContact,
    PatientDemographics,
    PatientDocument,
    PatientInsurance,
    PatientStatus,
)

logger = logging.getLogger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
MRN_MAX_ATTEMPTS = 10

DEMOGRAPHIC_FIELDS = (
    "first_name",
    "middle_name",
    "last_name",
    "preferred_name",
    "date_of_birth",
    "gender",
    "pronouns",
    "ssn",
    "language",
    "ethnicity",
    "race",
    "marital_status",
    "occupation",
    "employer",
    "notes",
)

CONTACT_FIELDS = (
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
)

INSURANCE_FIELDS = (
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
)


def _to_base36(n: int) -> str:
    out = ""
    while n:
        n, rem = divmod(n, 36)
        out = _BASE36[rem] + out
    return out or "0"


def generate_mrn() -> str:
    """P + base36(epoch millis) + 4 random base36 chars."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"P{_to_base36(int(time.time() * 1000))}{suffix}"


def _unique_mrn(tenant_id: UUID) -> str:
    for _ in range(MRN_MAX_ATTEMPTS):
        mrn = generate_mrn()
        if not Patient.objects.filter(tenant_id=tenant_id, mrn=mrn).exists():
            return mrn
    raise ConflictError("Could not allocate a unique medical record number.")


def _get_patient(*, tenant_id: UUID, patient_id: UUID, for_update: bool = False) -> Patient:
    qs = Patient.objects.filter(id=patient_id, tenant_id=tenant_id)
    if for_update:
        qs = qs.select_for_update()
    patient = qs.first()
    if patient is None:
        raise NotFound("Patient not found.")
    return patient


def _pick(data: dict | None, allowed) -> dict:
    return {k: v for k, v in (data or {}).items() if k in allowed}


class PatientService:
    @staticmethod
    @transaction.atomic
    def create_patient(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        demographics: dict,
        contact: dict | None = None,
        emergency_contact: dict | None = None,
        status: str = PatientStatus.ACTIVE,
    ) -> Patient:
        patient = Patient.objects.create(
            tenant_id=tenant_id,
            mrn=_unique_mrn(tenant_id),
            status=status,
        )
        PatientDemographics.objects.create(patient=patient, **_pick(demographics, DEMOGRAPHIC_FIELDS))

        if contact:
            PatientContact.objects.create(patient=patient, is_primary=True, **_pick(contact, CONTACT_FIELDS))

        if emergency_contact:
            EmergencyContact.objects.create(
                patient=patient,
                is_primary=True,
                **_pick(emergency_contact, {"name", "relationship", "phone", "alt_phone"}),
            )

        AuditService.log(
            event_code="patient.created",
            entity_type="Patient",
            entity_id=patient.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"mrn": patient.mrn},
        )
        return patient

    @staticmethod
    @transaction.atomic
    def update_patient(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        patient_id: UUID,
        data: dict,
    ) -> Patient:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id, for_update=True)

        updates = _pick(data, DEMOGRAPHIC_FIELDS)
        status = (data or {}).get("status")

        if status and status != patient.status:
            if status == PatientStatus.ARCHIVED:
                raise BadRequestError("Use the archive action to archive a patient.")
            if patient.status == PatientStatus.ARCHIVED:
                raise BadRequestError("Restore the patient before changing its status.")
            patient.status = status
            patient.save(update_fields=["status", "updated_at"])

        if updates:
            demo = patient.demographics
            for k, v in updates.items():
                setattr(demo, k, v)
            demo.save(update_fields=[*updates.keys(), "updated_at"])

        changed = sorted(updates.keys()) + (["status"] if status else [])
        AuditService.log(
            event_code="patient.updated",
            entity_type="Patient",
            entity_id=patient.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            # "ssn" may be listed as changed; its value never is
            metadata={"updated_fields": changed},
        )
        return patient

    @staticmethod
    @transaction.atomic
    def archive_patient(*, tenant_id: UUID, facility_id: UUID, actor_user_id: int | None, patient_id: UUID) -> Patient:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id, for_update=True)
        if patient.status == PatientStatus.ARCHIVED:
            raise BadRequestError("Patient is already archived.")

        previous = patient.status
        patient.status = PatientStatus.ARCHIVED
        patient.archived_at = timezone.now()
        patient.save(update_fields=["status", "archived_at", "updated_at"])

        AuditService.log(
            event_code="patient.archived",
            entity_type="Patient",
            entity_id=patient.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"previous_status": previous},
        )
        return patient

    @staticmethod
    @transaction.atomic
    def restore_patient(*, tenant_id: UUID, facility_id: UUID, actor_user_id: int | None, patient_id: UUID) -> Patient:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id, for_update=True)
        if patient.status != PatientStatus.ARCHIVED:
            raise BadRequestError("Patient is not archived.")

        patient.status = PatientStatus.ACTIVE
        patient.archived_at = None
        patient.save(update_fields=["status", "archived_at", "updated_at"])

        AuditService.log(
            event_code="patient.restored",
            entity_type="Patient",
            entity_id=patient.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
        )
        return patient

    @staticmethod
    @transaction.atomic
    def add_contact(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        patient_id: UUID,
        data: dict,
        is_primary: bool = False,
    ) -> PatientContact:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id)

        # single primary per patient: clear before insert
        if is_primary:
            PatientContact.objects.filter(patient=patient, is_primary=True).update(is_primary=False)

        contact = PatientContact.objects.create(patient=patient, is_primary=is_primary, **_pick(data, CONTACT_FIELDS))

        AuditService.log(
            event_code="patient.contact_added",
            entity_type="PatientContact",
            entity_id=contact.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(patient.id), "is_primary": is_primary},
        )
        return contact

    @staticmethod
    @transaction.atomic
    def add_emergency_contact(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        patient_id: UUID,
        data: dict,
        is_primary: bool = False,
    ) -> EmergencyContact:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id)

        if is_primary:
            EmergencyContact.objects.filter(patient=patient, is_primary=True).update(is_primary=False)

        contact = EmergencyContact.objects.create(
            patient=patient,
            is_primary=is_primary,
            **_pick(data, {"name", "relationship", "phone", "alt_phone"}),
        )

        AuditService.log(
            event_code="patient.emergency_contact_added",
            entity_type="EmergencyContact",
            entity_id=contact.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(patient.id), "is_primary": is_primary},
        )
        return contact


class InsuranceService:
    @staticmethod
    def _get(*, tenant_id: UUID, insurance_id: UUID) -> PatientInsurance:
        ins = (
            PatientInsurance.objects.select_for_update()
            .filter(id=insurance_id, patient__tenant_id=tenant_id)
            .first()
        )
        if ins is None:
            raise NotFound("Insurance not found.")
        return ins

    @staticmethod
    def _deactivate_others(*, patient_id: UUID, type: str, exclude_id: UUID | None = None) -> int:
        qs = PatientInsurance.objects.filter(patient_id=patient_id, type=type, is_active=True)
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        return qs.update(is_active=False)

    @staticmethod
    @transaction.atomic
    def add_insurance(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        patient_id: UUID,
        data: dict,
    ) -> PatientInsurance:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id)
        fields = _pick(data, INSURANCE_FIELDS)
        ins_type = fields.get("type") or InsuranceType.PRIMARY

        deactivated = InsuranceService._deactivate_others(patient_id=patient.id, type=ins_type)
        ins = PatientInsurance.objects.create(patient=patient, is_active=True, **fields)

        AuditService.log(
            event_code="insurance.added",
            entity_type="PatientInsurance",
            entity_id=ins.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(patient.id), "type": ins.type, "deactivated": deactivated},
        )
        return ins

    @staticmethod
    @transaction.atomic
    def update_insurance(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        insurance_id: UUID,
        data: dict,
    ) -> PatientInsurance:
        ins = InsuranceService._get(tenant_id=tenant_id, insurance_id=insurance_id)
        updates = _pick(data, INSURANCE_FIELDS + ("is_active",))

        for k, v in updates.items():
            setattr(ins, k, v)

        # changing type or re-activating must not leave two active policies of one type
        if ins.is_active:
            InsuranceService._deactivate_others(patient_id=ins.patient_id, type=ins.type, exclude_id=ins.id)
        ins.save()

        AuditService.log(
            event_code="insurance.updated",
            entity_type="PatientInsurance",
            entity_id=ins.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"updated_fields": sorted(updates.keys())},
        )
        return ins

    @staticmethod
    @transaction.atomic
    def remove_insurance(*, tenant_id: UUID, facility_id: UUID, actor_user_id: int | None, insurance_id: UUID) -> PatientInsurance:
        """Soft removal: the policy stays as inactive history."""
        ins = InsuranceService._get(tenant_id=tenant_id, insurance_id=insurance_id)
        ins.is_active = False
        ins.save(update_fields=["is_active", "updated_at"])

        AuditService.log(
            event_code="insurance.removed",
            entity_type="PatientInsurance",
            entity_id=ins.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(ins.patient_id)},
        )
        return ins

    @staticmethod
    @transaction.atomic
    def verify_insurance(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        insurance_id: UUID,
        notes: str = "",
    ) -> PatientInsurance:
        ins = InsuranceService._get(tenant_id=tenant_id, insurance_id=insurance_id)
        ins.verified_at = timezone.now()
        ins.verified_by_id = actor_user_id
        ins.verification_notes = notes or ""
        ins.save(update_fields=["verified_at", "verified_by", "verification_notes", "updated_at"])

        AuditService.log(
            event_code="insurance.verified",
            entity_type="PatientInsurance",
            entity_id=ins.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
        )
        return ins


class HouseholdService:
    @staticmethod
    def _get_household(*, tenant_id: UUID, household_id: UUID) -> Household:
        household = Household.objects.filter(id=household_id, tenant_id=tenant_id).first()
        if household is None:
            raise NotFound("Household not found.")
        return household

    @staticmethod
    def _clear_flags(*, household: Household, is_head_of_house: bool, is_guarantor: bool, exclude_id=None) -> None:
        qs = HouseholdMember.objects.filter(household=household)
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        if is_head_of_house:
            qs.filter(is_head_of_house=True).update(is_head_of_house=False)
        if is_guarantor:
            qs.filter(is_guarantor=True).update(is_guarantor=False)

    @staticmethod
    @transaction.atomic
    def create_household(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        name: str,
        head_patient_id: UUID | None = None,
        relationship: str = "OTHER",
    ) -> Household:
        household = Household.objects.create(tenant_id=tenant_id, name=name)

        if head_patient_id is not None:
            HouseholdService.add_member(
                tenant_id=tenant_id,
                facility_id=facility_id,
                actor_user_id=actor_user_id,
                household_id=household.id,
                patient_id=head_patient_id,
                relationship=relationship,
                is_head_of_house=True,
                is_guarantor=True,
            )

        AuditService.log(
            event_code="household.created",
            entity_type="Household",
            entity_id=household.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
        )
        return household

    @staticmethod
    @transaction.atomic
    def add_member(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        household_id: UUID,
        patient_id: UUID,
        relationship: str,
        is_head_of_house: bool = False,
        is_guarantor: bool = False,
    ) -> HouseholdMember:
        household = HouseholdService._get_household(tenant_id=tenant_id, household_id=household_id)
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id)

        if HouseholdMember.objects.filter(patient=patient).exists():
            raise ConflictError("Patient already belongs to a household.")

        HouseholdService._clear_flags(household=household, is_head_of_house=is_head_of_house, is_guarantor=is_guarantor)

        try:
            member = HouseholdMember.objects.create(
                household=household,
                patient=patient,
                relationship=relationship,
                is_head_of_house=is_head_of_house,
                is_guarantor=is_guarantor,
            )
        except IntegrityError:
            raise ConflictError("Patient already belongs to a household.")

        AuditService.log(
            event_code="household.member_added",
            entity_type="HouseholdMember",
            entity_id=member.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"household_id": str(household.id), "patient_id": str(patient.id)},
        )
        return member

    @staticmethod
    @transaction.atomic
    def update_member(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        member_id: UUID,
        data: dict,
    ) -> HouseholdMember:
        member = (
            HouseholdMember.objects.select_for_update()
            .filter(id=member_id, household__tenant_id=tenant_id)
            .first()
        )
        if member is None:
            raise NotFound("Household member not found.")

        updates = _pick(data, {"relationship", "is_head_of_house", "is_guarantor"})
        HouseholdService._clear_flags(
            household=member.household,
            is_head_of_house=bool(updates.get("is_head_of_house")),
            is_guarantor=bool(updates.get("is_guarantor")),
            exclude_id=member.id,
        )
        for k, v in updates.items():
            setattr(member, k, v)
        member.save()

        AuditService.log(
            event_code="household.member_updated",
            entity_type="HouseholdMember",
            entity_id=member.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"updated_fields": sorted(updates.keys())},
        )
        return member

    @staticmethod
    def detach_patient(*, patient_id: UUID) -> UUID | None:
        """
        Drop the patient's membership (if any); delete the household once empty.
        Returns the household id the patient was detached from.
        Caller owns the transaction.
        """
        member = HouseholdMember.objects.select_related("household").filter(patient_id=patient_id).first()
        if member is None:
            return None

        household = member.household
        household_id = household.id
        member.delete()
        if not household.members.exists():
            household.delete()
        return household_id

    @staticmethod
    @transaction.atomic
    def remove_member(*, tenant_id: UUID, facility_id: UUID, actor_user_id: int | None, member_id: UUID) -> None:
        member = HouseholdMember.objects.filter(id=member_id, household__tenant_id=tenant_id).first()
        if member is None:
            raise NotFound("Household member not found.")

        household_id = HouseholdService.detach_patient(patient_id=member.patient_id)

        AuditService.log(
            event_code="household.member_removed",
            entity_type="HouseholdMember",
            entity_id=member_id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"household_id": str(household_id), "patient_id": str(member.patient_id)},
        )


class DocumentService:
    @staticmethod
    def _get(*, tenant_id: UUID, document_id: UUID) -> PatientDocument:
        doc = PatientDocument.objects.filter(id=document_id, patient__tenant_id=tenant_id).first()
        if doc is None:
            raise NotFound("Document not found.")
        return doc

    @staticmethod
    @transaction.atomic
    def create_document(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        patient_id: UUID,
        data: dict,
    ) -> PatientDocument:
        patient = _get_patient(tenant_id=tenant_id, patient_id=patient_id)
        doc = PatientDocument.objects.create(
            patient=patient,
            uploaded_by_id=actor_user_id,
            **_pick(
                data,
                {"type", "file_name", "file_size", "mime_type", "storage_key", "description", "is_confidential"},
            ),
        )

        AuditService.log(
            event_code="document.created",
            entity_type="PatientDocument",
            entity_id=doc.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(patient.id), "type": doc.type},
        )
        return doc

    @staticmethod
    @transaction.atomic
    def update_document(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        document_id: UUID,
        data: dict,
    ) -> PatientDocument:
        doc = DocumentService._get(tenant_id=tenant_id, document_id=document_id)
        updates = _pick(data, {"type", "description", "is_confidential"})
        if not updates:
            raise ValidationError("At least one field is required.")

        for k, v in updates.items():
            setattr(doc, k, v)
        doc.save(update_fields=[*updates.keys(), "updated_at"])

        AuditService.log(
            event_code="document.updated",
            entity_type="PatientDocument",
            entity_id=doc.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"updated_fields": sorted(updates.keys())},
        )
        return doc

    @staticmethod
    @transaction.atomic
    def delete_document(*, tenant_id: UUID, facility_id: UUID, actor_user_id: int | None, document_id: UUID) -> None:
        doc = DocumentService._get(tenant_id=tenant_id, document_id=document_id)
        patient_id = doc.patient_id
        doc.delete()

        logger.info("Deleted document %s of patient %s", document_id, patient_id)
        AuditService.log(
            event_code="document.deleted",
            entity_type="PatientDocument",
            entity_id=document_id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"patient_id": str(patient_id)},
        )
