# chiro_core/patients/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import Prefetch, Q, QuerySet
from rest_framework.exceptions import NotFound

from chiro_core.patients.models import (
    HouseholdMember,
    Patient,
    PatientContact,
    PatientDocument,
    PatientStatus,
)
from chiro_core.patients.phonetics import soundex


def primary_contacts_prefetch() -> Prefetch:
    return Prefetch(
        "contacts",
        queryset=PatientContact.objects.filter(is_primary=True),
        to_attr="primary_contacts",
    )


def patient_queryset(*, tenant_id: UUID) -> QuerySet[Patient]:
    return (
        Patient.objects.filter(tenant_id=tenant_id)
        .select_related("demographics")
        .prefetch_related(primary_contacts_prefetch())
    )


def get_patient(*, tenant_id: UUID, patient_id: UUID) -> Patient:
    patient = patient_queryset(tenant_id=tenant_id).filter(id=patient_id).first()
    if patient is None:
        raise NotFound("Patient not found.")
    return patient


def search_patients(
    *,
    tenant_id: UUID,
    q: str | None = None,
    status: str | None = None,
) -> QuerySet[Patient]:
    """
    Free-text lookup over MRN, names, phones and email.
    Names also match phonetically, so "Smyth" finds "Smith".
    Archived patients are hidden unless asked for by status.
    """
    qs = patient_queryset(tenant_id=tenant_id)

    if status:
        qs = qs.filter(status=status)
    else:
        qs = qs.exclude(status=PatientStatus.ARCHIVED)

    qv = (q or "").strip()
    if qv:
        cond = (
            Q(mrn__icontains=qv)
            | Q(demographics__first_name__icontains=qv)
            | Q(demographics__last_name__icontains=qv)
            | Q(contacts__mobile_phone__icontains=qv)
            | Q(contacts__home_phone__icontains=qv)
            | Q(contacts__email__icontains=qv)
        )
        code = soundex(qv)
        if code:
            cond |= Q(demographics__first_name_soundex=code) | Q(demographics__last_name_soundex=code)
        qs = qs.filter(cond).distinct()

    return qs.order_by("demographics__last_name", "demographics__first_name", "-created_at")


def get_household_for_patient(*, tenant_id: UUID, patient_id: UUID) -> HouseholdMember | None:
    get_patient(tenant_id=tenant_id, patient_id=patient_id)
    return (
        HouseholdMember.objects.select_related("household")
        .filter(patient_id=patient_id, household__tenant_id=tenant_id)
        .first()
    )


def list_documents(*, tenant_id: UUID, patient_id: UUID, type: str | None = None) -> QuerySet[PatientDocument]:
    qs = PatientDocument.objects.filter(patient_id=patient_id, patient__tenant_id=tenant_id)
    if type:
        qs = qs.filter(type=type)
    return qs.order_by("-uploaded_at")
