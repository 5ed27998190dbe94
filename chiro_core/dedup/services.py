# chiro_core/dedup/services.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Tuple
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from chiro_core.audit.services import AuditService
from chiro_core.common.api.exceptions import BadRequestError
from chiro_core.common.jsonable import to_jsonable
from chiro_core.dedup.models import PatientMerge
from chiro_core.dedup.selectors import NOT_FOUND_PAIR_MSG
from chiro_core.patients.models import (
    EmergencyContact,
    Patient,
    PatientContact,
    PatientDemographics,
    PatientDocument,
    PatientInsurance,
    PatientStatus,
)
from chiro_core.patients.services import DEMOGRAPHIC_FIELDS, HouseholdService

logger = logging.getLogger(__name__)

ARCHIVED_SOURCE_MSG = "Cannot merge an archived patient"
SAME_PATIENT_MSG = "Source and target must be different patients"

MERGEABLE_DEMOGRAPHICS = frozenset(DEMOGRAPHIC_FIELDS)

# never copied into a merge snapshot
_SNAPSHOT_EXCLUDE = {"ssn"}


@dataclass(frozen=True)
class MergeFields:
    """What to carry from source to target. Documents move unless told otherwise."""

    demographics: Tuple[str, ...] = ()
    contacts: bool = False
    emergency_contacts: bool = False
    insurances: bool = False
    documents: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "MergeFields":
        data = data or {}
        return cls(
            demographics=tuple(data.get("demographics") or ()),
            contacts=bool(data.get("contacts", False)),
            emergency_contacts=bool(data.get("emergency_contacts", False)),
            insurances=bool(data.get("insurances", False)),
            documents=bool(data.get("documents", True)),
        )

    def as_json(self) -> Dict[str, Any]:
        out = asdict(self)
        out["demographics"] = list(self.demographics)
        return out


def _row(obj, exclude=()) -> Dict[str, Any]:
    return to_jsonable(
        {f.attname: getattr(obj, f.attname) for f in obj._meta.concrete_fields if f.name not in exclude}
    )


class PatientMergeService:
    """
    Folds a duplicate (source) patient into the surviving (target) record.

    All steps share one transaction; a failure anywhere leaves both patients
    exactly as they were. Each step is its own method so the order reads top
    to bottom in merge().
    """

    @staticmethod
    def _validate(
        *,
        source_patient_id: UUID,
        target_patient_id: UUID,
        fields: MergeFields,
        reason: str,
    ) -> None:
        if source_patient_id == target_patient_id:
            raise BadRequestError(SAME_PATIENT_MSG)

        if not (reason or "").strip():
            raise ValidationError({"reason": "Merge reason is required."})

        unknown = sorted(set(fields.demographics) - MERGEABLE_DEMOGRAPHICS)
        if unknown:
            raise ValidationError({"fields": {"demographics": [f"Unknown demographic field(s): {', '.join(unknown)}"]}})

    @staticmethod
    def _lock_pair(*, tenant_id: UUID, source_patient_id: UUID, target_patient_id: UUID) -> Tuple[Patient, Patient]:
        # fixed lock order (by id) so two merges over the same pair cannot deadlock
        locked = {
            p.id: p
            for p in Patient.objects.select_for_update()
            .filter(tenant_id=tenant_id, id__in=[source_patient_id, target_patient_id])
            .order_by("id")
        }
        source = locked.get(source_patient_id)
        target = locked.get(target_patient_id)
        if source is None or target is None:
            raise NotFound(NOT_FOUND_PAIR_MSG)
        return source, target

    @staticmethod
    def _snapshot(source: Patient) -> Dict[str, Any]:
        demo = PatientDemographics.objects.filter(patient=source).first()
        member = getattr(source, "household_membership", None)
        return {
            "id": str(source.id),
            "mrn": source.mrn,
            "status": source.status,
            "demographics": _row(demo, exclude=_SNAPSHOT_EXCLUDE) if demo else None,
            "contacts": [_row(c) for c in PatientContact.objects.filter(patient=source).order_by("created_at")],
            "emergency_contacts": [
                _row(c) for c in EmergencyContact.objects.filter(patient=source).order_by("created_at")
            ],
            "insurances": [_row(i) for i in PatientInsurance.objects.filter(patient=source).order_by("created_at")],
            "document_count": PatientDocument.objects.filter(patient=source).count(),
            "household": (
                {"household_id": str(member.household_id), "relationship": member.relationship}
                if member is not None
                else None
            ),
        }

    @staticmethod
    def _copy_demographics(*, source: Patient, target: Patient, names: Tuple[str, ...]) -> List[str]:
        if not names:
            return []

        src = PatientDemographics.objects.filter(patient=source).first()
        dst = PatientDemographics.objects.select_for_update().filter(patient=target).first()
        if src is None or dst is None:
            return []

        copied = []
        for name in names:
            value = getattr(src, name)
            # absent on the source: keep whatever the target has
            if value is None or value == "":
                continue
            setattr(dst, name, value)
            copied.append(name)

        if copied:
            # save() refreshes the phonetic codes for the new names
            dst.save(update_fields=[*copied, "updated_at"])
        return copied

    @staticmethod
    def _transfer_contacts(*, source: Patient, target: Patient) -> int:
        # target keeps its own primary contact
        return PatientContact.objects.filter(patient=source).update(patient=target, is_primary=False)

    @staticmethod
    def _transfer_emergency_contacts(*, source: Patient, target: Patient) -> int:
        return EmergencyContact.objects.filter(patient=source).update(patient=target, is_primary=False)

    @staticmethod
    def _transfer_insurances(*, source: Patient, target: Patient) -> int:
        # carried over as history only; never competes with the target's active coverage
        return PatientInsurance.objects.filter(patient=source).update(patient=target, is_active=False)

    @staticmethod
    def _transfer_documents(*, source: Patient, target: Patient) -> int:
        return PatientDocument.objects.filter(patient=source).update(patient=target)

    @staticmethod
    def _archive_source(*, source: Patient, expected_status: str) -> None:
        now = timezone.now()
        updated = Patient.objects.filter(id=source.id, status=expected_status).update(
            status=PatientStatus.ARCHIVED,
            archived_at=now,
            updated_at=now,
        )
        if updated != 1:
            raise BadRequestError(ARCHIVED_SOURCE_MSG)
        source.status = PatientStatus.ARCHIVED
        source.archived_at = now

    @staticmethod
    @transaction.atomic
    def merge(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        source_patient_id: UUID,
        target_patient_id: UUID,
        fields: MergeFields | Dict[str, Any] | None,
        reason: str,
    ) -> PatientMerge:
        if not isinstance(fields, MergeFields):
            fields = MergeFields.from_dict(fields)

        PatientMergeService._validate(
            source_patient_id=source_patient_id,
            target_patient_id=target_patient_id,
            fields=fields,
            reason=reason,
        )

        source, target = PatientMergeService._lock_pair(
            tenant_id=tenant_id,
            source_patient_id=source_patient_id,
            target_patient_id=target_patient_id,
        )
        if source.status == PatientStatus.ARCHIVED:
            logger.warning("Rejected merge %s -> %s: source already archived", source.id, target.id)
            raise BadRequestError(ARCHIVED_SOURCE_MSG)

        logger.info("Merging patient %s into %s (actor=%s)", source.id, target.id, actor_user_id)
        read_status = source.status

        snapshot = PatientMergeService._snapshot(source)

        copied = PatientMergeService._copy_demographics(source=source, target=target, names=fields.demographics)
        moved = {"contacts": 0, "emergency_contacts": 0, "insurances": 0, "documents": 0}
        if fields.contacts:
            moved["contacts"] = PatientMergeService._transfer_contacts(source=source, target=target)
        if fields.emergency_contacts:
            moved["emergency_contacts"] = PatientMergeService._transfer_emergency_contacts(source=source, target=target)
        if fields.insurances:
            moved["insurances"] = PatientMergeService._transfer_insurances(source=source, target=target)
        if fields.documents:
            moved["documents"] = PatientMergeService._transfer_documents(source=source, target=target)

        # never transferred: the target may already have its own household
        household_id = HouseholdService.detach_patient(patient_id=source.id)

        record = PatientMerge.objects.create(
            tenant_id=tenant_id,
            source_patient=source,
            target_patient=target,
            merged_by_id=actor_user_id,
            reason=reason.strip(),
            source_snapshot=snapshot,
            fields_kept=fields.as_json(),
        )

        PatientMergeService._archive_source(source=source, expected_status=read_status)

        AuditService.log(
            event_code="patient.merged",
            entity_type="Patient",
            entity_id=target.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={
                "action": "merge",
                "merge_id": str(record.id),
                "source_patient_id": str(source.id),
                "target_patient_id": str(target.id),
                "demographics_copied": copied,
                "moved": moved,
                "left_household_id": str(household_id) if household_id else None,
                "reason": record.reason,
            },
        )

        logger.info("Merged patient %s into %s (merge=%s, moved=%s)", source.id, target.id, record.id, moved)
        return record
