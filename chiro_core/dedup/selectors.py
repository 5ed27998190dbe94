# chiro_core/dedup/selectors.py
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import List
from uuid import UUID

from django.conf import settings
from django.db.models import Prefetch, Q, QuerySet
from rest_framework.exceptions import NotFound

from chiro_core.dedup.models import PatientMerge
from chiro_core.dedup.scoring import (
    MatchScore,
    PatientSnapshot,
    is_reportable,
    score_pair,
)
from chiro_core.patients.models import (
    HouseholdMember,
    Patient,
    PatientInsurance,
    PatientStatus,
)
from chiro_core.patients.selectors import get_patient, patient_queryset

logger = logging.getLogger(__name__)

NOT_FOUND_PAIR_MSG = "One or both patients not found"


@dataclass(frozen=True)
class DuplicateMatch:
    patient: Patient
    match: MatchScore


@dataclass(frozen=True)
class DuplicateGroup:
    patients: List[Patient]
    reason: str


@dataclass(frozen=True)
class PatientComparison:
    patient_1: Patient
    patient_2: Patient
    match: MatchScore


def resolve_limit(limit: int | None) -> int:
    ceiling = int(getattr(settings, "DEDUP_MAX_LIMIT", 100))
    if limit is None:
        limit = int(getattr(settings, "DEDUP_DEFAULT_LIMIT", 50))
    return max(1, min(int(limit), ceiling))


def find_duplicates_for_patient(*, tenant_id: UUID, patient_id: UUID, limit: int) -> List[DuplicateMatch]:
    """
    Candidates for one patient: any non-archived patient of the same tenant that
    shares a phonetic name code, the date of birth, the exact full name or the
    primary phone. Candidates are scored and only reportable ones are returned,
    best first.
    """
    patient = get_patient(tenant_id=tenant_id, patient_id=patient_id)
    me = PatientSnapshot.from_patient(patient)

    cond = Q()
    if me.first_name_soundex:
        cond |= Q(demographics__first_name_soundex=me.first_name_soundex)
    if me.last_name_soundex:
        cond |= Q(demographics__last_name_soundex=me.last_name_soundex)
    if me.date_of_birth is not None:
        cond |= Q(demographics__date_of_birth=me.date_of_birth)
    if me.first_name and me.last_name:
        cond |= Q(demographics__first_name__iexact=me.first_name, demographics__last_name__iexact=me.last_name)

    # same digits the scorer compares, whatever punctuation was typed
    if me.phone:
        cond |= Q(contacts__is_primary=True, contacts__phone_digits=me.phone)

    if not cond:
        return []

    candidates = (
        patient_queryset(tenant_id=tenant_id)
        .exclude(id=patient.id)
        .exclude(status=PatientStatus.ARCHIVED)
        .filter(cond)
        .distinct()
        .order_by("-created_at")[:limit]
    )

    matches: List[DuplicateMatch] = []
    for other in candidates:
        result = score_pair(me, PatientSnapshot.from_patient(other))
        if is_reportable(result):
            matches.append(DuplicateMatch(patient=other, match=result))

    matches.sort(key=lambda m: m.match.score, reverse=True)
    logger.info(
        "Duplicate scan for patient %s: %d candidates, %d reportable",
        patient.id,
        len(candidates),
        len(matches),
    )
    return matches


def find_duplicate_groups(*, tenant_id: UUID, limit: int) -> List[DuplicateGroup]:
    """
    Tenant-wide sweep. Buckets every non-archived patient by date of birth and by
    primary phone digits, then:
      - within a DOB bucket, each pair with the same (or same-sounding) last name
      - each phone bucket with two or more patients
    DOB pairs come first, then phone buckets; the result is cut at `limit`.
    """
    patients = list(
        patient_queryset(tenant_id=tenant_id)
        .exclude(status=PatientStatus.ARCHIVED)
        .order_by("created_at", "id")
    )

    by_dob: "OrderedDict[str, list]" = OrderedDict()
    by_phone: "OrderedDict[str, list]" = OrderedDict()
    for p in patients:
        snap = PatientSnapshot.from_patient(p)
        if snap.date_of_birth is not None:
            by_dob.setdefault(snap.date_of_birth.isoformat(), []).append((p, snap))
        if snap.phone:
            by_phone.setdefault(snap.phone, []).append((p, snap))

    groups: List[DuplicateGroup] = []

    for dob, members in by_dob.items():
        if len(members) < 2:
            continue
        for i, (p1, s1) in enumerate(members):
            for p2, s2 in members[i + 1:]:
                if s1.last_name and s1.last_name.lower() == s2.last_name.lower():
                    kind = "same"
                elif s1.last_name_soundex and s1.last_name_soundex == s2.last_name_soundex:
                    kind = "similar"
                else:
                    continue
                groups.append(DuplicateGroup(patients=[p1, p2], reason=f"Same DOB ({dob}) and {kind} last name"))

    for members in by_phone.values():
        if len(members) >= 2:
            groups.append(DuplicateGroup(patients=[p for p, _ in members], reason="Same phone number"))

    logger.info("Tenant duplicate sweep %s: %d patients, %d groups", tenant_id, len(patients), len(groups))
    return groups[:limit]


def _comparison_queryset(*, tenant_id: UUID) -> QuerySet[Patient]:
    return patient_queryset(tenant_id=tenant_id).prefetch_related(
        "contacts",
        "emergency_contacts",
        Prefetch(
            "insurances",
            queryset=PatientInsurance.objects.filter(is_active=True).order_by("type"),
            to_attr="active_insurances",
        ),
        "documents",
        Prefetch(
            "household_membership",
            queryset=HouseholdMember.objects.select_related("household"),
        ),
    )


def compare_patients(*, tenant_id: UUID, patient_id_1: UUID, patient_id_2: UUID) -> PatientComparison:
    qs = _comparison_queryset(tenant_id=tenant_id)
    p1 = qs.filter(id=patient_id_1).first()
    p2 = qs.filter(id=patient_id_2).first()
    if p1 is None or p2 is None:
        raise NotFound(NOT_FOUND_PAIR_MSG)

    return PatientComparison(
        patient_1=p1,
        patient_2=p2,
        match=score_pair(PatientSnapshot.from_patient(p1), PatientSnapshot.from_patient(p2)),
    )


def get_merge_history(*, tenant_id: UUID, patient_id: UUID) -> QuerySet[PatientMerge]:
    return (
        PatientMerge.objects.filter(tenant_id=tenant_id)
        .filter(Q(source_patient_id=patient_id) | Q(target_patient_id=patient_id))
        .select_related("merged_by")
        .order_by("-merged_at")
    )
