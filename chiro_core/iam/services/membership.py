# chiro_core/iam/services/membership.py
from __future__ import annotations

from uuid import UUID

from chiro_core.iam.models import FacilityMembership


def is_user_member_of_facility(*, user_id: int, tenant_id: UUID, facility_id: UUID) -> bool:
    """
    Validate user -> (tenant, facility) membership.
    This is the single source of truth used by scope enforcement.
    """
    return FacilityMembership.objects.filter(
        is_active=True,
        tenant_id=tenant_id,
        facility_id=facility_id,
        user_profile__user_id=user_id,
        user_profile__is_active=True,
    ).exists()
