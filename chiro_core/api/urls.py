# chiro_core/api/urls.py
from __future__ import annotations

from rest_framework.routers import DefaultRouter

from chiro_core.audit.api.views import AuditEventViewSet
from chiro_core.dedup.api.views import DedupViewSet
from chiro_core.patients.api.views import (
    DocumentViewSet,
    HouseholdViewSet,
    InsuranceViewSet,
    PatientViewSet,
)

router = DefaultRouter()

# Patient registry
router.register(r"patients", PatientViewSet, basename="patients")
router.register(r"insurances", InsuranceViewSet, basename="insurances")
router.register(r"documents", DocumentViewSet, basename="documents")
router.register(r"households", HouseholdViewSet, basename="households")

# Duplicate review + merge
router.register(r"dedup", DedupViewSet, basename="dedup")

router.register(r"audit/events", AuditEventViewSet, basename="audit-events")

urlpatterns = [
    *router.urls,
]
