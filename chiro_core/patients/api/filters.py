# chiro_core/patients/api/filters.py
from __future__ import annotations

import django_filters

from chiro_core.patients.models import Gender, Patient, PatientStatus


class PatientFilter(django_filters.FilterSet):
    """Structured list filters, applied on top of the free-text `q` search."""

    gender = django_filters.ChoiceFilter(field_name="demographics__gender", choices=Gender.choices)
    date_of_birth = django_filters.DateFilter(field_name="demographics__date_of_birth")
    born_after = django_filters.DateFilter(field_name="demographics__date_of_birth", lookup_expr="gte")
    born_before = django_filters.DateFilter(field_name="demographics__date_of_birth", lookup_expr="lte")
    mrn = django_filters.CharFilter(field_name="mrn", lookup_expr="iexact")
    created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")

    class Meta:
        model = Patient
        fields = ["gender", "date_of_birth", "born_after", "born_before", "mrn", "created_after"]


STATUS_CHOICES = {value for value, _ in PatientStatus.choices}
