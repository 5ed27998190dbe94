# chiro_core/dedup/models.py
from django.conf import settings
from django.db import models

from chiro_core.common.models import TenantScopedModel
from chiro_core.patients.models import Patient


class PatientMerge(TenantScopedModel):
    """
    One row per executed merge. Write-once: the only historical trace of what the
    archived source looked like, so it is never updated or deleted.
    """
    source_patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="merges_as_source")
    target_patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="merges_as_target")

    merged_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="patient_merges",
        null=True,
        blank=True,
    )
    reason = models.TextField()

    # pre-merge state of the source; decimals as strings, ssn omitted
    source_snapshot = models.JSONField(default=dict)
    # {"demographics": [...], "contacts": bool, "emergency_contacts": bool, "insurances": bool, "documents": bool}
    fields_kept = models.JSONField(default=dict)

    merged_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "dedup_patient_merge"
        ordering = ["-merged_at"]
        indexes = [
            models.Index(fields=["tenant_id", "source_patient"]),
            models.Index(fields=["tenant_id", "target_patient"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("PatientMerge records are immutable.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("PatientMerge records cannot be deleted.")
