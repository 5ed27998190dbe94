# chiro_core/audit/models.py
from django.conf import settings
from django.db import models
from chiro_core.common.models import ScopedModel


class AuditEvent(ScopedModel):
    """
    Immutable audit record: who did what to which entity, from which facility.
    Patient registry and merge mutations all land here.
    """
    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "patient.merged"
    entity_type = models.CharField(max_length=128, db_index=True)  # e.g. "Patient"
    entity_id = models.UUIDField(db_index=True)

    actor_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="audit_events",
        null=True,
        blank=True,
    )

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict)

    class Meta:
        db_table = "audit_audit_event"
        indexes = [
            models.Index(fields=["tenant_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
            models.Index(fields=["tenant_id", "event_code"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("AuditEvent rows are immutable.")
        return super().save(*args, **kwargs)
