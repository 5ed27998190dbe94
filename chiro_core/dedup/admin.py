# chiro_core/dedup/admin.py
from django.contrib import admin

from chiro_core.dedup.models import PatientMerge


@admin.register(PatientMerge)
class PatientMergeAdmin(admin.ModelAdmin):
    list_display = ("id", "source_patient", "target_patient", "merged_by", "merged_at")
    list_filter = ("tenant_id",)
    search_fields = ("source_patient__mrn", "target_patient__mrn", "reason")
    readonly_fields = (
        "tenant_id",
        "source_patient",
        "target_patient",
        "merged_by",
        "reason",
        "source_snapshot",
        "fields_kept",
        "merged_at",
    )
    ordering = ("-merged_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
