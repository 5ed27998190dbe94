# chiro_core/patients/admin.py
from django.contrib import admin

from chiro_core.patients.models import (
    EmergencyContact,
    Household,
    HouseholdMember,
    Patient,
    PatientContact,
    PatientDemographics,
    PatientDocument,
    PatientInsurance,
)


class DemographicsInline(admin.StackedInline):
    model = PatientDemographics
    exclude = ("ssn",)
    readonly_fields = ("first_name_soundex", "last_name_soundex", "ssn_last4")
    can_delete = False


class ContactInline(admin.TabularInline):
    model = PatientContact
    extra = 0
    fields = ("is_primary", "mobile_phone", "home_phone", "email", "city", "state")


class InsuranceInline(admin.TabularInline):
    model = PatientInsurance
    extra = 0
    fields = ("type", "payer_name", "policy_number", "is_active", "verified_at")
    readonly_fields = ("verified_at",)


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ("mrn", "status", "tenant_id", "created_at")
    list_filter = ("status", "tenant_id")
    search_fields = ("mrn", "demographics__first_name", "demographics__last_name")
    readonly_fields = ("mrn", "archived_at", "created_at", "updated_at")
    ordering = ("-created_at",)
    inlines = (DemographicsInline, ContactInline, InsuranceInline)

    def has_delete_permission(self, request, obj=None):
        # patients are archived, never deleted
        return False


@admin.register(PatientDocument)
class PatientDocumentAdmin(admin.ModelAdmin):
    list_display = ("file_name", "type", "patient", "is_confidential", "uploaded_at")
    list_filter = ("type", "is_confidential")
    search_fields = ("file_name", "patient__mrn")
    readonly_fields = ("storage_key", "uploaded_at")


@admin.register(EmergencyContact)
class EmergencyContactAdmin(admin.ModelAdmin):
    list_display = ("name", "relationship", "phone", "patient", "is_primary")
    search_fields = ("name", "patient__mrn")


class HouseholdMemberInline(admin.TabularInline):
    model = HouseholdMember
    extra = 0
    raw_id_fields = ("patient",)


@admin.register(Household)
class HouseholdAdmin(admin.ModelAdmin):
    list_display = ("name", "tenant_id", "created_at")
    search_fields = ("name",)
    inlines = (HouseholdMemberInline,)
