# chiro_core/facilities/admin.py
from django.contrib import admin

from chiro_core.facilities.models import Facility


@admin.register(Facility)
class FacilityAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "tenant", "city", "is_active")
    list_filter = ("tenant", "is_active")
    search_fields = ("name", "code", "city")
