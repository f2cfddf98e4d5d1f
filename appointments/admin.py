from django.contrib import admin
from .models import Appointment


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):  # Admin configuration for Appointment model
    list_display = ('booking_number', 'patient', 'doctor', 'hospital', 'scheduled_start', 'status', 'consultation_fee')
    list_filter = ('status', 'consultation_type', 'cancelled_by')
    search_fields = ('booking_number', 'patient__email', 'doctor__email', 'hospital__email')
    date_hierarchy = 'scheduled_start'
    ordering = ('-scheduled_start',)
    readonly_fields = ('created_at', 'updated_at', 'version', 'confirmed_at', 'cancelled_at')
