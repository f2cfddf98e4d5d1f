from django.contrib import admin
from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):  # Admin configuration for Notification model
    list_display = ('purpose', 'recipient', 'phone', 'email', 'status', 'created_at')
    list_filter = ('purpose', 'status')
    search_fields = ('recipient__email', 'phone', 'email')
    readonly_fields = ('created_at', 'updated_at', 'variables')
