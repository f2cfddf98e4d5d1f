from django.db import models
from core.models import Participant
from core.mixins import VersionedModel


class Notification(VersionedModel):  # One dispatched notification per recipient and purpose
    PURPOSE_CHOICES = [
        ('PAYMENT_SUCCESS', 'Payment Success'),
        ('PAYMENT_FAILED', 'Payment Failed'),
        ('REFUND_PROCESSED', 'Refund Processed'),
        ('APPOINTMENT_CONFIRMED', 'Appointment Confirmed'),
    ]

    STATUS_CHOICES = [
        ('queued', 'Queued'),
        ('sent', 'Sent'),
        ('failed', 'Failed'),
    ]

    purpose = models.CharField(max_length=50, choices=PURPOSE_CHOICES)
    recipient = models.ForeignKey(
        Participant,
        on_delete=models.SET_NULL,
        related_name='notifications',
        null=True,
        blank=True,
    )
    phone = models.CharField(max_length=20, blank=True, default='')
    email = models.EmailField(blank=True, default='')
    variables = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='queued')

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['recipient', 'created_at'], name='notif_recipient_created_idx'),
            models.Index(fields=['purpose', 'status'], name='notif_purpose_status_idx'),
        ]

    def __str__(self):
        return f"{self.purpose} -> {self.phone or self.email}"
