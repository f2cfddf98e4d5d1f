from django.db import models
from core.models import Participant
from core.mixins import VersionedModel


class Appointment(VersionedModel):  # Represents a booked consultation awaiting or holding payment
    STATUS_CHOICES = [
        ("pending_payment", "Pending Payment"),
        ("confirmed", "Confirmed"),
        ("checked_in", "Checked In"),
        ("in_progress", "In Progress"),
        ("completed", "Completed"),
        ("cancelled", "Cancelled"),
        ("no_show", "No Show"),
        ("rescheduled", "Rescheduled"),
    ]

    CONSULTATION_TYPE_CHOICES = [
        ("online", "Online"),
        ("in_person", "In Person"),
        ("walk_in", "Walk-in"),
        ("follow_up", "Follow Up"),
    ]

    CANCELLED_BY_CHOICES = [
        ("patient", "Patient"),
        ("doctor", "Doctor"),
        ("hospital", "Hospital"),
        ("admin", "Admin"),
        ("system", "System"),
    ]

    booking_number = models.CharField(max_length=32, unique=True)
    patient = models.ForeignKey(
        Participant,
        on_delete=models.PROTECT,
        related_name="patient_appointments",
    )
    doctor = models.ForeignKey(
        Participant,
        on_delete=models.PROTECT,
        related_name="doctor_appointments",
        null=True,
        blank=True,
    )
    hospital = models.ForeignKey(
        Participant,
        on_delete=models.PROTECT,
        related_name="hospital_appointments",
    )

    consultation_type = models.CharField(
        max_length=20, choices=CONSULTATION_TYPE_CHOICES, default="in_person"
    )
    scheduled_start = models.DateTimeField()
    consultation_fee = models.PositiveIntegerField(help_text="Consultation fee in minor units (paisa)")
    currency = models.CharField(max_length=3, default="INR")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending_payment")

    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=20, choices=CANCELLED_BY_CHOICES, blank=True, default="")
    cancellation_reason = models.TextField(default="", blank=True)

    class Meta:  # Meta class implementation
        db_table = "appointments"
        ordering = ["-scheduled_start"]
        indexes = [
            models.Index(fields=["patient", "scheduled_start"], name="appt_patient_start_idx"),
            models.Index(fields=["hospital", "scheduled_start"], name="appt_hospital_start_idx"),
            models.Index(fields=["status"], name="appt_status_idx"),
        ]

    def __str__(self):
        return f"{self.booking_number} ({self.status})"
