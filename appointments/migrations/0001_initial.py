import django.db.models.deletion
import django.utils.timezone
import uuid
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Appointment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Global unique identifier", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text="When this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="When this record was last modified")),
                ("version", models.IntegerField(default=1, help_text="Version number for conflict detection")),
                ("booking_number", models.CharField(max_length=32, unique=True)),
                (
                    "consultation_type",
                    models.CharField(
                        choices=[
                            ("online", "Online"),
                            ("in_person", "In Person"),
                            ("walk_in", "Walk-in"),
                            ("follow_up", "Follow Up"),
                        ],
                        default="in_person",
                        max_length=20,
                    ),
                ),
                ("scheduled_start", models.DateTimeField()),
                ("consultation_fee", models.PositiveIntegerField(help_text="Consultation fee in minor units (paisa)")),
                ("currency", models.CharField(default="INR", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_payment", "Pending Payment"),
                            ("confirmed", "Confirmed"),
                            ("checked_in", "Checked In"),
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("no_show", "No Show"),
                            ("rescheduled", "Rescheduled"),
                        ],
                        default="pending_payment",
                        max_length=20,
                    ),
                ),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "cancelled_by",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("patient", "Patient"),
                            ("doctor", "Doctor"),
                            ("hospital", "Hospital"),
                            ("admin", "Admin"),
                            ("system", "System"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                (
                    "doctor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="doctor_appointments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "hospital",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="hospital_appointments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="patient_appointments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "appointments",
                "ordering": ["-scheduled_start"],
                "indexes": [
                    models.Index(fields=["patient", "scheduled_start"], name="appt_patient_start_idx"),
                    models.Index(fields=["hospital", "scheduled_start"], name="appt_hospital_start_idx"),
                    models.Index(fields=["status"], name="appt_status_idx"),
                ],
            },
        ),
    ]
