import django.db.models.deletion
import django.utils.timezone
import uuid
from django.conf import settings
from django.db import migrations, models


def versioned_fields():
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Global unique identifier", primary_key=True, serialize=False)),
        ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text="When this record was created")),
        ("updated_at", models.DateTimeField(auto_now=True, help_text="When this record was last modified")),
        ("version", models.IntegerField(default=1, help_text="Version number for conflict detection")),
    ]


PROVIDER_CHOICES = [("razorpay", "Razorpay"), ("cashfree", "Cashfree")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("appointments", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Settlement",
            fields=versioned_fields() + [
                ("period_start", models.DateTimeField()),
                ("period_end", models.DateTimeField()),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("payment_count", models.PositiveIntegerField(default=0)),
                ("total_amount", models.BigIntegerField(default=0)),
                ("platform_fee", models.BigIntegerField(default=0)),
                ("gst_amount", models.BigIntegerField(default=0)),
                ("refund_amount", models.BigIntegerField(default=0)),
                ("net_amount", models.BigIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("reference", models.CharField(blank=True, help_text="Bank transfer / UTR reference", max_length=100)),
                ("failure_reason", models.TextField(blank=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "hospital",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="settlements",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "settlements",
                "ordering": ["-period_end"],
                "indexes": [
                    models.Index(fields=["hospital", "status"], name="settlement_hospital_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("hospital", "period_start", "period_end"),
                        name="uniq_settlement_hospital_period",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=versioned_fields() + [
                (
                    "payment_type",
                    models.CharField(
                        choices=[("appointment", "Appointment"), ("other", "Other")],
                        default="appointment",
                        max_length=20,
                    ),
                ),
                ("base_amount", models.BigIntegerField(help_text="Consultation fee in minor units")),
                ("platform_fee", models.BigIntegerField(default=0)),
                ("gst_amount", models.BigIntegerField(default=0)),
                ("total_amount", models.BigIntegerField(help_text="Amount charged in minor units")),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("provider_order_id", models.CharField(max_length=100, unique=True)),
                ("provider_payment_id", models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ("provider_signature", models.CharField(blank=True, max_length=255)),
                ("receipt", models.CharField(max_length=64)),
                ("payment_link", models.URLField(blank=True, max_length=500)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("card", "Card"),
                            ("upi", "UPI"),
                            ("net_banking", "Net Banking"),
                            ("wallet", "Wallet"),
                            ("emi", "EMI"),
                            ("cash", "Cash"),
                            ("other", "Other"),
                        ],
                        max_length=20,
                    ),
                ),
                ("error_code", models.CharField(blank=True, max_length=100)),
                ("error_description", models.TextField(blank=True)),
                ("failure_reason", models.CharField(blank=True, max_length=100)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "appointment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="appointments.appointment",
                    ),
                ),
                (
                    "hospital",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="received_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "payer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "settlement",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payments",
                        to="payments.settlement",
                    ),
                ),
            ],
            options={
                "db_table": "payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payer", "status"], name="payment_payer_status_idx"),
                    models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
                    models.Index(fields=["hospital", "paid_at"], name="payment_hospital_paid_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["pending", "processing"])),
                        fields=("appointment",),
                        name="uniq_open_payment_per_appointment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=versioned_fields() + [
                ("original_amount", models.BigIntegerField()),
                ("refund_amount", models.BigIntegerField()),
                ("refund_percentage", models.PositiveSmallIntegerField(default=0)),
                ("credit_amount", models.BigIntegerField(default=0, help_text="Goodwill credit granted on doctor/hospital cancellation")),
                ("currency", models.CharField(default="INR", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "refund_type",
                    models.CharField(
                        choices=[
                            ("full", "Full"),
                            ("partial_75", "Partial 75%"),
                            ("partial_50", "Partial 50%"),
                            ("none", "None"),
                            ("doctor_cancelled", "Doctor Cancelled"),
                            ("technical_failure", "Technical Failure"),
                            ("custom", "Custom Amount"),
                        ],
                        max_length=20,
                    ),
                ),
                ("reason", models.TextField()),
                ("provider_refund_id", models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ("failure_reason", models.TextField(blank=True)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "appointment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="appointments.appointment",
                    ),
                ),
                (
                    "initiated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="initiated_refunds",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.payment",
                    ),
                ),
                (
                    "settlement",
                    models.ForeignKey(
                        blank=True,
                        help_text="Settlement that deducted this refund from the hospital payout",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="refunds",
                        to="payments.settlement",
                    ),
                ),
            ],
            options={
                "db_table": "refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="refund_status_created_idx"),
                    models.Index(fields=["status", "completed_at"], name="refund_status_completed_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["pending", "processing"])),
                        fields=("payment",),
                        name="uniq_open_refund_per_payment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentWebhookEvent",
            fields=versioned_fields() + [
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("event_id", models.CharField(max_length=128)),
                ("event_type", models.CharField(blank=True, max_length=100)),
                ("payload", models.JSONField(default=dict)),
                ("signature_valid", models.BooleanField(default=False)),
                ("processed", models.BooleanField(default=False)),
                ("processing_error", models.TextField(blank=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "payment_webhook_events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["event_type", "processed"], name="webhook_type_processed_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("provider", "event_id"),
                        name="uniq_webhook_event_per_provider",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditAccount",
            fields=versioned_fields() + [
                ("balance", models.BigIntegerField(default=0, help_text="Available credit in minor units")),
                ("lifetime_earned", models.BigIntegerField(default=0)),
                ("lifetime_used", models.BigIntegerField(default=0)),
                ("currency", models.CharField(default="INR", max_length=3)),
                (
                    "participant",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="credit_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "credit_accounts",
            },
        ),
        migrations.CreateModel(
            name="CreditTransaction",
            fields=versioned_fields() + [
                (
                    "transaction_type",
                    models.CharField(choices=[("earned", "Earned"), ("used", "Used")], max_length=10),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("refund_bonus", "Cancellation Refund Bonus"),
                            ("payment", "Payment"),
                            ("adjustment", "Manual Adjustment"),
                        ],
                        max_length=20,
                    ),
                ),
                ("amount", models.BigIntegerField(help_text="Signed amount in minor units; negative when used")),
                ("balance_before", models.BigIntegerField()),
                ("balance_after", models.BigIntegerField()),
                ("reference", models.CharField(blank=True, max_length=100)),
                ("description", models.CharField(blank=True, max_length=255)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transactions",
                        to="payments.creditaccount",
                    ),
                ),
                (
                    "refund",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_transaction",
                        to="payments.refund",
                    ),
                ),
            ],
            options={
                "db_table": "credit_transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["account", "created_at"], name="credit_txn_account_created_idx"),
                ],
            },
        ),
    ]
