from django.db import models
from django.db.models import Q
from decimal import Decimal
from core.models import Participant
from core.mixins import VersionedModel


def format_major_amount(amount_minor):
    """Render a minor-unit amount as a major-unit string ("500", "499.50")"""
    rupees, paise = divmod(int(amount_minor), 100)
    if paise:
        return f"{rupees}.{paise:02d}"
    return str(rupees)


class Settlement(VersionedModel):  # Period-bounded payout aggregation for one hospital
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("processing", "Processing"),
        ("completed", "Completed"),
        ("failed", "Failed"),
    ]

    hospital = models.ForeignKey(
        Participant, on_delete=models.PROTECT, related_name="settlements"
    )
    period_start = models.DateTimeField()
    period_end = models.DateTimeField()
    currency = models.CharField(max_length=3, default="INR")

    payment_count = models.PositiveIntegerField(default=0)
    total_amount = models.BigIntegerField(default=0)
    platform_fee = models.BigIntegerField(default=0)
    gst_amount = models.BigIntegerField(default=0)
    refund_amount = models.BigIntegerField(default=0)
    net_amount = models.BigIntegerField(default=0)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending")
    reference = models.CharField(max_length=100, blank=True, help_text="Bank transfer / UTR reference")
    failure_reason = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:  # Meta class implementation
        db_table = "settlements"
        ordering = ["-period_end"]
        constraints = [
            models.UniqueConstraint(
                fields=["hospital", "period_start", "period_end"],
                name="uniq_settlement_hospital_period",
            ),
        ]
        indexes = [
            models.Index(fields=["hospital", "status"], name="settlement_hospital_status_idx"),
        ]

    def __str__(self):  # Return string representation
        return f"Settlement {self.hospital_id} {self.period_start:%Y-%m-%d}..{self.period_end:%Y-%m-%d} ({self.status})"


class Payment(VersionedModel):  # One row per payment attempt against a gateway order
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("processing", "Processing"),
        ("completed", "Completed"),
        ("failed", "Failed"),
        ("refunded", "Refunded"),
        ("partially_refunded", "Partially Refunded"),
    ]

    OPEN_STATUSES = ("pending", "processing")
    SETTLEABLE_STATUSES = ("completed", "refunded", "partially_refunded")

    PROVIDER_CHOICES = [
        ("razorpay", "Razorpay"),
        ("cashfree", "Cashfree"),
    ]

    PAYMENT_TYPE_CHOICES = [
        ("appointment", "Appointment"),
        ("other", "Other"),
    ]

    PAYMENT_METHOD_CHOICES = [
        ("card", "Card"),
        ("upi", "UPI"),
        ("net_banking", "Net Banking"),
        ("wallet", "Wallet"),
        ("emi", "EMI"),
        ("cash", "Cash"),
        ("other", "Other"),
    ]

    appointment = models.ForeignKey(
        "appointments.Appointment",
        on_delete=models.PROTECT,
        related_name="payments",
        null=True,
        blank=True,
    )
    payer = models.ForeignKey(
        Participant, on_delete=models.PROTECT, related_name="payments"
    )
    hospital = models.ForeignKey(
        Participant,
        on_delete=models.PROTECT,
        related_name="received_payments",
        null=True,
        blank=True,
    )
    payment_type = models.CharField(max_length=20, choices=PAYMENT_TYPE_CHOICES, default="appointment")

    base_amount = models.BigIntegerField(help_text="Consultation fee in minor units")
    platform_fee = models.BigIntegerField(default=0)
    gst_amount = models.BigIntegerField(default=0)
    total_amount = models.BigIntegerField(help_text="Amount charged in minor units")
    currency = models.CharField(max_length=3, default="INR")

    provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES)
    provider_order_id = models.CharField(max_length=100, unique=True)
    provider_payment_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    provider_signature = models.CharField(max_length=255, blank=True)
    receipt = models.CharField(max_length=64)
    payment_link = models.URLField(max_length=500, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending")
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, blank=True)
    error_code = models.CharField(max_length=100, blank=True)
    error_description = models.TextField(blank=True)
    failure_reason = models.CharField(max_length=100, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.SET_NULL,
        related_name="payments",
        null=True,
        blank=True,
    )

    class Meta:  # Meta class implementation
        db_table = "payments"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["appointment"],
                condition=Q(status__in=["pending", "processing"]),
                name="uniq_open_payment_per_appointment",
            ),
        ]
        indexes = [
            models.Index(fields=["payer", "status"], name="payment_payer_status_idx"),
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
            models.Index(fields=["hospital", "paid_at"], name="payment_hospital_paid_idx"),
        ]

    def __str__(self):  # Return string representation
        return f"{self.provider_order_id} - {self.status}"

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    @property
    def total_amount_major(self):
        return (Decimal(self.total_amount) / Decimal(100)).quantize(Decimal("0.01"))


class Refund(VersionedModel):  # Refund request against a completed payment
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("processing", "Processing"),
        ("completed", "Completed"),
        ("failed", "Failed"),
    ]

    OPEN_STATUSES = ("pending", "processing")

    REFUND_TYPE_CHOICES = [
        ("full", "Full"),
        ("partial_75", "Partial 75%"),
        ("partial_50", "Partial 50%"),
        ("none", "None"),
        ("doctor_cancelled", "Doctor Cancelled"),
        ("technical_failure", "Technical Failure"),
        ("custom", "Custom Amount"),
    ]

    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name="refunds")
    appointment = models.ForeignKey(
        "appointments.Appointment",
        on_delete=models.PROTECT,
        related_name="refunds",
        null=True,
        blank=True,
    )

    original_amount = models.BigIntegerField()
    refund_amount = models.BigIntegerField()
    refund_percentage = models.PositiveSmallIntegerField(default=0)
    credit_amount = models.BigIntegerField(default=0, help_text="Goodwill credit granted on doctor/hospital cancellation")
    currency = models.CharField(max_length=3, default="INR")

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="pending")
    refund_type = models.CharField(max_length=20, choices=REFUND_TYPE_CHOICES)
    reason = models.TextField()
    initiated_by = models.ForeignKey(
        Participant,
        on_delete=models.SET_NULL,
        related_name="initiated_refunds",
        null=True,
        blank=True,
    )

    provider_refund_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    failure_reason = models.TextField(blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)

    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    settlement = models.ForeignKey(
        Settlement,
        on_delete=models.SET_NULL,
        related_name="refunds",
        null=True,
        blank=True,
        help_text="Settlement that deducted this refund from the hospital payout",
    )

    class Meta:  # Meta class implementation
        db_table = "refunds"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=Q(status__in=["pending", "processing"]),
                name="uniq_open_refund_per_payment",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="refund_status_created_idx"),
            models.Index(fields=["status", "completed_at"], name="refund_status_completed_idx"),
        ]

    def __str__(self):  # Return string representation
        return f"Refund {self.refund_amount} on {self.payment_id} ({self.status})"

    @property
    def reference(self):
        """Idempotency reference sent to the gateway with the refund request"""
        return f"RF-{self.id.hex}"


class CreditAccount(VersionedModel):  # Platform credit balance held by one participant
    participant = models.OneToOneField(
        Participant, on_delete=models.CASCADE, related_name="credit_account"
    )
    balance = models.BigIntegerField(default=0, help_text="Available credit in minor units")
    lifetime_earned = models.BigIntegerField(default=0)
    lifetime_used = models.BigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="INR")

    class Meta:  # Meta class implementation
        db_table = "credit_accounts"

    def __str__(self):  # Return string representation
        return f"{self.participant_id} credits: {self.balance} {self.currency}"


class CreditTransaction(VersionedModel):  # One movement on a credit account
    TRANSACTION_TYPE_CHOICES = [
        ("earned", "Earned"),
        ("used", "Used"),
    ]

    SOURCE_CHOICES = [
        ("refund_bonus", "Cancellation Refund Bonus"),
        ("payment", "Payment"),
        ("adjustment", "Manual Adjustment"),
    ]

    account = models.ForeignKey(CreditAccount, on_delete=models.CASCADE, related_name="transactions")
    transaction_type = models.CharField(max_length=10, choices=TRANSACTION_TYPE_CHOICES)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES)
    amount = models.BigIntegerField(help_text="Signed amount in minor units; negative when used")
    balance_before = models.BigIntegerField()
    balance_after = models.BigIntegerField()
    reference = models.CharField(max_length=100, blank=True)
    description = models.CharField(max_length=255, blank=True)
    refund = models.OneToOneField(
        Refund,
        on_delete=models.PROTECT,
        related_name="credit_transaction",
        null=True,
        blank=True,
    )

    class Meta:  # Meta class implementation
        db_table = "credit_transactions"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["account", "created_at"], name="credit_txn_account_created_idx"),
        ]

    def __str__(self):  # Return string representation
        return f"{self.transaction_type} {self.amount} ({self.source})"


class PaymentWebhookEvent(VersionedModel):  # Records webhook deliveries received from gateways
    provider = models.CharField(max_length=20, choices=Payment.PROVIDER_CHOICES)
    event_id = models.CharField(max_length=128)
    event_type = models.CharField(max_length=100, blank=True)
    payload = models.JSONField(default=dict)
    signature_valid = models.BooleanField(default=False)
    processed = models.BooleanField(default=False)
    processing_error = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:  # Meta class implementation
        db_table = "payment_webhook_events"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "event_id"],
                name="uniq_webhook_event_per_provider",
            ),
        ]
        indexes = [
            models.Index(fields=["event_type", "processed"], name="webhook_type_processed_idx"),
        ]

    def __str__(self):  # Return string representation
        return f"{self.provider}:{self.event_type} - {self.created_at}"
