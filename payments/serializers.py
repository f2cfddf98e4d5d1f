from rest_framework import serializers
from drf_spectacular.utils import extend_schema_field

from .models import CreditAccount, CreditTransaction, Payment, Refund, Settlement


class PaymentSerializer(serializers.ModelSerializer):  # Serializer for Payment data
    payer_email = serializers.EmailField(source="payer.email", read_only=True)
    booking_number = serializers.CharField(source="appointment.booking_number", read_only=True, default=None)
    status_display = serializers.CharField(source="get_status_display", read_only=True)
    total_amount_major = serializers.SerializerMethodField()

    class Meta:  # Meta class implementation
        model = Payment
        fields = [
            "id", "appointment", "booking_number", "payer", "payer_email", "hospital",
            "payment_type", "base_amount", "platform_fee", "gst_amount", "total_amount",
            "total_amount_major", "currency", "provider", "provider_order_id",
            "provider_payment_id", "receipt", "payment_link", "status", "status_display",
            "payment_method", "error_code", "error_description", "failure_reason",
            "paid_at", "failed_at", "created_at", "updated_at",
        ]
        read_only_fields = fields

    @extend_schema_field(serializers.CharField)
    def get_total_amount_major(self, obj):  # Get total amount in major units
        return str(obj.total_amount_major)


class PaymentStatusSerializer(serializers.ModelSerializer):  # Serializer for Payment status polling
    class Meta:  # Meta class implementation
        model = Payment
        fields = ["id", "status", "paid_at"]
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):  # Serializer for Refund data
    provider_order_id = serializers.CharField(source="payment.provider_order_id", read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)

    class Meta:  # Meta class implementation
        model = Refund
        fields = [
            "id", "payment", "provider_order_id", "appointment", "original_amount",
            "refund_amount", "refund_percentage", "credit_amount", "currency", "status",
            "status_display", "refund_type", "reason", "initiated_by", "provider_refund_id",
            "failure_reason", "processed_at", "completed_at", "failed_at", "created_at",
        ]
        read_only_fields = fields


class SettlementSerializer(serializers.ModelSerializer):  # Serializer for Settlement data
    hospital_name = serializers.CharField(source="hospital.full_name", read_only=True)

    class Meta:  # Meta class implementation
        model = Settlement
        fields = [
            "id", "hospital", "hospital_name", "period_start", "period_end", "currency",
            "payment_count", "total_amount", "platform_fee", "gst_amount", "refund_amount",
            "net_amount", "status", "reference", "failure_reason", "processed_at", "created_at",
        ]
        read_only_fields = fields


class CreditTransactionSerializer(serializers.ModelSerializer):  # Serializer for credit ledger entries
    class Meta:  # Meta class implementation
        model = CreditTransaction
        fields = [
            "id", "transaction_type", "source", "amount", "balance_before", "balance_after",
            "reference", "description", "refund", "created_at",
        ]
        read_only_fields = fields


class CreditAccountSerializer(serializers.ModelSerializer):  # Serializer for a participant's credit balance
    transactions = serializers.SerializerMethodField()

    class Meta:  # Meta class implementation
        model = CreditAccount
        fields = ["balance", "lifetime_earned", "lifetime_used", "currency", "transactions"]
        read_only_fields = fields

    @extend_schema_field(CreditTransactionSerializer(many=True))
    def get_transactions(self, obj):  # Get most recent ledger entries
        return CreditTransactionSerializer(obj.transactions.all()[:20], many=True).data


class CreateOrderRequestSerializer(serializers.Serializer):  # Serializer for order creation requests
    appointmentId = serializers.UUIDField()


class VerifyPaymentRequestSerializer(serializers.Serializer):  # Serializer for client verify requests
    gateway_order_id = serializers.CharField(max_length=100)
    gateway_payment_id = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    gateway_signature = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    provider = serializers.ChoiceField(choices=Payment.PROVIDER_CHOICES, required=False)


class CashfreeCallbackRequestSerializer(serializers.Serializer):  # Serializer for Cashfree redirect callbacks
    orderId = serializers.CharField(max_length=100)


class RefundRequestSerializer(serializers.Serializer):  # Serializer for refund requests
    amount = serializers.IntegerField(required=False, min_value=0, help_text="Minor units")
    reason = serializers.CharField(max_length=1000)
    refund_type = serializers.ChoiceField(
        choices=[("doctor_cancelled", "Doctor Cancelled"), ("technical_failure", "Technical Failure")],
        required=False,
    )


class GenerateSettlementRequestSerializer(serializers.Serializer):  # Serializer for settlement generation
    hospital = serializers.UUIDField(required=False)
    period_start = serializers.DateTimeField()
    period_end = serializers.DateTimeField()

    def validate(self, attrs):  # Validate period ordering
        if attrs["period_end"] <= attrs["period_start"]:
            raise serializers.ValidationError("period_end must be after period_start")
        return attrs
