from django.contrib import admin
from .models import (
    CreditAccount,
    CreditTransaction,
    Payment,
    PaymentWebhookEvent,
    Refund,
    Settlement,
)


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):  # Admin configuration for Payment model
    list_display = (
        "id",
        "payer",
        "appointment",
        "provider",
        "provider_order_id",
        "total_amount",
        "currency",
        "status",
        "paid_at",
        "created_at",
    )
    list_filter = ("status", "provider", "payment_method")
    search_fields = ("provider_order_id", "provider_payment_id", "receipt", "payer__email")
    readonly_fields = ("created_at", "updated_at", "version", "gateway_response")
    raw_id_fields = ("appointment", "payer", "hospital", "settlement")


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):  # Admin configuration for Refund model
    list_display = (
        "id",
        "payment",
        "refund_amount",
        "refund_percentage",
        "refund_type",
        "status",
        "created_at",
    )
    list_filter = ("status", "refund_type")
    search_fields = ("provider_refund_id", "payment__provider_order_id")
    readonly_fields = ("created_at", "updated_at", "version", "gateway_response")
    raw_id_fields = ("payment", "appointment", "initiated_by", "settlement")


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):  # Admin configuration for Settlement model
    list_display = ("hospital", "period_start", "period_end", "payment_count", "net_amount", "status")
    list_filter = ("status",)
    search_fields = ("hospital__email", "reference")
    readonly_fields = ("created_at", "updated_at", "version")


@admin.register(PaymentWebhookEvent)
class PaymentWebhookEventAdmin(admin.ModelAdmin):  # Admin configuration for PaymentWebhookEvent model
    list_display = ("provider", "event_id", "event_type", "signature_valid", "processed", "created_at")
    list_filter = ("provider", "event_type", "processed")
    search_fields = ("event_id",)
    readonly_fields = ("created_at", "updated_at", "payload", "processing_error")


@admin.register(CreditAccount)
class CreditAccountAdmin(admin.ModelAdmin):  # Admin configuration for CreditAccount model
    list_display = ("participant", "balance", "lifetime_earned", "lifetime_used", "currency", "updated_at")
    search_fields = ("participant__email",)
    readonly_fields = ("created_at", "updated_at", "version")
    raw_id_fields = ("participant",)


@admin.register(CreditTransaction)
class CreditTransactionAdmin(admin.ModelAdmin):  # Admin configuration for CreditTransaction model
    list_display = ("account", "transaction_type", "source", "amount", "balance_after", "reference", "created_at")
    list_filter = ("transaction_type", "source")
    search_fields = ("reference", "account__participant__email")
    readonly_fields = ("created_at", "updated_at", "version")
    raw_id_fields = ("account", "refund")
