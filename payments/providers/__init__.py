from .base import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    GatewayStatus,
    PaymentProvider,
    RefundGatewayStatus,
    WebhookEvent,
    WebhookKind,
)
from .registry import PaymentProviderRegistry

__all__ = [
    "GatewayOrder",
    "GatewayPayment",
    "GatewayRefund",
    "GatewayStatus",
    "PaymentProvider",
    "PaymentProviderRegistry",
    "RefundGatewayStatus",
    "WebhookEvent",
    "WebhookKind",
]
