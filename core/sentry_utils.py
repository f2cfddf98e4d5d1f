"""
Sentry integration utilities for MediPay
Provides context enrichment and custom error handling
"""
import sentry_sdk


def set_participant_context(participant):
    """Set participant context for Sentry events"""
    if not participant or not getattr(participant, 'is_authenticated', False):
        return

    sentry_sdk.set_user({
        "id": str(participant.uid),
        "email": getattr(participant, 'email', None),
        "role": getattr(participant, 'role', None),
    })


def set_payment_context(payment, **extra):
    """Set payment context for Sentry events"""
    sentry_sdk.set_context("payment", {
        "id": str(payment.id),
        "provider": payment.provider,
        "provider_order_id": payment.provider_order_id,
        "status": payment.status,
        **extra
    })


def capture_error_with_context(exception, context=None):
    """Capture exception with additional context"""
    if context:
        for key, value in context.items():
            sentry_sdk.set_context(key, value)

    sentry_sdk.capture_exception(exception)


def capture_message_with_context(message, level="error", context=None):
    """Capture a message that has no exception attached"""
    if context:
        for key, value in context.items():
            sentry_sdk.set_context(key, value)

    sentry_sdk.capture_message(message, level=level)


def add_breadcrumb(message, category="custom", level="info", data=None):
    """Add breadcrumb to Sentry for debugging"""
    sentry_sdk.add_breadcrumb(
        message=message,
        category=category,
        level=level,
        data=data or {}
    )
