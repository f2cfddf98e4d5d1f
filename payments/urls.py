from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = "payments"

router = DefaultRouter()
router.register(r"", views.PaymentViewSet, basename="payment")

urlpatterns = [
    path("create-order/", views.create_order, name="create-order"),
    path("verify/", views.verify_payment, name="verify"),
    path("cashfree/callback/", views.cashfree_callback, name="cashfree-callback"),
    path("webhook/razorpay/", views.razorpay_webhook, name="razorpay-webhook"),
    path("webhook/cashfree/", views.cashfree_webhook, name="cashfree-webhook"),
    path("refunds/", views.list_refunds, name="refund-list"),
    path("credits/", views.credit_balance, name="credit-balance"),
    path("settlements/", views.list_settlements, name="settlement-list"),
    path("settlements/generate/", views.generate_settlements, name="settlement-generate"),
    path("", include(router.urls)),
]
