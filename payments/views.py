from rest_framework import viewsets, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.filters import OrderingFilter
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework.response import Response
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
import logging

from core.models import Participant
from core.sentry_utils import capture_error_with_context, set_participant_context
from .apps import get_services
from .exceptions import MalformedWebhook, PaymentNotFound
from .models import Payment
from .serializers import (
    CashfreeCallbackRequestSerializer,
    CreditAccountSerializer,
    CreateOrderRequestSerializer,
    GenerateSettlementRequestSerializer,
    PaymentSerializer,
    PaymentStatusSerializer,
    RefundRequestSerializer,
    RefundSerializer,
    SettlementSerializer,
    VerifyPaymentRequestSerializer,
)
from .settlement_service import previous_week

logger = logging.getLogger(__name__)

UUID_REGEX = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


def payments_for(participant):
    queryset = Payment.objects.select_related("appointment", "payer")
    if participant.is_platform_staff:
        return queryset
    if participant.role == "hospital":
        return queryset.filter(hospital=participant)
    return queryset.filter(payer=participant)


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):  # View for Payment history and actions
    """Payments visible to the caller: own payments, hospital receipts, or all for staff"""
    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated]
    queryset = Payment.objects.none()
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_fields = ["status", "provider"]
    ordering_fields = ["created_at", "paid_at", "total_amount"]
    ordering = ["-created_at"]
    lookup_value_regex = UUID_REGEX

    def get_queryset(self):  # Get queryset
        if getattr(self, 'swagger_fake_view', False):
            return Payment.objects.none()
        return payments_for(self.request.user)

    def retrieve(self, request, pk=None):  # Retrieve with explicit ownership errors
        payment = get_services().reconciler.get_payment_for(request.user, pk)
        return Response(PaymentSerializer(payment).data)

    @extend_schema(summary="Payment status", responses={200: PaymentStatusSerializer})
    @action(detail=True, methods=["get"], url_path="status")
    def payment_status(self, request, pk=None):
        payment = get_services().reconciler.get_payment_for(request.user, pk)
        return Response(PaymentStatusSerializer(payment).data)

    @extend_schema(
        summary="Refund a completed payment",
        request=RefundRequestSerializer,
        responses={201: RefundSerializer},
    )
    @action(detail=True, methods=["post"])
    def refund(self, request, pk=None):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        set_participant_context(request.user)
        refund = get_services().refunds.process_refund(
            pk,
            request.user,
            amount=data.get("amount"),
            reason=data["reason"],
            refund_type=data.get("refund_type"),
        )
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


@extend_schema(
    summary="Create a gateway order for an appointment",
    request=CreateOrderRequestSerializer,
    responses={201: dict, 200: dict},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_order(request):
    """Create (or reuse) the pending gateway order for an appointment"""
    serializer = CreateOrderRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    set_participant_context(request.user)
    result = get_services().ledger.create_order(request.user, serializer.validated_data["appointmentId"])
    return Response(
        result.as_response(),
        status=status.HTTP_200_OK if result.reused else status.HTTP_201_CREATED,
    )


@extend_schema(
    summary="Verify a checkout payment",
    request=VerifyPaymentRequestSerializer,
    responses={200: PaymentSerializer},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def verify_payment(request):
    serializer = VerifyPaymentRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    set_participant_context(request.user)
    payment = get_services().reconciler.verify_payment(
        request.user,
        data.get("provider"),
        data["gateway_order_id"],
        data["gateway_payment_id"],
        data["gateway_signature"],
    )
    return Response(PaymentSerializer(payment).data)


@extend_schema(
    summary="Cashfree redirect callback",
    request=CashfreeCallbackRequestSerializer,
    responses={200: PaymentSerializer},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cashfree_callback(request):
    serializer = CashfreeCallbackRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    payment = get_services().reconciler.verify_callback_payment(
        request.user, serializer.validated_data["orderId"]
    )
    return Response(PaymentSerializer(payment).data)


def _handle_webhook(request, provider_name):
    try:
        result = get_services().reconciler.handle_webhook(provider_name, request.body, request.headers)
    except MalformedWebhook:
        logger.error(f"{provider_name} webhook rejected: invalid JSON with a valid signature")
        raise
    except Exception as e:
        # Return 200 to acknowledge receipt, log for manual review
        logger.error(f"{provider_name} webhook processing error: {str(e)}", exc_info=True)
        capture_error_with_context(e, {"webhook": {"provider": provider_name}})
        return Response({"status": "error_logged"}, status=status.HTTP_200_OK)

    return Response({"status": result.status}, status=status.HTTP_200_OK)


@extend_schema(
    summary="Razorpay webhook handler",
    request={'application/json': dict},
    responses={200: dict, 400: dict}
)
@csrf_exempt
@api_view(['POST'])
@permission_classes([AllowAny])
def razorpay_webhook(request):
    """Handle Razorpay webhook events with signature verification and idempotency"""
    return _handle_webhook(request, "razorpay")


@extend_schema(
    summary="Cashfree webhook handler",
    request={'application/json': dict},
    responses={200: dict, 400: dict}
)
@csrf_exempt
@api_view(['POST'])
@permission_classes([AllowAny])
def cashfree_webhook(request):
    """Handle Cashfree webhook events with signature verification and idempotency"""
    return _handle_webhook(request, "cashfree")


@extend_schema(summary="Refunds visible to the caller", responses={200: RefundSerializer(many=True)})
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_refunds(request):
    refunds = get_services().refunds.refunds_for(request.user).order_by("-created_at")
    status_filter = request.query_params.get("status")
    if status_filter:
        refunds = refunds.filter(status=status_filter)
    return Response(RefundSerializer(refunds[:100], many=True).data)


@extend_schema(summary="Credit balance and recent credit movements", responses={200: CreditAccountSerializer})
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def credit_balance(request):
    account = get_services().credits.get_account(request.user)
    return Response(CreditAccountSerializer(account).data)


@extend_schema(summary="Settlements visible to the caller", responses={200: SettlementSerializer(many=True)})
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_settlements(request):
    user = request.user
    if not user.is_platform_staff and user.role != "hospital":
        raise PermissionDenied("Only hospitals and staff can view settlements")
    settlements = get_services().settlements.settlements_for(user)
    return Response(SettlementSerializer(settlements[:100], many=True).data)


@extend_schema(
    summary="Generate settlements for a period (staff)",
    request=GenerateSettlementRequestSerializer,
    responses={201: SettlementSerializer(many=True)},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def generate_settlements(request):
    if not request.user.is_platform_staff:
        raise PermissionDenied("Only staff can generate settlements")

    data = request.data
    if not data:
        period_start, period_end = previous_week(timezone.now())
        hospital_id = None
    else:
        serializer = GenerateSettlementRequestSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        period_start = serializer.validated_data["period_start"]
        period_end = serializer.validated_data["period_end"]
        hospital_id = serializer.validated_data.get("hospital")

    service = get_services().settlements
    if hospital_id:
        hospital = Participant.objects.filter(pk=hospital_id, role="hospital").first()
        if hospital is None:
            raise PaymentNotFound("Hospital not found")
        settlements = [service.generate_settlement(hospital, period_start, period_end)]
    else:
        settlements = service.generate_for_period(period_start, period_end)

    logger.info(f"{request.user.email} generated {len(settlements)} settlements")
    return Response(SettlementSerializer(settlements, many=True).data, status=status.HTTP_201_CREATED)
