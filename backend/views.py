from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.reverse import reverse
from rest_framework.permissions import AllowAny
from django.http import JsonResponse
from django.db import connection
import sys


@api_view(["GET"])
@permission_classes([AllowAny])
def api_root(request, format=None):
    return Response(
        {
            "auth": {
                "token": reverse("token_obtain_pair", request=request, format=format),
                "token_refresh": reverse(
                    "token_refresh", request=request, format=format
                ),
            },
            "endpoints": {
                "payments": request.build_absolute_uri("/api/v1/payments/"),
                "create_order": reverse("payments:create-order", request=request, format=format),
                "verify": reverse("payments:verify", request=request, format=format),
                "refunds": reverse("payments:refund-list", request=request, format=format),
                "credits": reverse("payments:credit-balance", request=request, format=format),
                "settlements": reverse("payments:settlement-list", request=request, format=format),
            },
            "documentation": request.build_absolute_uri("/api/docs/"),
        }
    )


def health_check(request):
    health_status = {
        "status": "healthy",
        "python_version": sys.version,
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["database"] = f"error: {str(e)}"
        return JsonResponse(health_status, status=503)

    return JsonResponse(health_status)
