from django.contrib import admin
from django.http import JsonResponse
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView


def healthcheck(_request):
    """Simple readiness and liveness check used by deployment."""
    return JsonResponse({"status": "ok"})


urlpatterns = [
    path("admin/", admin.site.urls),
    # Intake + token-addressed status/query endpoints
    path("api/payment-uploads/", include("uploads.urls")),
    # OpenAPI schema
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    # Healthcheck
    path("health/", healthcheck, name="healthcheck"),
]
