"""
Health check endpoints for container orchestration.
"""

import logging

from django.conf import settings
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def health_check(request):
    """
    Returns 200 with {"status": "healthy"} when the database and task broker
    respond, 503 otherwise. E-signature providers are listed for information
    and never fail the check.

    Usage:
        curl http://localhost:8000/health/
    """
    health_data = {
        "status": "healthy",
        "checks": {},
    }
    status_code = 200

    try:
        _check_database()
        health_data["checks"]["database"] = "connected"
    except Exception as e:
        logger.error("Health check: database unavailable: %s", e)
        health_data["status"] = "unhealthy"
        health_data["checks"]["database"] = f"error: {e}"
        status_code = 503

    try:
        from django_q.brokers import get_broker

        broker = get_broker()
        health_data["checks"]["task_broker"] = "connected" if broker.ping() else "unreachable"
    except Exception as e:
        logger.error("Health check: task broker unavailable: %s", e)
        health_data["checks"]["task_broker"] = f"error: {e}"
        health_data["status"] = "unhealthy"
        status_code = 503

    health_data["checks"]["esignature_providers"] = sorted(
        name
        for name, config in settings.ESIGNATURE.items()
        if isinstance(config, dict) and config.get("api_key")
    )
    return JsonResponse(health_data, status=status_code)


def liveness_check(request):
    """
    Simple liveness probe - just confirms the application is running.

    Usage:
        curl http://localhost:8000/live/
    """
    return JsonResponse({"status": "alive"})


def readiness_check(request):
    try:
        _check_database()
        return JsonResponse({"status": "ready"})
    except Exception as e:
        return JsonResponse({"status": "not_ready", "error": str(e)}, status=503)
