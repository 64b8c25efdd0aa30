import json
import logging
from functools import wraps

from django.http import JsonResponse

from apps.core.actors import HumanActor
from apps.core.exceptions import LeaseError, ValidationError

logger = logging.getLogger(__name__)

STAFF_PORTAL_ROLES = ("admin", "manager", "staff")


def staff_required(view_func):
    """Authenticated admin, manager or staff user that belongs to a client."""
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"error": "Authentication required."}, status=401)
        if request.user.role not in STAFF_PORTAL_ROLES or request.user.client_id is None:
            return JsonResponse({"error": "Access denied."}, status=403)
        request.actor = HumanActor(request.user)
        return view_func(request, *args, **kwargs)
    return wrapper


def lease_api(view_func):
    """Serialize ``LeaseError`` raised by the service layer as a JSON error response."""
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except LeaseError as e:
            if e.status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.path, e.message)
            return JsonResponse(e.as_dict(), status=e.status_code)
    return wrapper


def json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON body.") from None
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object.")
    return data
