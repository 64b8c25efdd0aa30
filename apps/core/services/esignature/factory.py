import logging

from django.conf import settings

logger = logging.getLogger(__name__)

GATEWAY_MAP = {
    "boldsign": "apps.core.services.esignature.boldsign.BoldSignGateway",
}


def get_gateway_class(provider):
    from django.utils.module_loading import import_string
    path = GATEWAY_MAP.get(provider)
    if not path:
        raise ValueError(f"Unknown e-signature provider: {provider}")
    return import_string(path)


def get_gateway_for_provider(provider):
    """Build the gateway for ``provider`` from ``settings.ESIGNATURE``, or None if unconfigured."""
    config = settings.ESIGNATURE.get(provider)
    if not config or not config.get("api_key"):
        logger.warning("E-signature provider %s is not configured", provider)
        return None
    cls = get_gateway_class(provider)
    return cls(config)


def default_sender():
    from .base import SenderInfo
    return SenderInfo(
        name=settings.ESIGNATURE.get("default_sender_name", ""),
        email=settings.ESIGNATURE.get("default_sender_email", ""),
    )
