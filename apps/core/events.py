"""
Typed in-process event bus.

Each event type is bound to exactly one payload class and backed by its own
``django.dispatch.Signal``. Subscriptions are made while wiring apps (in an
``AppConfig.ready()``), never from service constructors.

Delivery is best-effort: receivers run through ``send_robust`` and a failing
receiver is logged without affecting the emitter or the other receivers.
"""

import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self, name, payload_types):
        self.name = name
        self._payload_types = dict(payload_types)
        self._signals = {event_type: Signal() for event_type in self._payload_types}

    @property
    def event_types(self):
        return tuple(self._payload_types)

    def subscribe(self, event_type, handler, dispatch_uid=None):
        signal = self._signal_for(event_type)
        signal.connect(_ReceiverAdapter(handler), weak=False, dispatch_uid=dispatch_uid)

    def unsubscribe(self, event_type, dispatch_uid):
        self._signal_for(event_type).disconnect(dispatch_uid=dispatch_uid)

    def emit(self, event_type, payload):
        expected = self._payload_types.get(event_type)
        if expected is None:
            raise ValueError(f"Unknown event type for {self.name}: {event_type}")
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event_type} expects {expected.__name__}, got {type(payload).__name__}"
            )

        responses = self._signals[event_type].send_robust(sender=self, payload=payload)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Subscriber %s failed handling %s: %s",
                    receiver,
                    event_type,
                    response,
                    exc_info=(type(response), response, response.__traceback__),
                )
        return responses

    def _signal_for(self, event_type):
        try:
            return self._signals[event_type]
        except KeyError:
            raise ValueError(f"Unknown event type for {self.name}: {event_type}") from None


class _ReceiverAdapter:
    """Adapts a ``handler(payload)`` callable to the signal receiver signature."""

    def __init__(self, handler):
        self.handler = handler

    def __call__(self, sender, payload, **kwargs):
        return self.handler(payload)

    def __repr__(self):
        return getattr(self.handler, "__qualname__", repr(self.handler))
