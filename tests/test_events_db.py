"""
Event bus delivery and the transaction helpers.
"""

from dataclasses import dataclass
from unittest import mock

import pytest
from django.db import NotSupportedError

from apps.core.db import run_in_transaction, run_with_effects
from apps.core.events import EventBus
from apps.core.exceptions import ConflictError, LeaseError, NotFoundError, ValidationError


@dataclass(frozen=True)
class Ping:
    value: int


@dataclass(frozen=True)
class Pong:
    value: int


@pytest.fixture
def bus():
    return EventBus("test", {"ping": Ping, "pong": Pong})


class TestEventBus:

    def test_subscribers_receive_payload(self, bus):
        received = []
        bus.subscribe("ping", received.append)

        bus.emit("ping", Ping(1))

        assert received == [Ping(1)]

    def test_payload_type_is_enforced(self, bus):
        with pytest.raises(TypeError):
            bus.emit("ping", Pong(1))

    def test_unknown_event_type(self, bus):
        with pytest.raises(ValueError):
            bus.emit("pang", Ping(1))
        with pytest.raises(ValueError):
            bus.subscribe("pang", print)

    def test_failing_subscriber_does_not_stop_others(self, bus, caplog):
        received = []

        def broken(payload):
            raise RuntimeError("subscriber bug")

        bus.subscribe("ping", broken)
        bus.subscribe("ping", received.append)

        bus.emit("ping", Ping(2))

        assert received == [Ping(2)]
        assert "subscriber bug" in caplog.text

    def test_unsubscribe_by_uid(self, bus):
        received = []
        bus.subscribe("pong", received.append, dispatch_uid="collector")
        bus.unsubscribe("pong", "collector")

        bus.emit("pong", Pong(3))
        assert received == []

    def test_event_types(self, bus):
        assert bus.event_types == ("ping", "pong")


@pytest.mark.django_db
class TestRunInTransaction:

    def test_returns_result(self):
        assert run_in_transaction(lambda a, b: a + b, 2, 3) == 5

    def test_retries_once_without_transaction(self):
        calls = []

        def fn():
            calls.append(1)
            return "done"

        atomic = mock.MagicMock()
        atomic.return_value.__enter__.side_effect = NotSupportedError("no transactions")
        with mock.patch("apps.core.db.transaction.atomic", atomic):
            assert run_in_transaction(fn) == "done"
        assert calls == [1]

    def test_other_errors_propagate(self):
        def fn():
            raise ConflictError("busy")

        with pytest.raises(ConflictError):
            run_in_transaction(fn)


@pytest.mark.django_db
class TestRunWithEffects:

    def test_effects_run_after_the_block(self):
        order = []

        def fn(effects):
            effects.append(lambda: order.append("effect"))
            order.append("body")
            return "ok"

        assert run_with_effects(fn) == "ok"
        assert order == ["body", "effect"]

    def test_effects_are_dropped_on_failure(self):
        ran = []

        def fn(effects):
            effects.append(lambda: ran.append(True))
            raise ValidationError("bad")

        with pytest.raises(ValidationError):
            run_with_effects(fn)
        assert ran == []

    def test_failing_effect_is_isolated(self, caplog):
        ran = []

        def boom():
            raise RuntimeError("smtp down")

        def fn(effects):
            effects.append(boom)
            effects.append(lambda: ran.append(True))
            return 42

        assert run_with_effects(fn) == 42
        assert ran == [True]
        assert "Post-commit side effect" in caplog.text


class TestErrors:

    def test_status_codes(self):
        assert ValidationError("x").status_code == 400
        assert NotFoundError("x").status_code == 404
        assert ConflictError("x").status_code == 409

    def test_as_dict_includes_field_errors(self):
        error = ValidationError("Lease update is invalid.", {"fees.monthly_rent": ["Must be positive."]})
        assert error.as_dict() == {
            "error": "Lease update is invalid.",
            "errors": {"fees.monthly_rent": ["Must be positive."]},
        }
        assert isinstance(error, LeaseError)
