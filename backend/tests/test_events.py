"""Tests for lifecycle events and the event dispatcher."""

import logging

from core.events import (
    EventDispatcher,
    IntegrationCreated,
    IntegrationDeleted,
    IntegrationEvent,
    IntegrationUpdated,
    SecretsRotated,
    get_event_dispatcher,
    log_integration_activity,
)


def _created(**overrides):
    values = dict(integration_id="i-1", client_id="c-1", name="Billing sync", user_id="u-1")
    values.update(overrides)
    return IntegrationCreated(**values)


class TestEventDispatcher:

    def test_handler_receives_subscribed_type(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.subscribe(IntegrationCreated, received.append)

        delivered = dispatcher.dispatch([_created()])

        assert delivered == 1
        assert received[0].client_id == "c-1"

    def test_other_types_are_not_delivered(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.subscribe(IntegrationDeleted, received.append)

        assert dispatcher.dispatch([_created()]) == 0
        assert received == []

    def test_base_subscription_sees_everything(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.subscribe(IntegrationEvent, received.append)

        events = [
            _created(),
            IntegrationUpdated(integration_id="i-1", client_id="c-1", name="x", changed_fields=["name"]),
            SecretsRotated(integration_id="i-1", client_id="c-1", name="x", deactivated_count=2),
        ]
        assert dispatcher.dispatch(events) == 3
        assert [type(e) for e in received] == [IntegrationCreated, IntegrationUpdated, SecretsRotated]

    def test_failing_handler_does_not_stop_others(self, caplog):
        dispatcher = EventDispatcher()
        received = []

        def broken(event):
            raise RuntimeError("mail server down")

        dispatcher.subscribe(IntegrationCreated, broken)
        dispatcher.subscribe(IntegrationCreated, received.append)

        with caplog.at_level(logging.ERROR, logger="core.events"):
            delivered = dispatcher.dispatch([_created()])

        assert delivered == 1
        assert len(received) == 1
        assert "broken" in caplog.text

    def test_shared_dispatcher_is_singleton(self):
        assert get_event_dispatcher() is get_event_dispatcher()


class TestActivityLog:

    def test_logs_event_message(self, caplog):
        with caplog.at_level(logging.INFO, logger="core.events"):
            log_integration_activity(_created())
        assert "Integration created" in caplog.text

    def test_rotation_message(self, caplog):
        event = SecretsRotated(integration_id="i-1", client_id="c-1", name="x")
        with caplog.at_level(logging.INFO, logger="core.events"):
            log_integration_activity(event)
        assert "Integration secrets rotated" in caplog.text
