"""Tests for event fan-out to observers."""

from __future__ import annotations

import logging
import threading

import pytest

from wtsandbox.events import CallbackObserver, EventManager, Observer, RecordingObserver
from wtsandbox.models import EventType, SandboxEvent


def _event(event_type: EventType = EventType.SANDBOX_CREATED, sandbox_id: str = "wt-1") -> SandboxEvent:
    return SandboxEvent(type=event_type, sandbox_id=sandbox_id)


class TestObserverProtocol:
    def test_builtin_observers_satisfy_protocol(self) -> None:
        assert isinstance(RecordingObserver(), Observer)
        assert isinstance(CallbackObserver(lambda e: None), Observer)

    def test_plain_object_does_not(self) -> None:
        assert not isinstance(object(), Observer)


class TestEventManager:
    def test_delivery_in_registration_order(self) -> None:
        seen: list[str] = []
        events = EventManager()
        events.add_observer(CallbackObserver(lambda e: seen.append("first")))
        events.add_observer(CallbackObserver(lambda e: seen.append("second")))

        events.emit(_event())
        assert seen == ["first", "second"]

    def test_failing_observer_does_not_stop_fan_out(self, caplog: pytest.LogCaptureFixture) -> None:
        def boom(event: SandboxEvent) -> None:
            raise RuntimeError("observer broke")

        recorder = RecordingObserver()
        events = EventManager()
        events.add_observer(CallbackObserver(boom))
        events.add_observer(recorder)

        with caplog.at_level(logging.ERROR, logger="wtsandbox.events"):
            events.emit(_event())

        assert len(recorder.events) == 1
        assert "observer broke" in caplog.text

    def test_remove_observer(self) -> None:
        recorder = RecordingObserver()
        events = EventManager()
        events.add_observer(recorder)
        assert events.remove_observer(recorder) is True
        assert events.remove_observer(recorder) is False

        events.emit(_event())
        assert recorder.events == []
        assert len(events) == 0

    def test_observer_may_unregister_during_emit(self) -> None:
        events = EventManager()
        recorder = RecordingObserver()

        class OneShot:
            def on_event(self, event: SandboxEvent) -> None:
                events.remove_observer(self)

        events.add_observer(OneShot())
        events.add_observer(recorder)
        events.emit(_event())
        events.emit(_event())

        assert len(recorder.events) == 2
        assert len(events) == 1

    def test_concurrent_registration_and_emit(self) -> None:
        events = EventManager()
        recorder = RecordingObserver()
        events.add_observer(recorder)

        def register() -> None:
            for _ in range(200):
                observer = RecordingObserver()
                events.add_observer(observer)
                events.remove_observer(observer)

        def emit() -> None:
            for _ in range(200):
                events.emit(_event())

        threads = [threading.Thread(target=register), threading.Thread(target=emit)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(recorder.events) == 200
        assert len(events) == 1


class TestRecordingObserver:
    def test_filters(self) -> None:
        recorder = RecordingObserver()
        recorder.on_event(_event(EventType.EXECUTION_STARTED))
        recorder.on_event(_event(EventType.EXECUTION_ENDED))
        recorder.on_event(_event(EventType.EXECUTION_STARTED, "wt-2"))

        assert recorder.types == [
            EventType.EXECUTION_STARTED,
            EventType.EXECUTION_ENDED,
            EventType.EXECUTION_STARTED,
        ]
        assert [e.sandbox_id for e in recorder.of_type(EventType.EXECUTION_STARTED)] == ["wt-1", "wt-2"]

        recorder.clear()
        assert recorder.events == []
