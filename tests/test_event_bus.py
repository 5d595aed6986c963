# tests/test_event_bus.py

from __future__ import annotations

from taskhub.core.debounce import Debouncer
from taskhub.core.events import EventBus

from .fakes import ManualScheduler


def test_handlers_run_in_registration_order_and_failures_are_isolated() -> None:
    bus = EventBus()
    seen: list[str] = []

    def boom(_data) -> None:
        seen.append("boom")
        raise RuntimeError("handler failure")

    bus.on("x", lambda d: seen.append(f"a:{d}"))
    bus.on("x", boom)
    bus.on("x", lambda d: seen.append(f"c:{d}"))

    bus.emit("x", 1)

    assert seen == ["a:1", "boom", "c:1"]


def test_once_handler_is_removed_even_when_it_raises() -> None:
    bus = EventBus()
    calls: list[int] = []

    def flaky(data) -> None:
        calls.append(data)
        raise ValueError("nope")

    bus.once("x", flaky)
    bus.emit("x", 1)
    bus.emit("x", 2)

    assert calls == [1]
    assert bus.listener_count("x") == 0
    assert bus.event_names() == []


def test_off_removes_exact_handler_only() -> None:
    bus = EventBus()
    seen: list[str] = []

    def a(_d) -> None:
        seen.append("a")

    def b(_d) -> None:
        seen.append("b")

    bus.on("x", a)
    bus.on("x", b)
    bus.once("y", a)

    bus.off("x", a)
    bus.off("y", a)
    bus.off("missing", a)
    bus.emit("x")
    bus.emit("y")

    assert seen == ["b"]


def test_handler_can_unsubscribe_during_emit() -> None:
    bus = EventBus()
    seen: list[str] = []

    def first(_d) -> None:
        seen.append("first")
        bus.off("x", second)

    def second(_d) -> None:
        seen.append("second")

    bus.on("x", first)
    bus.on("x", second)

    bus.emit("x")  # snapshot: second still runs this time
    bus.emit("x")

    assert seen == ["first", "second", "first"]


def test_clear_drops_everything() -> None:
    bus = EventBus()
    bus.on("a", print)
    bus.on("b", print)
    bus.clear()
    assert bus.event_names() == []


def test_debouncer_cancel_and_rearm() -> None:
    clock = ManualScheduler()
    fired: list[float] = []
    d = Debouncer(1.0, lambda: fired.append(clock.now), scheduler=clock)

    d.trigger()
    clock.advance(0.6)
    d.trigger()  # resets the window
    clock.advance(0.6)
    assert fired == []
    assert d.armed

    clock.advance(0.4)
    assert fired == [1.6]
    assert not d.armed


def test_debouncer_cancel_and_custom_delay() -> None:
    clock = ManualScheduler()
    fired: list[int] = []
    d = Debouncer(1.0, lambda: fired.append(1), scheduler=clock)

    d.trigger(5.0)
    assert d.cancel() is True
    assert d.cancel() is False
    clock.advance(10)
    assert fired == []

    d.trigger(5.0)
    clock.advance(4.9)
    assert fired == []
    clock.advance(0.1)
    assert fired == [1]


def test_debouncer_callback_failure_is_logged_not_raised(caplog) -> None:
    clock = ManualScheduler()

    def boom() -> None:
        raise RuntimeError("timer failure")

    d = Debouncer(0.1, boom, scheduler=clock, name="boom")
    d.trigger()
    clock.advance(1)

    assert not d.armed
    assert "Debounced callback failed name=boom" in caplog.text
