"""Unit tests for the change notification subject."""

from __future__ import annotations

from openspaces.runtime.events import ChangeSubject


def test_publish_reaches_every_observer() -> None:
    subject: ChangeSubject[int] = ChangeSubject()
    first: list[int] = []
    second: list[int] = []
    subject.subscribe(first.append)
    subject.subscribe(second.append)

    subject.publish(1)

    assert first == [1]
    assert second == [1]


def test_unsubscribe_callable() -> None:
    subject: ChangeSubject[int] = ChangeSubject()
    seen: list[int] = []
    unsubscribe = subject.subscribe(seen.append)

    unsubscribe()
    unsubscribe()
    subject.publish(1)

    assert seen == []
    assert subject.observer_count == 0


def test_failing_observer_is_skipped() -> None:
    subject: ChangeSubject[str] = ChangeSubject()
    seen: list[str] = []

    def broken(value: str) -> None:
        raise ValueError(value)

    subject.subscribe(broken)
    subject.subscribe(seen.append)

    subject.publish("x")

    assert seen == ["x"]


def test_observer_may_unsubscribe_while_notified() -> None:
    subject: ChangeSubject[int] = ChangeSubject()
    seen: list[int] = []
    unsubscribe = None

    def once(value: int) -> None:
        seen.append(value)
        unsubscribe()

    unsubscribe = subject.subscribe(once)
    subject.publish(1)
    subject.publish(2)

    assert seen == [1]


def test_clear() -> None:
    subject: ChangeSubject[int] = ChangeSubject()
    subject.subscribe(lambda _: None)

    subject.clear()

    assert subject.observer_count == 0
