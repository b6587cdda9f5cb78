# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for Signal.
"""

from unittest.mock import Mock

from core.calendar.signals import Signal


def test_emit_in_connection_order():
    calls = []
    signal = Signal(str, name="test")
    signal.connect(lambda value: calls.append(("first", value)))
    signal.connect(lambda value: calls.append(("second", value)))

    signal.emit("x")

    assert calls == [("first", "x"), ("second", "x")]


def test_duplicate_connect_is_ignored():
    slot = Mock()
    signal = Signal()
    signal.connect(slot)
    signal.connect(slot)

    signal.emit()

    slot.assert_called_once_with()
    assert signal.receiver_count == 1


def test_disconnect_single_and_all():
    first = Mock()
    second = Mock()
    signal = Signal()
    signal.connect(first)
    signal.connect(second)

    assert signal.disconnect(first) is True
    assert signal.disconnect(first) is False
    signal.emit()
    first.assert_not_called()
    second.assert_called_once()

    assert signal.disconnect() is True
    assert signal.disconnect() is False
    assert signal.receiver_count == 0


def test_failing_subscriber_does_not_stop_delivery(caplog):
    after = Mock()
    signal = Signal(int, name="values")
    signal.connect(Mock(side_effect=RuntimeError("boom")))
    signal.connect(after)

    signal.emit(5)

    after.assert_called_once_with(5)
    assert "values" in caplog.text


def test_slot_may_disconnect_itself_during_emit():
    signal = Signal()
    calls = []

    def once():
        calls.append("once")
        signal.disconnect(once)

    signal.connect(once)
    signal.emit()
    signal.emit()

    assert calls == ["once"]
