"""Cancellable sleeping."""

import threading
import time

import pytest

from dfi_rewards.lifecycle.clock import CancelToken, Clock, OperationCancelled


def test_sleep_without_cancel():
    clock = Clock()
    started = clock.monotonic()
    clock.sleep(0.01)
    assert clock.monotonic() - started >= 0.01


def test_sleep_zero_returns():
    Clock().sleep(0, CancelToken())


def test_sleep_already_cancelled():
    cancel = CancelToken()
    cancel.cancel()
    assert cancel.cancelled
    with pytest.raises(OperationCancelled):
        Clock().sleep(0, cancel)


def test_cancel_wakes_sleeper():
    """A long sleep ends as soon as another thread cancels."""
    cancel = CancelToken()
    timer = threading.Timer(0.05, cancel.cancel)
    timer.start()

    started = time.monotonic()
    with pytest.raises(OperationCancelled):
        Clock().sleep(30, cancel)
    assert time.monotonic() - started < 5

    timer.join()
