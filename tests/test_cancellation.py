from __future__ import annotations

import threading
import time

from engine.cancellation import CancelToken, GuardTimer, Ticker


def test_first_cancel_wins_and_callbacks_run_once() -> None:
    token = CancelToken()
    seen = []
    token.add_callback(seen.append)

    first = TimeoutError("start")
    assert token.cancel(first) is True
    assert token.cancel(TimeoutError("inactivity")) is False

    assert token.reason is first
    assert seen == [first]


def test_callback_added_after_cancel_runs_immediately() -> None:
    token = CancelToken()
    reason = RuntimeError("stopping")
    token.cancel(reason)
    seen = []

    token.add_callback(seen.append)

    assert seen == [reason]


def test_guard_fires_when_window_elapses() -> None:
    token = CancelToken()
    guard = GuardTimer(0.05, token, lambda: TimeoutError("silent"))
    guard.start()

    assert token.wait(2.0) is True
    assert str(token.reason) == "silent"


def test_guard_reset_pushes_deadline_and_stop_disarms() -> None:
    token = CancelToken()
    guard = GuardTimer(0.2, token, lambda: TimeoutError("stalled"))
    guard.start()
    for _ in range(5):
        time.sleep(0.08)
        guard.reset()
    guard.stop()

    assert token.wait(0.4) is False


def test_ticker_sleep_returns_false_once_stopped() -> None:
    ticker = Ticker()
    assert ticker.sleep(0) is True

    threading.Timer(0.05, ticker.stop).start()
    started = time.monotonic()

    assert ticker.sleep(5.0) is False
    assert time.monotonic() - started < 2.0
    assert ticker.running is False
