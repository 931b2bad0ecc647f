"""Bounded broadcast retries."""

import pytest
import requests

from dfi_rewards.lifecycle.broadcaster import BroadcastExhausted, TransactionBroadcaster
from dfi_rewards.lifecycle.clock import CancelToken, OperationCancelled
from dfi_rewards.lifecycle.config import LifecycleConfig
from dfi_rewards.lifecycle.errors import EndpointError
from dfi_rewards.lifecycle.transaction import TransactionDomain


def test_broadcast_first_attempt(scripted_endpoint, fake_clock, native_tx):
    endpoint = scripted_endpoint()
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)

    assert broadcaster.broadcast(native_tx) == native_tx.txid
    assert endpoint.sent == [(0.0, native_tx.hex)]


def test_broadcast_exhausted_after_six_attempts(scripted_endpoint, fake_clock, native_tx):
    """1 + 5 retries, 10 seconds apart, identical bytes every time."""
    errors = [EndpointError(-26, f"txn-mempool-conflict {i}") for i in range(6)]
    endpoint = scripted_endpoint(send_script=errors)
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)

    with pytest.raises(BroadcastExhausted) as exc_info:
        broadcaster.broadcast(native_tx)

    assert len(endpoint.sent) == 6, f"Expected exactly 6 attempts, got {len(endpoint.sent)}"
    assert [t for t, _ in endpoint.sent] == [0.0, 10.0, 20.0, 30.0, 40.0, 50.0]
    assert {payload for _, payload in endpoint.sent} == {native_tx.hex}

    exc = exc_info.value
    assert exc.attempts == 6
    assert exc.txid == native_tx.txid
    assert exc.cause is errors[-1]
    assert exc.__cause__ is errors[-1]


def test_broadcast_recovers(scripted_endpoint, fake_clock, native_tx):
    endpoint = scripted_endpoint(send_script=[EndpointError(-1, "busy"), requests.ConnectionError("reset")])
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)

    assert broadcaster.broadcast(native_tx) == native_tx.txid
    assert [t for t, _ in endpoint.sent] == [0.0, 10.0, 20.0]


def test_broadcast_is_idempotent(scripted_endpoint, fake_clock, native_tx):
    """Broadcasting the same transaction twice reports the same id."""
    endpoint = scripted_endpoint()
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)

    first = broadcaster.broadcast(native_tx)
    second = broadcaster.broadcast(native_tx)
    assert first == second == native_tx.txid


def test_broadcast_initial_delay(scripted_endpoint, fake_clock, native_tx):
    endpoint = scripted_endpoint()
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)

    broadcaster.broadcast(native_tx, initial_delay=5)
    assert endpoint.sent[0][0] == 5.0


def test_broadcast_reports_endpoint_txid(scripted_endpoint, fake_clock, native_tx):
    endpoint = scripted_endpoint(send_script=["ab" * 32])
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)
    assert broadcaster.broadcast(native_tx) == "ab" * 32


def test_broadcast_domain_mismatch(scripted_endpoint, fake_clock, native_tx):
    endpoint = scripted_endpoint(TransactionDomain.evm)
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)
    with pytest.raises(AssertionError):
        broadcaster.broadcast(native_tx)


def test_broadcast_cancelled_between_attempts(scripted_endpoint, fake_clock, native_tx):
    cancel = CancelToken()
    endpoint = scripted_endpoint(send_script=[EndpointError(-1, "down")] * 6)
    endpoint.on_send = lambda attempt: cancel.cancel()
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(), fake_clock)

    with pytest.raises(OperationCancelled):
        broadcaster.broadcast(native_tx, cancel=cancel)
    assert len(endpoint.sent) == 1


def test_broadcast_no_retries(scripted_endpoint, fake_clock, native_tx):
    endpoint = scripted_endpoint(send_script=[EndpointError(-1, "down")])
    broadcaster = TransactionBroadcaster(endpoint, LifecycleConfig(max_broadcast_retries=0), fake_clock)
    with pytest.raises(BroadcastExhausted):
        broadcaster.broadcast(native_tx)
    assert len(endpoint.sent) == 1
    assert fake_clock.now == 0
