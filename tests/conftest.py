"""Shared fixtures.

Nothing here touches the network: time is virtual and endpoints replay a
script.
"""

import bech32
import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount

from dfi_rewards.lifecycle.clock import CancelToken, Clock
from dfi_rewards.lifecycle.errors import EvmTransactionReverted
from dfi_rewards.lifecycle.transaction import ChainTransaction, TransactionDomain
from dfi_rewards.network import TESTNET

#: Well known test key, never holds funds
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


class FakeClock(Clock):
    """Virtual time, sleeping only advances :py:attr:`now`."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancel: CancelToken | None = None):
        if cancel is not None:
            cancel.check()
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds


class ScriptedEndpoint:
    """Endpoint replaying scripted outcomes.

    ``send_script`` and ``poll_script`` items are either a value to return
    or an exception to raise. When a script runs out, sends succeed and
    polls return ``included``.
    """

    def __init__(
        self,
        domain: TransactionDomain,
        clock: FakeClock,
        send_script=(),
        poll_script=(),
        included: bool = True,
        reverted=(),
    ):
        self.domain = domain
        self.clock = clock
        self.send_script = list(send_script)
        self.poll_script = list(poll_script)
        self.included = included
        self.reverted = set(reverted)

        #: (time, hex) of every send
        self.sent = []

        #: (time, txid) of every poll
        self.polls = []

        #: txids checked for success
        self.checked = []

        #: Called with the attempt number on every send
        self.on_send = None

    def _txid(self, raw_hex: str) -> str:
        if self.domain == TransactionDomain.evm:
            return ChainTransaction.from_evm(raw_hex).txid
        return ChainTransaction.from_native(raw_hex).txid

    def send_raw_transaction(self, raw_hex: str) -> str:
        self.sent.append((self.clock.now, raw_hex))
        if self.on_send is not None:
            self.on_send(len(self.sent))
        if self.send_script:
            outcome = self.send_script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self._txid(raw_hex)

    def is_transaction_included(self, txid: str) -> bool:
        self.polls.append((self.clock.now, txid))
        if self.poll_script:
            outcome = self.poll_script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self.included

    def assert_transaction_success(self, txid: str):
        self.checked.append(txid)
        if txid in self.reverted:
            raise EvmTransactionReverted(txid, {"status": 0, "blockNumber": 1})


def make_native_tx(lock_time: int = 0, witness: bytes | None = None, version: int = 4) -> bytes:
    """Serialise a one input, one output native transaction.

    :param witness:
        Single witness stack item. ``None`` for a non-segwit transaction.
    """
    body = b"".join(
        [
            b"\x01",  # input count
            bytes(range(32)),  # prevout txid
            (1).to_bytes(4, "little"),  # prevout index
            b"\x00",  # empty scriptSig
            b"\xff\xff\xff\xff",  # sequence
            b"\x01",  # output count
            (150_000_000).to_bytes(8, "little"),
            b"\x16\x00\x14" + bytes([0x22] * 20),  # P2WPKH script
        ]
    )
    if version >= 4:
        body += b"\x00"  # token id 0
    header = version.to_bytes(4, "little")
    footer = lock_time.to_bytes(4, "little")
    if witness is None:
        return header + body + footer
    witness_data = b"\x01" + bytes([len(witness)]) + witness
    return header + b"\x00\x01" + body + witness_data + footer


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scripted_endpoint(fake_clock):
    """Factory for :py:class:`ScriptedEndpoint` on the shared fake clock."""

    def _factory(domain: TransactionDomain = TransactionDomain.native, **kwargs) -> ScriptedEndpoint:
        return ScriptedEndpoint(domain, fake_clock, **kwargs)

    return _factory


@pytest.fixture()
def account() -> LocalAccount:
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture()
def native_address() -> str:
    """Testnet P2WPKH address."""
    return bech32.encode(TESTNET.bech32_hrp, 0, bytes([0x22] * 20))


@pytest.fixture()
def build_native_tx():
    """Access to :py:func:`make_native_tx` from tests."""
    return make_native_tx


@pytest.fixture()
def native_tx() -> ChainTransaction:
    return ChainTransaction.from_native(make_native_tx())
