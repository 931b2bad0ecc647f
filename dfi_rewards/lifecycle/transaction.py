"""Signed chain transactions and their content derived ids.

A :py:class:`ChainTransaction` is created once per logical operation from
fully signed bytes and never changes afterwards. Its id is computed from
the bytes, so resubmitting the same object is idempotent on the network:

- native (DVM) transactions use the Bitcoin txid, the byte-reversed double
  SHA-256 of the serialisation *without* segwit witness data,
- EVM transactions use keccak256 of the signed RLP/typed envelope.
"""

import enum
import hashlib
from dataclasses import dataclass, field

from eth_utils import keccak

from dfi_rewards.serialisation import ByteReader

#: First transaction version whose outputs carry a token id
TOKENS_MIN_TX_VERSION = 4

_SEGWIT_MARKER_AND_FLAG = b"\x00\x01"


class TransactionDomain(enum.Enum):
    """Which endpoint a transaction is submitted to."""

    native = "native"
    evm = "evm"


def strip_witness(raw: bytes) -> bytes:
    """Serialisation of a native transaction without segwit data.

    Non-segwit transactions are returned as is.

    :raise ValueError:
        Malformed or truncated payload.
    """
    reader = ByteReader(raw)
    version_bytes = reader.read(4)
    version = int.from_bytes(version_bytes, "little")

    segwit = reader.peek(2) == _SEGWIT_MARKER_AND_FLAG
    if segwit:
        reader.read(2)

    body_start = reader.offset
    input_count = reader.read_compact_size()
    for _ in range(input_count):
        reader.read(36)  # prevout txid + index
        reader.read_bytes()  # scriptSig
        reader.read(4)  # sequence

    output_count = reader.read_compact_size()
    for _ in range(output_count):
        reader.read(8)  # value
        reader.read_bytes()  # scriptPubKey
        if version >= TOKENS_MIN_TX_VERSION:
            reader.read_varint()  # token id
    body_end = reader.offset

    if segwit:
        for _ in range(input_count):
            for _ in range(reader.read_compact_size()):
                reader.read_bytes()

    lock_time = reader.read(4)
    if reader.remaining:
        raise ValueError(f"{reader.remaining} trailing bytes after transaction")

    if not segwit:
        return raw

    return version_bytes + raw[body_start:body_end] + lock_time


def compute_native_txid(raw: bytes) -> str:
    """Bitcoin style txid as displayed by explorers and Ocean."""
    digest = hashlib.sha256(hashlib.sha256(strip_witness(raw)).digest()).digest()
    return digest[::-1].hex()


def compute_evm_txid(raw: bytes) -> str:
    """EVM transaction hash, ``0x`` prefixed."""
    return "0x" + keccak(raw).hex()


@dataclass(frozen=True, slots=True)
class ChainTransaction:
    """A fully signed transaction ready to broadcast.

    Use :py:meth:`from_native` or :py:meth:`from_evm`. The id cannot be
    given, it is always derived from :py:attr:`raw`.
    """

    #: Signed transaction bytes
    raw: bytes

    #: Endpoint family the transaction belongs to
    domain: TransactionDomain

    #: Content derived transaction id
    txid: str = field(init=False)

    def __post_init__(self):
        assert isinstance(self.raw, bytes) and self.raw, "Transaction payload must be non-empty bytes"
        if self.domain == TransactionDomain.native:
            txid = compute_native_txid(self.raw)
        else:
            txid = compute_evm_txid(self.raw)
        object.__setattr__(self, "txid", txid)

    @classmethod
    def from_native(cls, raw: bytes | str) -> "ChainTransaction":
        """Wrap a signed native transaction, bytes or hex string."""
        return cls(raw=_as_bytes(raw), domain=TransactionDomain.native)

    @classmethod
    def from_evm(cls, raw: bytes | str) -> "ChainTransaction":
        """Wrap a signed EVM transaction, bytes or ``0x`` hex string."""
        return cls(raw=_as_bytes(raw), domain=TransactionDomain.evm)

    @property
    def hex(self) -> str:
        """Payload for the submission endpoint."""
        if self.domain == TransactionDomain.evm:
            return "0x" + self.raw.hex()
        return self.raw.hex()

    def __repr__(self) -> str:
        return f"<ChainTransaction {self.domain.value} {self.txid} ({len(self.raw)} bytes)>"


def _as_bytes(raw: bytes | str) -> bytes:
    if isinstance(raw, str):
        return bytes.fromhex(raw.removeprefix("0x"))
    return bytes(raw)
