"""Native transaction serialisation and P2WPKH signing.

DeFiChain transactions are Bitcoin transactions with one addition: from
version 4 on every output carries a VARINT token id after its script. The
same applies inside the BIP-143 ``hashOutputs`` digest.

Only what the reward bot spends is supported: native segwit v0
pay-to-witness-public-key-hash inputs, signed with ``SIGHASH_ALL``.
"""

import hashlib
from dataclasses import dataclass

from eth_keys import keys
from eth_keys.constants import SECPK1_N

from dfi_rewards.lifecycle.transaction import TOKENS_MIN_TX_VERSION
from dfi_rewards.serialisation import write_bytes, write_compact_size, write_varint

#: Version of the transactions built here
NATIVE_TX_VERSION = 4

SIGHASH_ALL = 0x01

#: Sequence of final inputs
SEQUENCE_FINAL = 0xFFFFFFFF

_P2WPKH_PREFIX = b"\x00\x14"


class NativeTransactionError(Exception):
    """A native transaction cannot be built from the given inputs."""


@dataclass(frozen=True, slots=True)
class TxInput:
    """A previous output being spent."""

    #: Previous transaction id as displayed by explorers
    txid: str

    vout: int

    #: Value of the previous output in satoshis
    value: int

    #: ``scriptPubKey`` of the previous output
    script: bytes

    sequence: int = SEQUENCE_FINAL

    def outpoint(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")


@dataclass(frozen=True, slots=True)
class TxOutput:
    """A new output, ``value`` in satoshis."""

    value: int
    script: bytes
    token_id: int = 0

    def serialise(self, version: int = NATIVE_TX_VERSION) -> bytes:
        data = self.value.to_bytes(8, "little", signed=True) + write_bytes(self.script)
        if version >= TOKENS_MIN_TX_VERSION:
            data += write_varint(self.token_id)
        return data


def double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def p2wpkh_script_code(script: bytes) -> bytes:
    """BIP-143 ``scriptCode`` of a P2WPKH output, the matching P2PKH script."""
    if len(script) != 22 or script[:2] != _P2WPKH_PREFIX:
        raise NativeTransactionError(f"Not a P2WPKH script: {script.hex()}")
    return b"\x76\xa9\x14" + script[2:] + b"\x88\xac"


def segwit_v0_sighash(
    version: int,
    inputs: list[TxInput],
    outputs: list[TxOutput],
    index: int,
    lock_time: int = 0,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP-143 signature hash of a P2WPKH input.

    :param index:
        Input being signed.
    :return:
        32 byte digest to sign.
    """
    assert sighash_type == SIGHASH_ALL, f"Only SIGHASH_ALL is supported, got {sighash_type}"
    spent = inputs[index]

    hash_prevouts = double_sha256(b"".join(i.outpoint() for i in inputs))
    hash_sequence = double_sha256(b"".join(i.sequence.to_bytes(4, "little") for i in inputs))
    hash_outputs = double_sha256(b"".join(o.serialise(version) for o in outputs))

    preimage = b"".join(
        [
            version.to_bytes(4, "little"),
            hash_prevouts,
            hash_sequence,
            spent.outpoint(),
            write_bytes(p2wpkh_script_code(spent.script)),
            spent.value.to_bytes(8, "little"),
            spent.sequence.to_bytes(4, "little"),
            hash_outputs,
            lock_time.to_bytes(4, "little"),
            sighash_type.to_bytes(4, "little"),
        ]
    )
    return double_sha256(preimage)


def _der_int(value: int) -> bytes:
    data = value.to_bytes((value.bit_length() + 7) // 8 or 1, "big")
    if data[0] & 0x80:
        data = b"\x00" + data
    return b"\x02" + bytes([len(data)]) + data


def der_signature(r: int, s: int) -> bytes:
    """DER encode an ECDSA signature, ``s`` normalised to the low half."""
    if s > SECPK1_N // 2:
        s = SECPK1_N - s
    body = _der_int(r) + _der_int(s)
    return b"\x30" + bytes([len(body)]) + body


def serialise_transaction(
    version: int,
    inputs: list[TxInput],
    outputs: list[TxOutput],
    witnesses: list[list[bytes]] | None = None,
    lock_time: int = 0,
) -> bytes:
    """Serialise a transaction, with segwit marker and witnesses if given."""
    parts = [version.to_bytes(4, "little")]
    if witnesses:
        assert len(witnesses) == len(inputs), f"{len(witnesses)} witnesses for {len(inputs)} inputs"
        parts.append(b"\x00\x01")

    parts.append(write_compact_size(len(inputs)))
    for i in inputs:
        parts += [i.outpoint(), write_bytes(b""), i.sequence.to_bytes(4, "little")]

    parts.append(write_compact_size(len(outputs)))
    parts += [o.serialise(version) for o in outputs]

    if witnesses:
        for stack in witnesses:
            parts.append(write_compact_size(len(stack)))
            parts += [write_bytes(item) for item in stack]

    parts.append(lock_time.to_bytes(4, "little"))
    return b"".join(parts)


def sign_p2wpkh_transaction(
    key: keys.PrivateKey,
    inputs: list[TxInput],
    outputs: list[TxOutput],
    version: int = NATIVE_TX_VERSION,
    lock_time: int = 0,
) -> bytes:
    """Sign every input with ``key`` and serialise.

    The key must own every input, the node rejects the transaction
    otherwise.

    :return:
        Signed raw transaction.
    """
    public_key = key.public_key.to_compressed_bytes()
    witnesses = []
    for index in range(len(inputs)):
        sighash = segwit_v0_sighash(version, inputs, outputs, index, lock_time)
        signature = key.sign_msg_hash(sighash)
        witnesses.append([der_signature(signature.r, signature.s) + bytes([SIGHASH_ALL]), public_key])
    return serialise_transaction(version, inputs, outputs, witnesses, lock_time)
