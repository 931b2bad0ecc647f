"""Funding and signing the bot's native transactions."""

from decimal import Decimal

import base58
import pytest

from dfi_rewards.lifecycle.transaction import TransactionDomain, strip_witness
from dfi_rewards.native.builder import (
    MIN_FEE_RATE,
    OceanNativeTransactionBuilder,
    calculate_fee,
    encode_pool_swap,
)
from dfi_rewards.native.transaction import NativeTransactionError
from dfi_rewards.network import TESTNET
from dfi_rewards.ocean.api import UnspentOutput
from dfi_rewards.ocean.session import OceanSession
from dfi_rewards.serialisation import ByteReader
from dfi_rewards.transfer_domain.encoder import Domain, TransferRequest, build_transfer

#: 1 satoshi per virtual byte
ONE_SAT_PER_BYTE = Decimal("0.00001")

SCRIPT_HEX = "0014" + "22" * 20


def _unspent(txid: str, value: str, token_id: int = 0, script_hex: str = SCRIPT_HEX, vout: int = 0) -> UnspentOutput:
    return UnspentOutput(txid=txid, vout=vout, value=Decimal(value), token_id=token_id, script_hex=script_hex)


def _parse(raw: bytes) -> dict:
    """Inputs and outputs of a witness-stripped version 4 transaction."""
    reader = ByteReader(raw)
    assert reader.read_uint(4) == 4
    inputs = []
    for _ in range(reader.read_compact_size()):
        inputs.append(reader.read(36))
        assert reader.read_bytes() == b""
        reader.read(4)
    outputs = []
    for _ in range(reader.read_compact_size()):
        value = int.from_bytes(reader.read(8), "little", signed=True)
        outputs.append((value, reader.read_bytes(), reader.read_varint()))
    reader.read(4)
    assert reader.remaining == 0
    return {"inputs": inputs, "outputs": outputs}


def _vsize(raw: bytes) -> int:
    return (3 * len(strip_witness(raw)) + len(raw) + 3) // 4


@pytest.fixture()
def unspent(monkeypatch):
    """UTXOs served for the bot's address."""
    utxos = [
        _unspent("11" * 32, "5.00000000", token_id=11),
        _unspent("22" * 32, "0.00000100"),
        _unspent("33" * 32, "1.50000000", vout=2),
        _unspent("44" * 32, "9.00000000"),
    ]
    monkeypatch.setattr("dfi_rewards.native.builder.fetch_address_unspent", lambda session, address: utxos)
    return utxos


@pytest.fixture()
def builder(account, native_address) -> OceanNativeTransactionBuilder:
    session = OceanSession("https://ocean.example.com", TESTNET.name)
    return OceanNativeTransactionBuilder(TESTNET, session, bytes(account.key), native_address, fee_rate=ONE_SAT_PER_BYTE)


def test_encode_pool_swap():
    script = encode_pool_swap(bytes.fromhex(SCRIPT_HEX), 0, Decimal("12.5"), bytes.fromhex(SCRIPT_HEX), 11, Decimal("9999999.25"))
    assert script[:2] == b"\x6a\x4c", "OP_RETURN OP_PUSHDATA1"
    payload = script[3:]
    assert script[2] == len(payload)
    assert payload[:5] == b"DfTxs"

    reader = ByteReader(payload[5:])
    assert reader.read_bytes().hex() == SCRIPT_HEX
    assert reader.read_varint() == 0
    assert reader.read_uint(8) == 1_250_000_000
    assert reader.read_bytes().hex() == SCRIPT_HEX
    assert reader.read_varint() == 11
    assert reader.read_uint(8) == 9999999
    assert reader.read_uint(8) == 25_000_000
    assert reader.remaining == 0


def test_pool_swap_transaction(builder, unspent):
    """Spends the first DFI UTXO above dust, change pays the fee."""
    tx = builder.pool_swap(0, Decimal("1"), 11, Decimal(9999999))
    assert tx.domain == TransactionDomain.native

    parsed = _parse(strip_witness(tx.raw))
    assert parsed["inputs"] == [bytes.fromhex("33" * 32)[::-1] + (2).to_bytes(4, "little")]

    (swap_value, swap_script, swap_token), (change_value, change_script, change_token) = parsed["outputs"]
    assert swap_value == 0
    assert swap_script == encode_pool_swap(bytes.fromhex(SCRIPT_HEX), 0, Decimal("1"), bytes.fromhex(SCRIPT_HEX), 11, Decimal(9999999))
    assert swap_token == 0
    assert change_script.hex() == SCRIPT_HEX
    assert change_token == 0

    fee = 150_000_000 - change_value
    vsize = _vsize(tx.raw)
    assert vsize <= fee <= vsize + 1, f"Fee {fee} for {vsize} vbytes at 1 sat/vbyte"


def test_transfer_domain_transaction(builder, unspent, account, native_address):
    request = TransferRequest(
        source=Domain.native,
        destination=Domain.evm,
        token_id=11,
        amount=Decimal("3"),
        source_address=native_address,
        destination_address=account.address,
        chain_id=TESTNET.evm_chain_id,
        nonce=7,
    )
    descriptor = build_transfer(request, account, TESTNET)

    tx = builder.transfer_domain(descriptor)

    outputs = _parse(strip_witness(tx.raw))["outputs"]
    assert outputs[0] == (0, descriptor.to_op_return_script(), 0)


def test_no_spendable_utxo(builder, monkeypatch):
    utxos = [
        _unspent("11" * 32, "5.00000000", token_id=11),
        _unspent("22" * 32, "0.00000100"),
        _unspent("33" * 32, "7.00000000", script_hex="76a914" + "22" * 20 + "88ac"),
    ]
    monkeypatch.setattr("dfi_rewards.native.builder.fetch_address_unspent", lambda session, address: utxos)
    with pytest.raises(NativeTransactionError):
        builder.pool_swap(0, Decimal("1"), 11, Decimal(9999999))


def test_fee_rate_from_ocean(account, native_address, unspent, monkeypatch):
    """Ocean's estimate is used, floored at the relay minimum."""
    monkeypatch.setattr("dfi_rewards.native.builder.fetch_fee_estimate", lambda session: Decimal("0.000001"))
    session = OceanSession("https://ocean.example.com", TESTNET.name)
    builder = OceanNativeTransactionBuilder(TESTNET, session, bytes(account.key), native_address)

    tx = builder.pool_swap(0, Decimal("1"), 11, Decimal(9999999))

    change_value = _parse(strip_witness(tx.raw))["outputs"][1][0]
    vsize = _vsize(tx.raw)
    assert 150_000_000 - change_value >= calculate_fee(MIN_FEE_RATE, vsize)


def test_calculate_fee_rounds_up():
    assert calculate_fee(ONE_SAT_PER_BYTE, 200) == 200
    assert calculate_fee(Decimal("0.000015"), 201) == 302


def test_p2pkh_address_rejected(account):
    address = base58.b58encode_check(bytes([TESTNET.pubkey_hash_prefix]) + bytes(20)).decode()
    session = OceanSession("https://ocean.example.com", TESTNET.name)
    with pytest.raises(NativeTransactionError):
        OceanNativeTransactionBuilder(TESTNET, session, bytes(account.key), address)
