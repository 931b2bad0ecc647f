"""Address and token id mapping between DeFiChain execution domains.

DeFiChain runs the native ledger (DVM) and an EVM side (DMC) on the same
chain. Value moving between them is described in terms of output scripts:

- native addresses are bech32 (``df1…``, witness v0) or base58check
  (P2PKH ``8…``, P2SH ``d…`` on mainnet) and map to the standard Bitcoin
  script templates,
- EVM addresses map to the ``OP_16 <20-byte address>`` script used by
  TransferDomain,
- every native token has a DST20 ERC-20 twin on the EVM side at the
  deterministic address ``0xff`` + 19-byte big-endian token id.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import base58
import bech32
from eth_typing import HexAddress
from eth_utils import is_hex_address, to_canonical_address, to_checksum_address

from dfi_rewards.network import DefiChainNetwork

#: First byte of every DST20 contract address
DST20_ADDRESS_MARKER = 0xFF

#: Width of the token id part of a DST20 address
DST20_TOKEN_ID_BYTES = 19

#: Token ids must fit the 19 bytes following the marker
MAX_TOKEN_ID = 2 ** (8 * DST20_TOKEN_ID_BYTES) - 1

OP_0 = 0x00
OP_16 = 0x60
OP_DUP = 0x76
OP_HASH160 = 0xA9
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xAC


class TransferDomainError(ValueError):
    """Invalid input to the transfer domain codec or encoder.

    Never retryable: the same input always fails the same way.
    """


class InvalidTokenId(TransferDomainError):
    """Token id is negative, non-integral or out of the DST20 range."""


class UnsupportedAddressFormat(TransferDomainError):
    """Address cannot be parsed for the requested domain."""


class TransferDomainType(enum.IntEnum):
    """Domain tags as serialised in TransferDomain items."""

    #: Native DeFiChain ledger, both UTXO and account model
    dvm = 2

    #: EVM side of the chain
    evm = 3


@dataclass(frozen=True, slots=True)
class DomainAddress:
    """An address resolved into the form a domain needs."""

    #: Domain the script belongs to
    domain: TransferDomainType

    #: Human readable address as given (checksummed for EVM)
    address: str

    #: Output script identifying the address inside TransferDomain items
    script: bytes

    @property
    def evm_address(self) -> HexAddress:
        """20-byte EVM address of an EVM domain address."""
        assert self.domain == TransferDomainType.evm, f"Not an EVM address: {self.address}"
        return HexAddress(self.address)


def parse_token_id(token_id: int | str | Decimal) -> int:
    """Validate a token id and return it as a plain integer.

    :raise InvalidTokenId:
        Negative, non-integral, boolean or out of range ids.
    """
    if isinstance(token_id, bool):
        raise InvalidTokenId(f"Token id cannot be a boolean: {token_id!r}")

    if isinstance(token_id, int):
        value = token_id
    else:
        try:
            as_decimal = Decimal(str(token_id).strip())
        except InvalidOperation:
            raise InvalidTokenId(f"Token id is not a number: {token_id!r}") from None
        if not as_decimal.is_finite() or as_decimal != as_decimal.to_integral_value():
            raise InvalidTokenId(f"Token id must be integral: {token_id!r}")
        value = int(as_decimal)

    if value < 0:
        raise InvalidTokenId(f"Token id must not be negative: {token_id!r}")

    if value > MAX_TOKEN_ID:
        raise InvalidTokenId(f"Token id {value} does not fit in {DST20_TOKEN_ID_BYTES} bytes")

    return value


def token_to_contract_address(token_id: int | str | Decimal) -> HexAddress:
    """Get the DST20 contract address of a native token.

    The address is ``0xff`` followed by the token id as a 19-byte big-endian
    integer, e.g. token 11 (DUSD on testnet) lives at
    ``0xff0000000000000000000000000000000000000b`` (EIP-55 checksummed).

    :param token_id:
        Native token id.

    :return:
        EIP-55 checksummed contract address.

    :raise InvalidTokenId:
        See :py:func:`parse_token_id`.
    """
    value = parse_token_id(token_id)
    raw = bytes([DST20_ADDRESS_MARKER]) + value.to_bytes(DST20_TOKEN_ID_BYTES, "big")
    return HexAddress(to_checksum_address("0x" + raw.hex()))


def evm_address_script(address: bytes) -> bytes:
    """``OP_16 <20 bytes>`` script of an EVM address."""
    assert len(address) == 20
    return bytes([OP_16, 20]) + address


def _native_script(address: str, network: DefiChainNetwork) -> bytes:
    if address.lower().startswith(network.bech32_hrp + "1"):
        version, program = bech32.decode(network.bech32_hrp, address)
        if version is None:
            raise UnsupportedAddressFormat(f"Invalid bech32 address {address!r} for {network.name}")
        if version != 0 or len(program) not in (20, 32):
            raise UnsupportedAddressFormat(f"Unsupported witness program v{version}/{len(program)} bytes: {address!r}")
        return bytes([OP_0, len(program)]) + bytes(program)

    try:
        decoded = base58.b58decode_check(address)
    except ValueError:
        raise UnsupportedAddressFormat(f"Not a {network.name} bech32 or base58check address: {address!r}") from None

    if len(decoded) != 21:
        raise UnsupportedAddressFormat(f"Base58 payload has {len(decoded)} bytes, expected 21: {address!r}")

    version, key_hash = decoded[0], decoded[1:]
    if version == network.pubkey_hash_prefix:
        return bytes([OP_DUP, OP_HASH160, 20]) + key_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    if version == network.script_hash_prefix:
        return bytes([OP_HASH160, 20]) + key_hash + bytes([OP_EQUAL])

    raise UnsupportedAddressFormat(f"Base58 version byte 0x{version:02x} is not a {network.name} address: {address!r}")


def address_for_domain(address: str, domain: TransferDomainType, network: DefiChainNetwork) -> DomainAddress:
    """Resolve a human readable address into its domain specific form.

    Example::

        from dfi_rewards.network import TESTNET
        from dfi_rewards.transfer_domain.codec import TransferDomainType, address_for_domain

        evm = address_for_domain("0x4A1E…", TransferDomainType.evm, TESTNET)
        native = address_for_domain("tf1q…", TransferDomainType.dvm, TESTNET)

    :param address:
        Address string.

    :param domain:
        Domain the address must belong to.

    :param network:
        Network whose address prefixes apply to native addresses.

    :raise UnsupportedAddressFormat:
        The address is not valid in the domain.
    """
    if not isinstance(address, str) or not address:
        raise UnsupportedAddressFormat(f"Address must be a non-empty string, got {address!r}")

    if domain == TransferDomainType.evm:
        if not is_hex_address(address):
            raise UnsupportedAddressFormat(f"Not a 20-byte EVM address: {address!r}")
        return DomainAddress(
            domain=domain,
            address=to_checksum_address(address),
            script=evm_address_script(to_canonical_address(address)),
        )

    if domain == TransferDomainType.dvm:
        return DomainAddress(
            domain=domain,
            address=address,
            script=_native_script(address, network),
        )

    raise UnsupportedAddressFormat(f"Unknown domain {domain!r}")
