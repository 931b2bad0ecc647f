"""Cross-domain transfer encoding.

A TransferDomain transaction moves a token between the native ledger (DVM)
and the EVM side (DMC) atomically. The native transaction carries a
``DfTx`` custom message with one ``(src, dst)`` item pair, and the EVM side
of the move is authorised by a *signed EVM sub-transaction* embedded in the
item pair:

- the sub-transaction calls the TransferDomain system contract at
  :py:data:`TRANSFER_DOMAIN_CONTRACT` (``transfer`` for DFI,
  ``transferDST20`` for other tokens),
- it is signed with zero gas price and zero gas limit and never broadcast
  on its own, consensus executes it as part of the native transaction,
- its bytes sit on the leg of the EVM side action: ``src`` when converting
  EVM to DVM, ``dst`` when converting DVM to EVM.

Amounts are 8-decimal fixed point on the native side and 18-decimal on the
EVM side. Rescaling is ``floor(amount * 10**18 / 10**8)``; native amounts
with more than 8 fractional digits are rejected instead of being rounded.

The within-native conversions (UTXO to account balance and back) are not
TransferDomain transactions but they share the request shape, so the same
:py:func:`build_transfer` entry point produces their custom messages too.

Example::

    from decimal import Decimal

    from eth_account import Account

    from dfi_rewards.network import TESTNET
    from dfi_rewards.transfer_domain.encoder import Domain, TransferRequest, build_transfer

    account = Account.from_key(private_key)
    request = TransferRequest(
        source=Domain.native,
        destination=Domain.evm,
        token_id=TESTNET.dusd_token_id,
        amount=Decimal("100"),
        source_address="tf1q…",
        destination_address=account.address,
        chain_id=TESTNET.evm_chain_id,
        nonce=web3.eth.get_transaction_count(account.address),
    )
    descriptor = build_transfer(request, account, TESTNET)

    # Handed to the native transaction builder as the OP_RETURN output
    script = descriptor.to_op_return_script()
"""

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Type

import rlp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress, HexStr
from eth_utils import to_checksum_address
from web3 import Web3
from web3.contract import Contract

from dfi_rewards.abi import encode_function_data, get_contract
from dfi_rewards.network import DefiChainNetwork
from dfi_rewards.serialisation import encode_custom_tx_script, write_bytes, write_compact_size, write_varint
from dfi_rewards.transfer_domain.codec import (
    DomainAddress,
    TransferDomainError,
    TransferDomainType,
    address_for_domain,
    parse_token_id,
    token_to_contract_address,
)

logger = logging.getLogger(__name__)

#: TransferDomain system contract on the EVM side
TRANSFER_DOMAIN_CONTRACT: HexAddress = HexAddress(to_checksum_address("0xdf00000000000000000000000000000000000001"))

#: ABI of :py:data:`TRANSFER_DOMAIN_CONTRACT`
TRANSFER_DOMAIN_ABI = "TransferDomainV1.json"

#: DFI, the chain's native unit
DFI_TOKEN_ID = 0

#: Fixed point precision of native amounts
NATIVE_DECIMALS = 8

#: Fixed point precision of EVM amounts
EVM_DECIMALS = 18

#: Largest amount a signed 64-bit CAmount holds, in satoshis
MAX_SATOSHIS = 2**63 - 1

#: Custom transaction type bytes
CUSTOM_TX_TRANSFER_DOMAIN = ord("8")
CUSTOM_TX_UTXOS_TO_ACCOUNT = ord("U")
CUSTOM_TX_ACCOUNT_TO_UTXOS = ord("b")

#: AccountToUtxos mints new UTXOs from this output index on.
#: Output 0 is the OP_RETURN, output 1 the change.
ACCOUNT_TO_UTXOS_MINTING_OUTPUTS_START = 2


class UnsupportedDirection(TransferDomainError):
    """The source and destination domains cannot be converted between."""


class InvalidAmount(TransferDomainError):
    """Amount is negative, not a number, too large or has more than 8 decimals."""


class Domain(enum.Enum):
    """Where a balance lives."""

    #: Native account ledger (DVM). TransferDomain moves from and to here.
    account = "account"

    #: Native UTXO set
    utxo = "utxo"

    #: EVM side (DMC)
    evm = "evm"

    #: Alias: the native domain of a TransferDomain is the account ledger
    native = "account"


class ConvertDirection(enum.Enum):
    """Supported conversions."""

    evm_to_dvm = "evmToDvm"
    dvm_to_evm = "dvmToEvm"
    utxos_to_account = "utxosToAccount"
    account_to_utxos = "accountToUtxos"


def to_satoshis(amount: Decimal | int | str) -> int:
    """Convert a native amount to its 8-decimal integer representation.

    :raise InvalidAmount:
        Negative amounts, non-numbers, amounts above :py:data:`MAX_SATOSHIS`
        and amounts with sub-satoshi precision.
    """
    if isinstance(amount, (bool, float)):
        raise InvalidAmount(f"Amounts must be Decimal, int or str, got {type(amount).__name__}: {amount!r}")

    try:
        value = Decimal(amount) if not isinstance(amount, Decimal) else amount
    except InvalidOperation:
        raise InvalidAmount(f"Not a number: {amount!r}") from None

    if not value.is_finite():
        raise InvalidAmount(f"Amount must be finite: {amount!r}")

    if value < 0:
        raise InvalidAmount(f"Amount must not be negative: {amount}")

    satoshis = value.scaleb(NATIVE_DECIMALS)
    if satoshis != satoshis.to_integral_value():
        raise InvalidAmount(f"Amount {amount} has more than {NATIVE_DECIMALS} decimals")

    if satoshis > MAX_SATOSHIS:
        raise InvalidAmount(f"Amount {amount} does not fit a 64-bit amount")

    return int(satoshis)


def rescale_to_evm(amount: Decimal | int | str) -> int:
    """Rescale an 8-decimal native amount to 18-decimal EVM units.

    ``floor(amount * 10**18 / 10**8)``, computed on integers so it is exact.
    """
    return to_satoshis(amount) * 10 ** (EVM_DECIMALS - NATIVE_DECIMALS)


@dataclass(frozen=True, slots=True)
class TransferRequest:
    """One logical transfer between domains."""

    #: Domain the value leaves
    source: Domain

    #: Domain the value arrives to
    destination: Domain

    #: Native token id
    token_id: int

    #: Amount in native units, at most 8 decimals
    amount: Decimal

    #: Address in the source domain
    source_address: str

    #: Address in the destination domain
    destination_address: str

    #: EVM chain id for EIP-155 replay protection of the sub-transaction
    chain_id: int | None = None

    #: EVM nonce of the sub-transaction signer.
    #:
    #: Managed by the caller, must be the signer's next nonce.
    nonce: int = 0


@dataclass(frozen=True, slots=True)
class TransferDomainLeg:
    """One side of a TransferDomain item pair."""

    #: Address in this leg's domain
    address: DomainAddress

    #: Native token id
    token_id: int

    #: Amount in native units
    amount: Decimal

    #: Signed EVM sub-transaction, empty on the leg without the EVM action
    data: bytes = b""

    @property
    def domain(self) -> TransferDomainType:
        return self.address.domain

    def serialise(self) -> bytes:
        """Serialise as ``CTransferDomainItem``: address, token amount, domain, data."""
        return b"".join(
            [
                write_bytes(self.address.script),
                write_varint(self.token_id),
                to_satoshis(self.amount).to_bytes(8, "little", signed=True),
                bytes([self.domain]),
                write_bytes(self.data),
            ]
        )


@dataclass(frozen=True, slots=True)
class TransferDomainDescriptor:
    """The item pair of a TransferDomain transaction.

    Construction checks the pair invariants:

    - opposite domains,
    - same token and amount on both legs,
    - exactly one leg carries the signed EVM sub-transaction, the one
      whose side executes the EVM action.
    """

    direction: ConvertDirection
    src: TransferDomainLeg
    dst: TransferDomainLeg

    def __post_init__(self):
        assert self.src.domain != self.dst.domain, f"Both legs in {self.src.domain.name}"
        assert self.src.token_id == self.dst.token_id, f"Token mismatch {self.src.token_id} != {self.dst.token_id}"
        assert self.src.amount == self.dst.amount, f"Amount mismatch {self.src.amount} != {self.dst.amount}"
        assert bool(self.src.data) != bool(self.dst.data), "Exactly one leg must carry the EVM sub-transaction"
        assert self.evm_leg.domain == TransferDomainType.evm, "The EVM sub-transaction belongs to the EVM side leg"

    @property
    def evm_leg(self) -> TransferDomainLeg:
        """The leg carrying the signed EVM sub-transaction."""
        return self.src if self.src.data else self.dst

    @property
    def evm_payload(self) -> bytes:
        """Signed EVM sub-transaction bytes."""
        return self.evm_leg.data

    @property
    def token_id(self) -> int:
        return self.src.token_id

    @property
    def amount(self) -> Decimal:
        return self.src.amount

    def to_dftx(self) -> bytes:
        """Serialise the ``CTransferDomainMessage`` payload."""
        return write_compact_size(1) + self.src.serialise() + self.dst.serialise()

    def to_op_return_script(self) -> bytes:
        """The ``OP_RETURN DfTx 8 …`` output script of the transaction."""
        return encode_custom_tx_script(CUSTOM_TX_TRANSFER_DOMAIN, self.to_dftx())


@dataclass(frozen=True, slots=True)
class NativeConversionDescriptor:
    """UTXO to account (or back) conversion within the native ledger.

    Only DFI exists both as UTXOs and as an account balance.
    """

    direction: ConvertDirection

    #: Owner of both the UTXOs and the account balance
    address: DomainAddress

    amount: Decimal

    token_id: int = DFI_TOKEN_ID

    def _balances(self) -> bytes:
        # CBalances keys are fixed width uint32, unlike CTokenAmount
        return write_compact_size(1) + self.token_id.to_bytes(4, "little") + to_satoshis(self.amount).to_bytes(8, "little", signed=True)

    def to_dftx(self) -> bytes:
        if self.direction == ConvertDirection.utxos_to_account:
            return write_compact_size(1) + write_bytes(self.address.script) + self._balances()
        return write_bytes(self.address.script) + self._balances() + ACCOUNT_TO_UTXOS_MINTING_OUTPUTS_START.to_bytes(4, "little")

    def to_op_return_script(self) -> bytes:
        tx_type = CUSTOM_TX_UTXOS_TO_ACCOUNT if self.direction == ConvertDirection.utxos_to_account else CUSTOM_TX_ACCOUNT_TO_UTXOS
        return encode_custom_tx_script(tx_type, self.to_dftx())


#: What :py:func:`build_transfer` can return
TransferDescriptor = TransferDomainDescriptor | NativeConversionDescriptor


@lru_cache(maxsize=None)
def get_transfer_domain_contract() -> Type[Contract]:
    """Unbound TransferDomain contract class for calldata encoding."""
    return get_contract(Web3(), TRANSFER_DOMAIN_ABI)


def encode_transfer_domain_call(
    token_id: int,
    sender: HexAddress | str,
    receiver: HexAddress | str,
    evm_amount: int,
    native_address: str,
) -> HexStr:
    """Encode the TransferDomain contract call of a sub-transaction.

    DFI uses ``transfer(from, to, amount, vmAddress)``, every other token
    ``transferDST20(contractAddress, from, to, amount, vmAddress)`` with its
    DST20 contract address.
    """
    contract = get_transfer_domain_contract()
    sender = to_checksum_address(sender)
    receiver = to_checksum_address(receiver)
    if token_id == DFI_TOKEN_ID:
        return encode_function_data(contract, "transfer", [sender, receiver, evm_amount, native_address])
    return encode_function_data(
        contract,
        "transferDST20",
        [token_to_contract_address(token_id), sender, receiver, evm_amount, native_address],
    )


def sign_evm_sub_transaction(
    signer: LocalAccount,
    data: HexStr,
    nonce: int,
    chain_id: int | None,
) -> bytes:
    """Sign a TransferDomain contract call for embedding.

    Legacy (type 0) transaction with zero value, gas price and gas limit:
    it is executed by the native transaction, never broadcast by itself.
    """
    tx = {
        "to": TRANSFER_DOMAIN_CONTRACT,
        "nonce": nonce,
        "data": data,
        "value": 0,
        "gas": 0,
        "gasPrice": 0,
    }
    if chain_id is not None:
        tx["chainId"] = chain_id
    signed = signer.sign_transaction(tx)
    return bytes(signed.raw_transaction)


class _Direction:
    """Direction specific construction of a transfer."""

    direction: ConvertDirection

    def build(
        self,
        request: TransferRequest,
        token_id: int,
        signer: LocalAccount | None,
        network: DefiChainNetwork,
    ) -> TransferDescriptor:
        raise NotImplementedError()


class _NativeToEvm(_Direction):
    direction = ConvertDirection.dvm_to_evm

    def build(self, request, token_id, signer, network):
        native = address_for_domain(request.source_address, TransferDomainType.dvm, network)
        evm = address_for_domain(request.destination_address, TransferDomainType.evm, network)
        if signer is None:
            raise TransferDomainError("Converting to EVM needs a signer for the sub-transaction")
        data = encode_transfer_domain_call(token_id, TRANSFER_DOMAIN_CONTRACT, evm.evm_address, rescale_to_evm(request.amount), native.address)
        payload = sign_evm_sub_transaction(signer, data, request.nonce, request.chain_id)
        return TransferDomainDescriptor(
            direction=self.direction,
            src=TransferDomainLeg(native, token_id, request.amount),
            dst=TransferDomainLeg(evm, token_id, request.amount, payload),
        )


class _EvmToNative(_Direction):
    direction = ConvertDirection.evm_to_dvm

    def build(self, request, token_id, signer, network):
        evm = address_for_domain(request.source_address, TransferDomainType.evm, network)
        native = address_for_domain(request.destination_address, TransferDomainType.dvm, network)
        if signer is None:
            raise TransferDomainError("Converting from EVM needs a signer for the sub-transaction")
        if signer.address != evm.evm_address:
            raise TransferDomainError(f"Signer {signer.address} cannot move funds out of EVM address {evm.evm_address}")
        data = encode_transfer_domain_call(token_id, evm.evm_address, TRANSFER_DOMAIN_CONTRACT, rescale_to_evm(request.amount), native.address)
        payload = sign_evm_sub_transaction(signer, data, request.nonce, request.chain_id)
        return TransferDomainDescriptor(
            direction=self.direction,
            src=TransferDomainLeg(evm, token_id, request.amount, payload),
            dst=TransferDomainLeg(native, token_id, request.amount),
        )


class _WithinNative(_Direction):
    def __init__(self, direction: ConvertDirection):
        self.direction = direction

    def build(self, request, token_id, signer, network):
        if token_id != DFI_TOKEN_ID:
            raise UnsupportedDirection(f"Only DFI converts between UTXOs and account balance, got token {token_id}")
        source = address_for_domain(request.source_address, TransferDomainType.dvm, network)
        destination = address_for_domain(request.destination_address, TransferDomainType.dvm, network)
        if source.script != destination.script:
            raise UnsupportedDirection(f"{self.direction.value} must stay on one address, got {source.address} and {destination.address}")
        return NativeConversionDescriptor(direction=self.direction, address=source, amount=request.amount)


_DIRECTIONS: dict[tuple[Domain, Domain], _Direction] = {
    (Domain.account, Domain.evm): _NativeToEvm(),
    (Domain.evm, Domain.account): _EvmToNative(),
    (Domain.utxo, Domain.account): _WithinNative(ConvertDirection.utxos_to_account),
    (Domain.account, Domain.utxo): _WithinNative(ConvertDirection.account_to_utxos),
}


def resolve_direction(source: Domain, destination: Domain) -> ConvertDirection:
    """Map a domain pair to its conversion.

    :raise UnsupportedDirection:
        Same domain, or a pair the chain has no conversion for (UTXO to EVM).
    """
    try:
        return _DIRECTIONS[(source, destination)].direction
    except KeyError:
        raise UnsupportedDirection(f"Cannot convert from {source.value} to {destination.value}") from None


def build_transfer(
    request: TransferRequest,
    signer: LocalAccount | None,
    network: DefiChainNetwork,
) -> TransferDescriptor:
    """Build the custom transaction message of a transfer request.

    Pure transformation: balances are not checked and nothing is sent.
    Zero amounts are accepted.

    :param request:
        What to move where.

    :param signer:
        EVM account signing the embedded sub-transaction.
        Only needed for conversions involving the EVM domain.

    :param network:
        Network whose native address format applies.

    :return:
        :py:class:`TransferDomainDescriptor` for EVM conversions,
        :py:class:`NativeConversionDescriptor` within the native ledger.

    :raise UnsupportedDirection:
        See :py:func:`resolve_direction`.

    :raise InvalidTokenId:
        Token id is not a valid native token id.

    :raise InvalidAmount:
        See :py:func:`to_satoshis`.

    :raise UnsupportedAddressFormat:
        Either address is not valid in its domain.

    :raise TransferDomainError:
        EVM direction without a signer, or a signer that does not own
        the EVM source address.
    """
    resolve_direction(request.source, request.destination)
    variant = _DIRECTIONS[(request.source, request.destination)]
    token_id = parse_token_id(request.token_id)
    to_satoshis(request.amount)

    descriptor = variant.build(request, token_id, signer, network)

    logger.info(
        "Built %s transfer of %s token %d from %s to %s",
        variant.direction.value,
        request.amount,
        token_id,
        request.source_address,
        request.destination_address,
    )
    return descriptor


@dataclass(frozen=True, slots=True)
class EvmCall:
    """Decoded embedded EVM sub-transaction."""

    #: Recovered signer
    sender: HexAddress

    #: Called contract
    to: HexAddress

    nonce: int

    #: EIP-155 chain id, ``None`` for unprotected signatures
    chain_id: int | None

    gas_price: int

    gas: int

    value: int

    #: ``transfer`` or ``transferDST20``
    function: str

    #: Decoded call arguments by ABI name
    arguments: dict


def _to_int(value: bytes) -> int:
    return int.from_bytes(value, "big")


def decode_evm_payload(payload: bytes) -> EvmCall:
    """Decode the signed EVM sub-transaction embedded in a descriptor.

    :param payload:
        Raw signed legacy transaction bytes.

    :raise ValueError:
        The payload is not a legacy transaction calling the TransferDomain contract.
    """
    fields = rlp.decode(payload)
    if not isinstance(fields, list) or len(fields) != 9:
        raise ValueError(f"Not a signed legacy transaction: {len(payload)} bytes")

    nonce, gas_price, gas, to, value, data, v, _r, _s = fields
    v = _to_int(v)
    chain_id = (v - 35) // 2 if v >= 35 else None

    function, arguments = get_transfer_domain_contract().decode_function_input(data)

    return EvmCall(
        sender=HexAddress(Account.recover_transaction(payload)),
        to=HexAddress(to_checksum_address("0x" + to.hex())),
        nonce=_to_int(nonce),
        chain_id=chain_id,
        gas_price=_to_int(gas_price),
        gas=_to_int(gas),
        value=_to_int(value),
        function=function.fn_name,
        arguments=dict(arguments),
    )
