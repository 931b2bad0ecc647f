"""Reference native transaction builder.

Signs the bot's native transactions with the same secp256k1 key that owns
its EVM address, funded from a single DFI UTXO of a P2WPKH native address.

Every transaction has the same shape:

- input 0: the first DFI UTXO of the address that covers the fee,
- output 0: the ``OP_RETURN DfTx`` custom message, zero value,
- output 1: change back to the address.

The fee is ``fee_rate * vsize``, the fee rate taken from Ocean's
``fee/estimate`` unless given.

Example::

    from dfi_rewards.native.builder import OceanNativeTransactionBuilder

    builder = OceanNativeTransactionBuilder(TESTNET, session, private_key, "tf1q...")
    tx = builder.pool_swap(0, Decimal("10"), TESTNET.dusd_token_id, Decimal(9999999))
"""

import logging
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal

from eth_keys import keys
from eth_utils import to_bytes

from dfi_rewards.lifecycle.transaction import ChainTransaction, strip_witness
from dfi_rewards.native.transaction import (
    NATIVE_TX_VERSION,
    NativeTransactionError,
    TxInput,
    TxOutput,
    serialise_transaction,
    sign_p2wpkh_transaction,
)
from dfi_rewards.network import DefiChainNetwork
from dfi_rewards.ocean.api import UnspentOutput, fetch_address_unspent, fetch_fee_estimate
from dfi_rewards.ocean.session import OceanSession
from dfi_rewards.serialisation import encode_custom_tx_script, write_bytes, write_varint
from dfi_rewards.transfer_domain.codec import TransferDomainType, address_for_domain
from dfi_rewards.transfer_domain.encoder import DFI_TOKEN_ID, TransferDescriptor, to_satoshis

logger = logging.getLogger(__name__)

#: Custom transaction type byte of a DEX swap
CUSTOM_TX_POOL_SWAP = ord("s")

#: Floor of the fee rate, DFI/kB
MIN_FEE_RATE = Decimal("0.00001")

#: Smallest P2WPKH change output nodes relay, satoshis
DUST_THRESHOLD = 294

#: Witness sizes used for the fee estimate: DER signature with sighash byte, compressed public key
_PLACEHOLDER_WITNESS = [bytes(72), bytes(33)]


def encode_pool_swap(
    from_script: bytes,
    from_token_id: int,
    from_amount: Decimal,
    to_script: bytes,
    to_token_id: int,
    max_price: Decimal,
) -> bytes:
    """``OP_RETURN DfTx s …`` script of a ``PoolSwap``.

    :param max_price:
        Most ``from`` tokens paid per ``to`` token. Serialised as integer
        and 8-decimal fraction parts.

    :raise InvalidAmount:
        ``from_amount`` or ``max_price`` is not a valid native amount.
    """
    integer = max_price.to_integral_value(rounding=ROUND_DOWN)
    fraction = to_satoshis(max_price - integer)
    payload = b"".join(
        [
            write_bytes(from_script),
            write_varint(from_token_id),
            to_satoshis(from_amount).to_bytes(8, "little", signed=True),
            write_bytes(to_script),
            write_varint(to_token_id),
            int(integer).to_bytes(8, "little", signed=True),
            fraction.to_bytes(8, "little", signed=True),
        ]
    )
    return encode_custom_tx_script(CUSTOM_TX_POOL_SWAP, payload)


def estimate_vsize(inputs: list[TxInput], outputs: list[TxOutput]) -> int:
    """Virtual size of the transaction once every input is signed."""
    full = serialise_transaction(NATIVE_TX_VERSION, inputs, outputs, [_PLACEHOLDER_WITNESS] * len(inputs))
    stripped = strip_witness(full)
    weight = 3 * len(stripped) + len(full)
    return (weight + 3) // 4


def calculate_fee(fee_rate: Decimal, vsize: int) -> int:
    """Fee in satoshis for ``vsize`` bytes at ``fee_rate`` DFI/kB, rounded up."""
    return int((fee_rate.scaleb(8) * vsize / 1000).to_integral_value(rounding=ROUND_CEILING))


class OceanNativeTransactionBuilder:
    """Build and sign native transactions of one address, UTXOs from Ocean.

    Implements :py:class:`dfi_rewards.rewards.workflow.NativeTransactionBuilder`.
    Consecutive transactions may only be built after the previous one is
    confirmed, its change output is the next one's input.
    """

    def __init__(
        self,
        network: DefiChainNetwork,
        session: OceanSession,
        private_key: str | bytes,
        address: str,
        fee_rate: Decimal | None = None,
    ):
        """
        :param private_key:
            Hex or raw secp256k1 key owning ``address``.
        :param address:
            Bech32 P2WPKH native address.
        :param fee_rate:
            DFI/kB. Asked from Ocean for every transaction when not set.
        :raise NativeTransactionError:
            ``address`` is not a P2WPKH address.
        """
        self.network = network
        self.session = session
        self.key = keys.PrivateKey(private_key if isinstance(private_key, bytes) else to_bytes(hexstr=private_key))
        self.address = address_for_domain(address, TransferDomainType.dvm, network)
        self.fee_rate = fee_rate
        if len(self.address.script) != 22 or self.address.script[:2] != b"\x00\x14":
            raise NativeTransactionError(f"Only P2WPKH addresses are supported, got {address}")

    def _fee_rate(self) -> Decimal:
        if self.fee_rate is not None:
            return self.fee_rate
        return max(fetch_fee_estimate(self.session), MIN_FEE_RATE)

    def _select_utxo(self, fee: int) -> UnspentOutput:
        script_hex = self.address.script.hex()
        for utxo in fetch_address_unspent(self.session, self.address.address):
            if utxo.token_id != DFI_TOKEN_ID or utxo.script_hex != script_hex:
                continue
            if to_satoshis(utxo.value) >= fee + DUST_THRESHOLD:
                return utxo
        raise NativeTransactionError(f"No DFI UTXO of {self.address.address} covers a fee of {fee} satoshis")

    def build(self, custom_script: bytes) -> ChainTransaction:
        """Fund, sign and serialise a transaction carrying ``custom_script``.

        :param custom_script:
            ``OP_RETURN`` output script of the custom message.
        :raise NativeTransactionError:
            No UTXO can pay the fee.
        """
        fee_rate = self._fee_rate()

        # Input and output sizes do not depend on the UTXO picked
        template_input = TxInput(txid="00" * 32, vout=0, value=0, script=self.address.script)
        template_outputs = [TxOutput(0, custom_script), TxOutput(0, self.address.script)]
        fee = calculate_fee(fee_rate, estimate_vsize([template_input], template_outputs))

        utxo = self._select_utxo(fee)
        value = to_satoshis(utxo.value)
        inputs = [TxInput(txid=utxo.txid, vout=utxo.vout, value=value, script=self.address.script)]
        outputs = [TxOutput(0, custom_script), TxOutput(value - fee, self.address.script)]

        tx = ChainTransaction.from_native(sign_p2wpkh_transaction(self.key, inputs, outputs))
        logger.info("Built native transaction %s spending %s:%d, fee %d satoshis at %s DFI/kB", tx.txid, utxo.txid, utxo.vout, fee, fee_rate)
        return tx

    def pool_swap(self, from_token_id: int, from_amount: Decimal, to_token_id: int, max_price: Decimal) -> ChainTransaction:
        script = encode_pool_swap(self.address.script, from_token_id, from_amount, self.address.script, to_token_id, max_price)
        return self.build(script)

    def transfer_domain(self, descriptor: TransferDescriptor) -> ChainTransaction:
        return self.build(descriptor.to_op_return_script())
