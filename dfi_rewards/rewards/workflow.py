"""DUSD lock reward distribution run.

One run of the reward bot:

1. Swap DFI to DUSD on the native DEX, capped at
   :py:data:`DUSD_PER_BLOCK_CAP` DUSD per block since the last run.
2. Move the bot's whole DUSD balance to its EVM address with a
   TransferDomain transaction.
3. Approve the lock contract to pull the DUSD.
4. ``addRewards`` with the transferred amount.
5. ``distributeRewards`` until ``needDistribute`` turns false.

Every step is broadcast and confirmed before the next one starts. The
native transactions come from a :py:class:`NativeTransactionBuilder`,
which owns the native key and the UTXO selection, by default
:py:class:`dfi_rewards.native.builder.OceanNativeTransactionBuilder`.
EVM nonces are read once at the start of the run and then incremented
locally, the TransferDomain sub-transaction consumes the first one.
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Protocol

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3

from dfi_rewards.lifecycle.clock import SYSTEM_CLOCK, CancelToken, Clock
from dfi_rewards.lifecycle.config import DEFAULT_LIFECYCLE_CONFIG, LifecycleConfig
from dfi_rewards.lifecycle.orchestrator import TransactionLifecycle
from dfi_rewards.lifecycle.transaction import ChainTransaction
from dfi_rewards.network import DefiChainNetwork
from dfi_rewards.ocean.api import fetch_address_token_balance, fetch_pool_pair
from dfi_rewards.ocean.session import OceanSession
from dfi_rewards.rewards.lock import (
    DEFAULT_DISTRIBUTE_BATCH_SIZE,
    DEFAULT_GAS_LIMIT,
    fetch_need_distribute,
    get_dst20_token,
    get_lock_contract,
    prepare_add_rewards,
    prepare_approve,
    prepare_distribute_rewards,
    sign_evm_call,
)
from dfi_rewards.transfer_domain.codec import token_to_contract_address
from dfi_rewards.transfer_domain.encoder import (
    DFI_TOKEN_ID,
    Domain,
    TransferDomainDescriptor,
    TransferRequest,
    build_transfer,
    rescale_to_evm,
)

logger = logging.getLogger(__name__)

#: Most DUSD bought per block since the last run
DUSD_PER_BLOCK_CAP = Decimal(20)

#: Blocks between daily runs at 30 second block time
DEFAULT_BLOCKS_SINCE_LAST_RUN = 2880

#: Price limit of the swap, effectively market
MAX_SWAP_PRICE = Decimal(9999999)

#: Stop calling ``distributeRewards`` after this many rounds
DEFAULT_MAX_DISTRIBUTE_ROUNDS = 20

_SATOSHI = Decimal("0.00000001")


class TimeoutPolicy(enum.Enum):
    """What to do when a step is broadcast but not confirmed in time."""

    #: Raise :py:class:`WorkflowAborted`
    abort = "abort"

    #: Log and carry on with the next step
    proceed = "proceed"


class RewardsStep(enum.Enum):
    swap = "swap"
    transfer_domain = "transfer_domain"
    approve = "approve"
    add_rewards = "add_rewards"
    distribute_rewards = "distribute_rewards"


class WorkflowAborted(Exception):
    """A step timed out under :py:attr:`TimeoutPolicy.abort`."""

    def __init__(self, step: RewardsStep, txid: str):
        super().__init__(f"Step {step.value} transaction {txid} was not confirmed in time, aborting")
        self.step = step
        self.txid = txid


class NativeTransactionBuilder(Protocol):
    """Signs native transactions for the bot's native address.

    Implementations fund the transaction from the address' UTXOs, add the
    custom transaction output and sign it.
    """

    def pool_swap(self, from_token_id: int, from_amount: Decimal, to_token_id: int, max_price: Decimal) -> ChainTransaction:
        """Swap on the native DEX, result credited to the same address."""

    def transfer_domain(self, descriptor: TransferDomainDescriptor) -> ChainTransaction:
        """Wrap :py:meth:`TransferDomainDescriptor.to_op_return_script` into a signed transaction."""


@dataclass(slots=True)
class RewardsConfig:
    """Parameters of one reward run."""

    #: Lock contract on MetaChain
    lock_contract: HexAddress

    #: Bot's native address holding DFI and the swapped DUSD
    native_address: str

    #: Blocks since the previous run, scales the swap cap
    blocks_since_last_run: int = DEFAULT_BLOCKS_SINCE_LAST_RUN

    #: DUSD bought per block at most
    cap_per_block: Decimal = DUSD_PER_BLOCK_CAP

    #: Lockers per ``distributeRewards`` call
    distribute_batch_size: int = DEFAULT_DISTRIBUTE_BATCH_SIZE

    #: Upper bound of ``distributeRewards`` calls per run
    max_distribute_rounds: int = DEFAULT_MAX_DISTRIBUTE_ROUNDS

    #: Gas limit of EVM calls
    gas_limit: int = DEFAULT_GAS_LIMIT

    #: Fee cap in wei, read from the node's gas price when not set
    max_fee_per_gas: int | None = None

    #: Tip in wei
    max_priority_fee_per_gas: int = 0

    #: Reaction to a confirmation timeout
    timeout_policy: TimeoutPolicy = TimeoutPolicy.abort


@dataclass(slots=True)
class StepResult:
    step: RewardsStep
    txid: str
    confirmed: bool


@dataclass(slots=True)
class RewardsRunResult:
    """What a run did."""

    #: DFI sold for DUSD
    dfi_swapped: Decimal = Decimal(0)

    #: DUSD moved to the EVM side and added as rewards
    dusd_rewarded: Decimal = Decimal(0)

    #: ``distributeRewards`` calls made
    distribute_rounds: int = 0

    #: Every submitted transaction, in order
    steps: list[StepResult] = field(default_factory=list)

    @property
    def all_confirmed(self) -> bool:
        return all(s.confirmed for s in self.steps)


def calculate_dfi_to_swap(
    dfi_balance: Decimal,
    dusd_per_dfi: Decimal,
    blocks: int,
    cap_per_block: Decimal = DUSD_PER_BLOCK_CAP,
) -> Decimal:
    """How much DFI to sell this run.

    ``min(balance, blocks * cap_per_block / price)``, rounded down to
    whole satoshis.

    :param dusd_per_dfi:
        Pool price, DUSD per DFI.
    """
    assert dusd_per_dfi > 0, f"Price must be positive, got {dusd_per_dfi}"
    assert blocks >= 0, f"Block count must not be negative, got {blocks}"
    dfi_from_cap = Decimal(blocks) * cap_per_block / dusd_per_dfi
    return min(dfi_balance, dfi_from_cap).quantize(_SATOSHI, rounding=ROUND_DOWN)


def fetch_evm_nonce(web3: Web3, address: HexAddress | str) -> int:
    return web3.eth.get_transaction_count(address)


class DUSDLockRewardsWorkflow:
    """Run the reward distribution once.

    Example::

        workflow = DUSDLockRewardsWorkflow.create(
            network=TESTNET,
            session=create_ocean_session(TESTNET),
            web3=Web3(HTTPProvider(TESTNET.evm_rpc_url)),
            account=Account.from_key(private_key),
            native_builder=builder,
            config=RewardsConfig(lock_contract=lock_address, native_address=native_address),
        )
        result = workflow.run()
    """

    def __init__(
        self,
        network: DefiChainNetwork,
        session: OceanSession,
        web3: Web3,
        account: LocalAccount,
        native_builder: NativeTransactionBuilder,
        config: RewardsConfig,
        native_lifecycle: TransactionLifecycle,
        evm_lifecycle: TransactionLifecycle,
        cancel: CancelToken | None = None,
    ):
        self.network = network
        self.session = session
        self.web3 = web3
        self.account = account
        self.native_builder = native_builder
        self.config = config
        self.native_lifecycle = native_lifecycle
        self.evm_lifecycle = evm_lifecycle
        self.cancel = cancel
        self.lock = get_lock_contract(web3, config.lock_contract)
        self.dusd = get_dst20_token(web3, token_to_contract_address(network.dusd_token_id))
        self.nonce: int | None = None
        self.max_fee_per_gas: int | None = config.max_fee_per_gas

    @classmethod
    def create(
        cls,
        network: DefiChainNetwork,
        session: OceanSession,
        web3: Web3,
        account: LocalAccount,
        native_builder: NativeTransactionBuilder,
        config: RewardsConfig,
        lifecycle_config: LifecycleConfig = DEFAULT_LIFECYCLE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
        cancel: CancelToken | None = None,
    ) -> "DUSDLockRewardsWorkflow":
        """Create with Ocean and MetaChain lifecycles sharing one config and clock."""
        return cls(
            network=network,
            session=session,
            web3=web3,
            account=account,
            native_builder=native_builder,
            config=config,
            native_lifecycle=TransactionLifecycle.for_ocean(session, lifecycle_config, clock),
            evm_lifecycle=TransactionLifecycle.for_evm(web3, lifecycle_config, clock),
            cancel=cancel,
        )

    def _submit(self, step: RewardsStep, lifecycle: TransactionLifecycle, tx: ChainTransaction, result: RewardsRunResult) -> bool:
        logger.info("Step %s: submitting %s", step.value, tx.txid)
        confirmed = lifecycle.submit_and_confirm(tx, cancel=self.cancel)
        result.steps.append(StepResult(step=step, txid=tx.txid, confirmed=confirmed))

        if not confirmed:
            if self.config.timeout_policy == TimeoutPolicy.abort:
                raise WorkflowAborted(step, tx.txid)
            logger.warning("Step %s: %s not confirmed in time, proceeding", step.value, tx.txid)
            return False

        assert_success = getattr(lifecycle.endpoint, "assert_transaction_success", None)
        if assert_success is not None:
            assert_success(tx.txid)
        return True

    def _next_nonce(self) -> int:
        nonce = self.nonce
        self.nonce += 1
        return nonce

    def _sign(self, fn) -> ChainTransaction:
        return sign_evm_call(
            self.account,
            fn,
            nonce=self._next_nonce(),
            chain_id=self.network.evm_chain_id,
            gas_limit=self.config.gas_limit,
            max_fee_per_gas=self.max_fee_per_gas,
            max_priority_fee_per_gas=self.config.max_priority_fee_per_gas,
        )

    def swap(self, result: RewardsRunResult):
        """Sell DFI for DUSD up to the per block cap."""
        pool = fetch_pool_pair(self.session, self.network.dusd_dfi_pool)
        dfi_balance = fetch_address_token_balance(self.session, self.config.native_address, DFI_TOKEN_ID)
        dfi_to_swap = calculate_dfi_to_swap(
            dfi_balance,
            pool.price_ratio_ab,
            self.config.blocks_since_last_run,
            self.config.cap_per_block,
        )
        logger.info(
            "DFI balance %s, price %s DUSD/DFI, %d blocks since last run, swapping %s DFI",
            dfi_balance,
            pool.price_ratio_ab,
            self.config.blocks_since_last_run,
            dfi_to_swap,
        )
        if dfi_to_swap <= 0:
            logger.info("Nothing to swap")
            return

        tx = self.native_builder.pool_swap(DFI_TOKEN_ID, dfi_to_swap, self.network.dusd_token_id, MAX_SWAP_PRICE)
        self._submit(RewardsStep.swap, self.native_lifecycle, tx, result)
        result.dfi_swapped = dfi_to_swap

    def transfer_to_evm(self, result: RewardsRunResult) -> Decimal:
        """Move all DUSD of the native address to the EVM address.

        :return:
            DUSD amount transferred, zero if there was none.
        """
        amount = fetch_address_token_balance(self.session, self.config.native_address, self.network.dusd_token_id)
        if amount <= 0:
            logger.info("No DUSD on %s, nothing to transfer", self.config.native_address)
            return Decimal(0)

        request = TransferRequest(
            source=Domain.native,
            destination=Domain.evm,
            token_id=self.network.dusd_token_id,
            amount=amount,
            source_address=self.config.native_address,
            destination_address=self.account.address,
            chain_id=self.network.evm_chain_id,
            nonce=self._next_nonce(),
        )
        descriptor = build_transfer(request, self.account, self.network)
        tx = self.native_builder.transfer_domain(descriptor)
        self._submit(RewardsStep.transfer_domain, self.native_lifecycle, tx, result)
        return amount

    def add_rewards(self, amount: Decimal, result: RewardsRunResult):
        """Approve and add ``amount`` DUSD to the lock contract."""
        raw_amount = rescale_to_evm(amount)
        approve = self._sign(prepare_approve(self.dusd, self.lock.address, raw_amount))
        self._submit(RewardsStep.approve, self.evm_lifecycle, approve, result)

        add = self._sign(prepare_add_rewards(self.lock, raw_amount))
        self._submit(RewardsStep.add_rewards, self.evm_lifecycle, add, result)
        result.dusd_rewarded = amount

    def distribute(self, result: RewardsRunResult):
        """Call ``distributeRewards`` while the contract asks for it."""
        while result.distribute_rounds < self.config.max_distribute_rounds:
            if not fetch_need_distribute(self.lock):
                logger.info("Distribution complete after %d rounds", result.distribute_rounds)
                return
            tx = self._sign(prepare_distribute_rewards(self.lock, self.config.distribute_batch_size))
            result.distribute_rounds += 1
            if not self._submit(RewardsStep.distribute_rewards, self.evm_lifecycle, tx, result):
                # Contract state is unknown until the call lands
                return
        logger.warning("Stopped after %d distribute rounds, rewards still pending", result.distribute_rounds)

    def run(self) -> RewardsRunResult:
        """Swap, transfer, add and distribute.

        :raise WorkflowAborted:
            A step timed out under :py:attr:`TimeoutPolicy.abort`.
        :raise BroadcastExhausted:
            A step could not be broadcast.
        :raise EvmTransactionReverted:
            An EVM step was mined but reverted.
        """
        result = RewardsRunResult()
        self.nonce = fetch_evm_nonce(self.web3, self.account.address)
        if self.max_fee_per_gas is None:
            self.max_fee_per_gas = self.web3.eth.gas_price * 2

        logger.info(
            "Starting reward run on %s, native %s, EVM %s nonce %d, lock %s",
            self.network.name,
            self.config.native_address,
            self.account.address,
            self.nonce,
            self.config.lock_contract,
        )

        self.swap(result)

        amount = self.transfer_to_evm(result)
        if amount > 0:
            self.add_rewards(amount, result)

        self.distribute(result)

        logger.info(
            "Reward run done: swapped %s DFI, rewarded %s DUSD, %d distribute rounds, %d transactions",
            result.dfi_swapped,
            result.dusd_rewarded,
            result.distribute_rounds,
            len(result.steps),
        )
        return result
