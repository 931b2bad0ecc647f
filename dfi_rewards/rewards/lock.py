"""DUSD lock contract calls.

The lock contract on MetaChain pays out DUSD rewards to lockers.
Rewards are pulled in with ``addRewards`` after the contract has been
approved to spend the bot's DUSD, and spread over the lockers in batches
with ``distributeRewards`` for as long as ``needDistribute`` says so.

The ``prepare_*`` functions return unsigned bound calls,
:py:func:`sign_evm_call` turns one into a
:py:class:`~dfi_rewards.lifecycle.transaction.ChainTransaction`. Nothing
here sends anything.
"""

import logging

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from dfi_rewards.abi import get_deployed_contract
from dfi_rewards.lifecycle.transaction import ChainTransaction

logger = logging.getLogger(__name__)

#: ABI file of the lock contract
DUSD_LOCK_ABI = "DUSDLock.json"

#: Gas limit of lock contract calls
DEFAULT_GAS_LIMIT = 10_000_000

#: Lockers processed per ``distributeRewards`` call
DEFAULT_DISTRIBUTE_BATCH_SIZE = 10_000


def get_lock_contract(web3: Web3, address: HexAddress | str) -> Contract:
    return get_deployed_contract(web3, DUSD_LOCK_ABI, address)


def get_dst20_token(web3: Web3, address: HexAddress | str) -> Contract:
    """DST20 tokens implement plain ERC-20."""
    return get_deployed_contract(web3, "ERC20.json", address)


def prepare_approve(token: Contract, spender: HexAddress | str, amount: int) -> ContractFunction:
    """Allow the lock contract to pull ``amount`` raw token units."""
    assert amount >= 0, f"Approve amount must not be negative: {amount}"
    return token.functions.approve(Web3.to_checksum_address(spender), amount)


def prepare_add_rewards(lock: Contract, amount: int) -> ContractFunction:
    """Move ``amount`` DUSD wei from the caller into the reward pool."""
    assert amount > 0, f"Reward amount must be positive: {amount}"
    return lock.functions.addRewards(amount)


def prepare_distribute_rewards(lock: Contract, batch_size: int = DEFAULT_DISTRIBUTE_BATCH_SIZE) -> ContractFunction:
    """Credit pending rewards to the next ``batch_size`` lockers."""
    assert batch_size > 0, f"Batch size must be positive: {batch_size}"
    return lock.functions.distributeRewards(batch_size)


def fetch_need_distribute(lock: Contract) -> bool:
    """Does the lock contract have undistributed rewards."""
    return lock.functions.needDistribute().call()


def sign_evm_call(
    account: LocalAccount,
    fn: ContractFunction,
    nonce: int,
    chain_id: int,
    gas_limit: int = DEFAULT_GAS_LIMIT,
    max_fee_per_gas: int = 0,
    max_priority_fee_per_gas: int = 0,
) -> ChainTransaction:
    """Sign a bound contract call as an EIP-1559 transaction.

    All transaction fields are given explicitly, so building the
    transaction does not touch the RPC.

    :param account:
        Signer, also the ``from`` address.
    :param fn:
        Bound call from one of the ``prepare_*`` functions.
    :param nonce:
        Nonce to use, managed by the caller.
    :param chain_id:
        EVM chain id.
    :param gas_limit:
        Gas limit.
    :param max_fee_per_gas:
        Fee cap in wei.
    :param max_priority_fee_per_gas:
        Tip in wei.
    :return:
        Signed transaction ready for
        :py:meth:`~dfi_rewards.lifecycle.orchestrator.TransactionLifecycle.submit_and_confirm`.
    """
    tx_params = {
        "from": account.address,
        "chainId": chain_id,
        "nonce": nonce,
        "gas": gas_limit,
        "maxFeePerGas": max_fee_per_gas,
        "maxPriorityFeePerGas": max_priority_fee_per_gas,
        "value": 0,
    }
    tx = fn.build_transaction(tx_params)
    signed = account.sign_transaction(tx)
    chain_tx = ChainTransaction.from_evm(bytes(signed.raw_transaction))
    logger.debug("Signed %s nonce %d as %s", fn.fn_name, nonce, chain_tx.txid)
    return chain_tx
