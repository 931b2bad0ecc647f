"""Run one DUSD lock reward distribution.

Swaps DFI to DUSD on the native DEX, moves the DUSD to MetaChain and adds
it to the lock contract rewards, then distributes.

Native transactions are signed with ``PRIVATE_KEY`` by
:py:class:`dfi_rewards.native.builder.OceanNativeTransactionBuilder`, which
needs ``NATIVE_ADDRESS`` to be the P2WPKH address of the same key. Another
builder can be loaded from ``NATIVE_BUILDER``: the factory is called as
``factory(network, session)`` and must return an object with
``pool_swap()`` and ``transfer_domain()``, see
:py:class:`dfi_rewards.rewards.workflow.NativeTransactionBuilder`.

Environment variables
---------------------
- ``PRIVATE_KEY``: EVM private key of the bot (required).
- ``NATIVE_ADDRESS``: bot's native address (required).
- ``NATIVE_BUILDER``: ``module:factory`` of a custom native transaction builder (optional).
- ``LOCK_CONTRACT``: lock contract address on MetaChain (required).
- ``NETWORK``: ``mainnet`` (default) or ``testnet``.
- ``JSON_RPC_URL``: override the network's MetaChain RPC.
- ``BLOCKS_SINCE_LAST_RUN``: scales the swap cap (default: 2880).
- ``DISTRIBUTE_BATCH_SIZE``: lockers per ``distributeRewards`` call (default: 10000).
- ``ON_TIMEOUT``: ``abort`` (default) or ``proceed`` when a step is not confirmed in time.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    NETWORK=testnet \\
    PRIVATE_KEY=0x... \\
    NATIVE_ADDRESS=tf1q... \\
    LOCK_CONTRACT=0x... \\
    poetry run python scripts/rewards/distribute-dusd-lock-rewards.py
"""

import logging
import os
import signal

from eth_account import Account
from tabulate import tabulate
from web3 import HTTPProvider, Web3

from dfi_rewards.lifecycle.clock import CancelToken
from dfi_rewards.native.builder import OceanNativeTransactionBuilder
from dfi_rewards.network import get_network
from dfi_rewards.ocean.session import create_ocean_session
from dfi_rewards.rewards.lock import DEFAULT_DISTRIBUTE_BATCH_SIZE
from dfi_rewards.rewards.workflow import (
    DEFAULT_BLOCKS_SINCE_LAST_RUN,
    DUSDLockRewardsWorkflow,
    RewardsConfig,
    TimeoutPolicy,
)
from dfi_rewards.utils import import_by_path, setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "PRIVATE_KEY environment variable required"

    native_address = os.environ.get("NATIVE_ADDRESS")
    assert native_address, "NATIVE_ADDRESS environment variable required"

    native_builder_path = os.environ.get("NATIVE_BUILDER")

    lock_contract = os.environ.get("LOCK_CONTRACT")
    assert lock_contract and Web3.is_address(lock_contract), f"LOCK_CONTRACT must be an EVM address, got {lock_contract}"

    network_name = os.environ.get("NETWORK", "mainnet").lower()
    assert network_name in ("mainnet", "testnet"), f"NETWORK must be 'mainnet' or 'testnet', got '{network_name}'"
    network = get_network(network_name)

    on_timeout = os.environ.get("ON_TIMEOUT", "abort").lower()
    assert on_timeout in ("abort", "proceed"), f"ON_TIMEOUT must be 'abort' or 'proceed', got '{on_timeout}'"

    blocks_since_last_run = int(os.environ.get("BLOCKS_SINCE_LAST_RUN", DEFAULT_BLOCKS_SINCE_LAST_RUN))
    batch_size = int(os.environ.get("DISTRIBUTE_BATCH_SIZE", DEFAULT_DISTRIBUTE_BATCH_SIZE))

    json_rpc_url = os.environ.get("JSON_RPC_URL", network.evm_rpc_url)

    account = Account.from_key(private_key)
    session = create_ocean_session(network)
    web3 = Web3(HTTPProvider(json_rpc_url))
    assert web3.eth.chain_id == network.evm_chain_id, f"RPC {json_rpc_url} is chain {web3.eth.chain_id}, expected {network.evm_chain_id}"

    if native_builder_path:
        native_builder = import_by_path(native_builder_path)(network, session)
    else:
        native_builder = OceanNativeTransactionBuilder(network, session, private_key, native_address)

    config = RewardsConfig(
        lock_contract=Web3.to_checksum_address(lock_contract),
        native_address=native_address,
        blocks_since_last_run=blocks_since_last_run,
        distribute_batch_size=batch_size,
        timeout_policy=TimeoutPolicy(on_timeout),
    )

    print(f"Network: {network.name}")
    print(f"Ocean: {session.api_url}")
    print(f"MetaChain RPC: {json_rpc_url}")
    print(f"Native address: {native_address}")
    print(f"EVM address: {account.address}")
    print(f"Lock contract: {config.lock_contract}")

    cancel = CancelToken()
    signal.signal(signal.SIGTERM, lambda *args: cancel.cancel())

    workflow = DUSDLockRewardsWorkflow.create(
        network=network,
        session=session,
        web3=web3,
        account=account,
        native_builder=native_builder,
        config=config,
        cancel=cancel,
    )
    result = workflow.run()

    rows = [[s.step.value, s.txid, "yes" if s.confirmed else "no"] for s in result.steps]
    print("\nTransactions:")
    print(tabulate(rows, headers=["Step", "Txid", "Confirmed"], tablefmt="simple"))

    summary = [
        ["DFI swapped", f"{result.dfi_swapped:,.8f}"],
        ["DUSD rewarded", f"{result.dusd_rewarded:,.8f}"],
        ["Distribute rounds", result.distribute_rounds],
    ]
    print("\nSummary:")
    print(tabulate(summary, tablefmt="simple"))


if __name__ == "__main__":
    main()
