"""Show a native DeFiChain address' balances and the DUSD-DFI price.

Useful before a reward run to see how much DFI the bot can swap.

Environment variables
---------------------
- ``ADDRESS``: native address to query (required).
- ``NETWORK``: ``mainnet`` (default) or ``testnet``.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    ADDRESS=df1q... poetry run python scripts/rewards/check-dfi-address.py
"""

import logging
import os
from decimal import Decimal

from tabulate import tabulate

from dfi_rewards.network import get_network
from dfi_rewards.ocean.api import fetch_address_tokens, fetch_address_unspent, fetch_block_count, fetch_pool_pair
from dfi_rewards.ocean.session import create_ocean_session
from dfi_rewards.rewards.workflow import DEFAULT_BLOCKS_SINCE_LAST_RUN, calculate_dfi_to_swap
from dfi_rewards.transfer_domain.codec import token_to_contract_address
from dfi_rewards.transfer_domain.encoder import DFI_TOKEN_ID
from dfi_rewards.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    address = os.environ.get("ADDRESS")
    assert address, "ADDRESS environment variable required"

    network = get_network(os.environ.get("NETWORK", "mainnet"))
    session = create_ocean_session(network)

    print(f"Address: {address}")
    print(f"Network: {network.name}")
    print(f"Block height: {fetch_block_count(session):,}")

    tokens = fetch_address_tokens(session, address)
    if tokens:
        rows = [[t.id, t.display_symbol or t.symbol, f"{t.amount:,.8f}", token_to_contract_address(t.id)] for t in tokens]
        print("\nAccount balances:")
        print(tabulate(rows, headers=["Id", "Token", "Amount", "DST20 contract"], tablefmt="simple"))
    else:
        print("\nAccount balances: none")

    utxos = fetch_address_unspent(session, address)
    utxo_total = sum((u.value for u in utxos if u.token_id == DFI_TOKEN_ID), 0)
    print(f"\nUTXOs: {len(utxos)}, {utxo_total:,.8f} DFI")

    pool = fetch_pool_pair(session, network.dusd_dfi_pool)
    dfi_balance = next((t.amount for t in tokens if t.id == DFI_TOKEN_ID), Decimal(0))
    to_swap = calculate_dfi_to_swap(dfi_balance, pool.price_ratio_ab, DEFAULT_BLOCKS_SINCE_LAST_RUN)
    print(f"\n{pool.symbol} price: {pool.price_ratio_ab} DUSD/DFI")
    print(f"DFI to swap for {DEFAULT_BLOCKS_SINCE_LAST_RUN} blocks: {to_swap}")


if __name__ == "__main__":
    main()
