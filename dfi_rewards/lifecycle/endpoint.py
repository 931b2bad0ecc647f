"""Submission and lookup endpoints for the transaction lifecycle.

The broadcaster and the watcher only see the two calls of
:py:class:`TransactionEndpoint`. Native transactions go through Ocean,
EVM transactions through the MetaChain JSON-RPC.
"""

import logging
from typing import Protocol

from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception, Web3RPCError

from dfi_rewards.lifecycle.errors import EndpointError, EvmTransactionReverted
from dfi_rewards.lifecycle.transaction import TransactionDomain
from dfi_rewards.ocean.api import fetch_transaction, send_raw_transaction
from dfi_rewards.ocean.session import OceanSession

logger = logging.getLogger(__name__)


class TransactionEndpoint(Protocol):
    """Where transactions are sent and looked up."""

    #: Which transactions this endpoint accepts
    domain: TransactionDomain

    def send_raw_transaction(self, raw_hex: str) -> str:
        """Submit signed bytes.

        :return:
            Transaction id the endpoint reports.
        :raise EndpointError:
            Endpoint rejected the transaction.
        """

    def is_transaction_included(self, txid: str) -> bool:
        """Has the transaction been included in a block.

        :raise EndpointError:
            Lookup failed. Not finding the transaction is not an error.
        """


class OceanEndpoint:
    """Native domain endpoint backed by the Ocean REST API."""

    domain = TransactionDomain.native

    def __init__(self, session: OceanSession):
        self.session = session

    def send_raw_transaction(self, raw_hex: str) -> str:
        return send_raw_transaction(self.session, raw_hex)

    def is_transaction_included(self, txid: str) -> bool:
        return fetch_transaction(self.session, txid) is not None

    def __repr__(self) -> str:
        return f"<OceanEndpoint {self.session.api_url} {self.session.network}>"


class EvmEndpoint:
    """EVM domain endpoint backed by web3.py."""

    domain = TransactionDomain.evm

    def __init__(self, web3: Web3):
        self.web3 = web3

    def send_raw_transaction(self, raw_hex: str) -> str:
        try:
            tx_hash = self.web3.eth.send_raw_transaction(raw_hex)
        except Web3RPCError as e:
            error = (e.rpc_response or {}).get("error") or {}
            if isinstance(error, str):
                error = {"message": error}
            raise EndpointError(int(error.get("code", -1)), error.get("message", str(e))) from e
        return Web3.to_hex(tx_hash)

    def is_transaction_included(self, txid: str) -> bool:
        try:
            self.web3.eth.get_transaction_receipt(txid)
        except TransactionNotFound:
            return False
        except Web3Exception as e:
            raise EndpointError(-1, str(e)) from e
        return True

    def assert_transaction_success(self, txid: str):
        """Check the receipt of an included transaction.

        :raise EvmTransactionReverted:
            Transaction was mined but reverted.
        """
        receipt = self.web3.eth.get_transaction_receipt(txid)
        if receipt["status"] != 1:
            raise EvmTransactionReverted(txid, dict(receipt))
        logger.debug("EVM transaction %s succeeded, gas used %d", txid, receipt["gasUsed"])

    def __repr__(self) -> str:
        return f"<EvmEndpoint {self.web3.provider}>"
