"""Broadcast then confirm, as one call."""

import logging

from web3 import Web3

from dfi_rewards.lifecycle.broadcaster import TransactionBroadcaster
from dfi_rewards.lifecycle.clock import SYSTEM_CLOCK, CancelToken, Clock
from dfi_rewards.lifecycle.config import DEFAULT_LIFECYCLE_CONFIG, LifecycleConfig
from dfi_rewards.lifecycle.endpoint import EvmEndpoint, OceanEndpoint, TransactionEndpoint
from dfi_rewards.lifecycle.transaction import ChainTransaction
from dfi_rewards.lifecycle.watcher import ConfirmationStatus, ConfirmationWatcher
from dfi_rewards.ocean.session import OceanSession

logger = logging.getLogger(__name__)


class TransactionLifecycle:
    """Submit a signed transaction and wait for it to be mined.

    Example::

        lifecycle = TransactionLifecycle.for_ocean(session)
        tx = ChainTransaction.from_native(signed_hex)
        if not lifecycle.submit_and_confirm(tx):
            logger.warning("%s not mined in time", tx.txid)

    Broadcast failures propagate as
    :py:class:`~dfi_rewards.lifecycle.broadcaster.BroadcastExhausted`.
    A confirmation timeout is not an error, it is returned as ``False`` and
    the caller decides whether to carry on.
    """

    def __init__(
        self,
        endpoint: TransactionEndpoint,
        config: LifecycleConfig = DEFAULT_LIFECYCLE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.endpoint = endpoint
        self.broadcaster = TransactionBroadcaster(endpoint, config, clock)
        self.watcher = ConfirmationWatcher(endpoint, config, clock)

    @classmethod
    def for_ocean(
        cls,
        session: OceanSession,
        config: LifecycleConfig = DEFAULT_LIFECYCLE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
    ) -> "TransactionLifecycle":
        """Lifecycle for native transactions."""
        return cls(OceanEndpoint(session), config, clock)

    @classmethod
    def for_evm(
        cls,
        web3: Web3,
        config: LifecycleConfig = DEFAULT_LIFECYCLE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
    ) -> "TransactionLifecycle":
        """Lifecycle for MetaChain transactions."""
        return cls(EvmEndpoint(web3), config, clock)

    def submit(self, tx: ChainTransaction, initial_delay: float | None = None, cancel: CancelToken | None = None) -> str:
        """Broadcast only.

        :return:
            Transaction id reported by the endpoint.
        """
        return self.broadcaster.broadcast(tx, initial_delay=initial_delay, cancel=cancel)

    def submit_and_confirm(
        self,
        tx: ChainTransaction,
        initial_delay: float | None = None,
        cancel: CancelToken | None = None,
    ) -> bool:
        """Broadcast and wait for inclusion.

        :param initial_delay:
            Seconds to wait before broadcasting, e.g. to let a previous
            transaction propagate.
        :return:
            ``True`` if confirmed, ``False`` if the confirmation wait timed out.
        :raise BroadcastExhausted:
            The transaction could not be sent.
        :raise OperationCancelled:
            ``cancel`` fired.
        """
        txid = self.submit(tx, initial_delay=initial_delay, cancel=cancel)
        status = self.watcher.wait_for_confirmation(txid, cancel=cancel)
        return status == ConfirmationStatus.confirmed
