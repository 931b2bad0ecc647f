"""Broadcast a signed transaction with a bounded retry loop.

Retrying is safe because the transaction bytes never change between
attempts: nodes either accept the same transaction again or reject it as
already known, and neither can cause a double spend.
"""

import logging
from dataclasses import dataclass

from dfi_rewards.lifecycle.clock import SYSTEM_CLOCK, CancelToken, Clock
from dfi_rewards.lifecycle.config import DEFAULT_LIFECYCLE_CONFIG, LifecycleConfig
from dfi_rewards.lifecycle.endpoint import TransactionEndpoint
from dfi_rewards.lifecycle.errors import EndpointError
from dfi_rewards.lifecycle.transaction import ChainTransaction

logger = logging.getLogger(__name__)


class BroadcastExhausted(Exception):
    """All broadcast attempts failed.

    The last endpoint failure is available as :py:attr:`cause` and as
    ``__cause__``.
    """

    def __init__(self, txid: str, attempts: int, cause: Exception):
        super().__init__(f"Could not broadcast {txid} after {attempts} attempts: {cause}")
        self.txid = txid
        self.attempts = attempts
        self.cause = cause


@dataclass(slots=True)
class BroadcastAttempt:
    """Progress of broadcasting one transaction."""

    #: Content derived id of the transaction being sent
    txid: str

    #: Attempts made so far
    attempt: int = 0

    #: Failure of the most recent attempt
    last_error: Exception | None = None

    #: Clock reading at which the next attempt is due
    next_retry_at: float | None = None


def _error_code(e: Exception) -> int:
    if isinstance(e, EndpointError):
        return e.code
    return -1


class TransactionBroadcaster:
    """Send a :py:class:`ChainTransaction` until an endpoint accepts it.

    - Waits ``initial_delay`` before the first attempt
    - Makes ``1 + max_broadcast_retries`` attempts at most
    - Sleeps a constant ``broadcast_retry_interval`` between attempts
    - Re-sends the identical bytes every time
    """

    def __init__(
        self,
        endpoint: TransactionEndpoint,
        config: LifecycleConfig = DEFAULT_LIFECYCLE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.endpoint = endpoint
        self.config = config
        self.clock = clock

    def broadcast(
        self,
        tx: ChainTransaction,
        initial_delay: float | None = None,
        cancel: CancelToken | None = None,
    ) -> str:
        """Broadcast and return the transaction id.

        :param tx:
            Signed transaction.
        :param initial_delay:
            Seconds to wait before the first attempt. Defaults to
            :py:attr:`LifecycleConfig.initial_broadcast_delay`.
        :param cancel:
            Abort waiting between attempts.
        :return:
            Transaction id as reported by the endpoint.
        :raise BroadcastExhausted:
            Every attempt failed.
        :raise OperationCancelled:
            ``cancel`` fired.
        """
        assert tx.domain == self.endpoint.domain, f"Cannot send {tx.domain.value} transaction {tx.txid} to {self.endpoint}"

        if initial_delay is None:
            initial_delay = self.config.initial_broadcast_delay

        max_attempts = self.config.max_broadcast_attempts
        interval = self.config.broadcast_retry_interval
        progress = BroadcastAttempt(txid=tx.txid)

        logger.info("Broadcasting %s transaction %s, %d bytes, via %s", tx.domain.value, tx.txid, len(tx.raw), self.endpoint)
        self.clock.sleep(initial_delay, cancel)

        while True:
            if cancel is not None:
                cancel.check()

            progress.attempt += 1
            try:
                txid = self.endpoint.send_raw_transaction(tx.hex)
            except Exception as e:
                progress.last_error = e
                if progress.attempt >= max_attempts:
                    logger.error(
                        "Giving up broadcasting %s after %d attempts, last error %d: %s",
                        tx.txid,
                        progress.attempt,
                        _error_code(e),
                        e,
                    )
                    raise BroadcastExhausted(tx.txid, progress.attempt, e) from e

                progress.next_retry_at = self.clock.monotonic() + interval
                logger.warning(
                    "Broadcasting %s failed, attempt %d/%d, error %d: %s, retrying in %.1f seconds",
                    tx.txid,
                    progress.attempt,
                    max_attempts,
                    _error_code(e),
                    e,
                    interval,
                )
                self.clock.sleep(interval, cancel)
                continue

            if txid != tx.txid:
                logger.warning("Endpoint reported txid %s for transaction we computed as %s", txid, tx.txid)

            logger.info("Broadcast %s accepted on attempt %d", txid, progress.attempt)
            return txid
