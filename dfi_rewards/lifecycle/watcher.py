"""Wait until a broadcast transaction is included in a block."""

import enum
import logging

import requests

from dfi_rewards.lifecycle.clock import SYSTEM_CLOCK, CancelToken, Clock
from dfi_rewards.lifecycle.config import DEFAULT_LIFECYCLE_CONFIG, LifecycleConfig
from dfi_rewards.lifecycle.endpoint import TransactionEndpoint
from dfi_rewards.lifecycle.errors import EndpointError

logger = logging.getLogger(__name__)


class ConfirmationStatus(enum.Enum):
    """Outcome of a single poll or of the whole wait."""

    #: Not found yet, or lookup failed
    pending = "pending"

    #: Included in a block
    confirmed = "confirmed"

    #: Gave up at the deadline
    timed_out = "timed_out"


class ConfirmationWatcher:
    """Poll an endpoint until a transaction shows up or the deadline passes.

    The first poll happens after ``confirmation_initial_delay``, then every
    ``confirmation_poll_interval``. The last sleep is shortened so the final
    poll happens exactly at ``confirmation_timeout``, counted from the start
    of the wait, and nothing is polled after it.

    Lookup failures do not abort the wait. A flaky indexer looks the same
    as a transaction that is not mined yet.
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

    def poll(self, txid: str) -> ConfirmationStatus:
        """Check inclusion once."""
        try:
            included = self.endpoint.is_transaction_included(txid)
        except (EndpointError, requests.RequestException) as e:
            logger.debug("Looking up %s failed, treating as pending: %s", txid, e)
            return ConfirmationStatus.pending
        return ConfirmationStatus.confirmed if included else ConfirmationStatus.pending

    def wait_for_confirmation(self, txid: str, cancel: CancelToken | None = None) -> ConfirmationStatus:
        """Block until the transaction is included or the wait times out.

        :return:
            :py:attr:`ConfirmationStatus.confirmed` or
            :py:attr:`ConfirmationStatus.timed_out`.
        :raise OperationCancelled:
            ``cancel`` fired.
        """
        timeout = self.config.confirmation_timeout
        started_at = self.clock.monotonic()
        # Always at least one poll, the last one lands on the ceiling even when the timeout is zero
        self.clock.sleep(min(self.config.confirmation_initial_delay, timeout), cancel)

        attempt = 0
        while True:
            if cancel is not None:
                cancel.check()

            attempt += 1
            status = self.poll(txid)
            elapsed = self.clock.monotonic() - started_at

            if status == ConfirmationStatus.confirmed:
                logger.info("Transaction %s confirmed after %d polls, %.1f seconds", txid, attempt, elapsed)
                return status

            remaining = timeout - elapsed
            if remaining <= 0:
                logger.warning("Transaction %s not confirmed after %d polls, %.1f seconds, giving up", txid, attempt, elapsed)
                return ConfirmationStatus.timed_out

            log_level = logging.INFO if attempt == 1 else logging.DEBUG
            logger.log(log_level, "Waiting for %s, poll %d, elapsed %.1f seconds", txid, attempt, elapsed)
            self.clock.sleep(min(self.config.confirmation_poll_interval, remaining), cancel)
