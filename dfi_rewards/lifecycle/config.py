"""Retry and timeout configuration of the transaction lifecycle."""

from dataclasses import dataclass


@dataclass(slots=True)
class LifecycleConfig:
    """Configuration for broadcasting and confirming transactions.

    Production defaults suit low frequency batch jobs against a public
    Ocean or MetaChain endpoint. The retry interval is constant, there is
    no exponential backoff.

    Example:

    .. code-block:: python

        # Production (default)
        config = LifecycleConfig()

        # No waiting at all, for tests
        config = LifecycleConfig.create_test_config()
    """

    #: Seconds to wait before the first broadcast attempt
    initial_broadcast_delay: float = 0.0

    #: Seconds between broadcast attempts
    broadcast_retry_interval: float = 10.0

    #: Broadcast retries after the first attempt
    max_broadcast_retries: int = 5

    #: Seconds to wait after broadcast before the first inclusion poll
    confirmation_initial_delay: float = 15.0

    #: Seconds between inclusion polls
    confirmation_poll_interval: float = 15.0

    #: Seconds after which the confirmation wait gives up, counted from
    #: the start of the wait including the initial delay
    confirmation_timeout: float = 600.0

    def __post_init__(self):
        assert self.max_broadcast_retries >= 0, f"max_broadcast_retries must not be negative: {self.max_broadcast_retries}"
        assert self.confirmation_poll_interval > 0, f"confirmation_poll_interval must be positive: {self.confirmation_poll_interval}"
        assert self.confirmation_timeout >= 0, f"confirmation_timeout must not be negative: {self.confirmation_timeout}"

    @property
    def max_broadcast_attempts(self) -> int:
        """First attempt plus retries."""
        return 1 + self.max_broadcast_retries

    @classmethod
    def create_test_config(cls) -> "LifecycleConfig":
        """Config with production retry counts but tiny waits."""
        return cls(
            initial_broadcast_delay=0.0,
            broadcast_retry_interval=0.01,
            confirmation_initial_delay=0.0,
            confirmation_poll_interval=0.01,
            confirmation_timeout=0.1,
        )


#: Default production configuration
DEFAULT_LIFECYCLE_CONFIG = LifecycleConfig()
