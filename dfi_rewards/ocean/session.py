"""HTTP session management for the Ocean REST API.

Ocean is the public indexer and transaction relay for the native
DeFiChain ledger. All endpoints live under
``{api_url}/{version}/{network}/``.

The :py:class:`OceanSession` carries the API URL and network so that
downstream functions only take the session and their own arguments.
"""

import logging

from requests import Session
from requests_ratelimiter import LimiterAdapter

from dfi_rewards.logging_retry import LoggingRetry
from dfi_rewards.network import MAINNET, DefiChainNetwork

logger = logging.getLogger(__name__)

#: Ocean API version path segment
OCEAN_API_VERSION = "v0"

#: Default number of retries for API requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Default rate limit for Ocean API requests per second.
#:
#: Public Ocean nodes throttle aggressive clients with 429.
DEFAULT_REQUESTS_PER_SECOND = 5


class OceanSession(Session):
    """A :py:class:`requests.Session` subclass that carries the Ocean API location.

    Use :py:func:`create_ocean_session` to create instances.
    """

    #: Ocean base URL, e.g. ``https://ocean.mydefichain.com``
    api_url: str

    #: Network path segment, ``mainnet`` or ``testnet``
    network: str

    #: API version path segment
    version: str

    def __init__(self, api_url: str, network: str, version: str = OCEAN_API_VERSION):
        super().__init__()
        self.api_url = api_url.rstrip("/")
        self.network = network
        self.version = version

    def endpoint_url(self, path: str) -> str:
        """Full URL of an Ocean endpoint.

        :param path:
            Endpoint path, e.g. ``rawtx/send``.
        """
        return f"{self.api_url}/{self.version}/{self.network}/{path.lstrip('/')}"

    def __repr__(self) -> str:
        return f"<OceanSession api_url={self.api_url!r} network={self.network!r}>"


def create_ocean_session(
    network: DefiChainNetwork = MAINNET,
    api_url: str | None = None,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: int = DEFAULT_REQUESTS_PER_SECOND,
    pool_maxsize: int = 8,
) -> OceanSession:
    """Create a :py:class:`OceanSession` with rate limiting and HTTP level retries.

    HTTP retries only cover transport failures and 429/5xx responses of
    read requests. Transaction submission is POST and is not retried here,
    :py:class:`~dfi_rewards.lifecycle.broadcaster.TransactionBroadcaster`
    owns that policy.

    Example::

        from dfi_rewards.network import TESTNET
        from dfi_rewards.ocean.session import create_ocean_session

        session = create_ocean_session(TESTNET)

    :param network:
        Network whose Ocean deployment to talk to.
    :param api_url:
        Override the network's Ocean URL, e.g. for a self hosted node.
    :param retries:
        Maximum number of retry attempts for failed requests
    :param backoff_factor:
        Backoff factor for exponential retry delays
    :param requests_per_second:
        Maximum requests per second
    :param pool_maxsize:
        Maximum number of connections to keep in the connection pool.
    :return:
        Configured :py:class:`OceanSession`
    """
    session = OceanSession(api_url=api_url or network.ocean_url, network=network.name)

    retry_policy = LoggingRetry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        logger=logger,
    )

    adapter = LimiterAdapter(
        per_second=requests_per_second,
        max_retries=retry_policy,
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    logger.debug("Created %s", session)
    return session
