"""urllib3 retry policy that tells what it is doing."""

import logging

from urllib3 import Retry

default_logger = logging.getLogger(__name__)


class LoggingRetry(Retry):
    """Log every HTTP retry at warning level.

    Plain :py:class:`urllib3.Retry` retries silently, which makes a slow
    Ocean node look like a hung script.
    """

    def __init__(self, *args, logger: logging.Logger | None = None, **kwargs):
        self.logger = logger or default_logger
        super().__init__(*args, **kwargs)

    def new(self, **kw) -> "LoggingRetry":
        retry = super().new(**kw)
        retry.logger = self.logger
        return retry

    def increment(self, method=None, url=None, response=None, error=None, _pool=None, _stacktrace=None):
        status = response.status if response is not None else None
        self.logger.warning(
            "Retrying %s %s, status %s, error %s, %s retries left",
            method,
            url,
            status,
            error,
            self.total,
        )
        return super().increment(
            method=method,
            url=url,
            response=response,
            error=error,
            _pool=_pool,
            _stacktrace=_stacktrace,
        )
