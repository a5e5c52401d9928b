"""
Retry policy for establishing directory connections.

Only opening the socket and binding are retried. Searches are never retried by
the sync pipeline: a failed search aborts the run.
"""

import time
import logging
from typing import Any, Callable

from ldap3.core.exceptions import LDAPBindError, LDAPSocketOpenError

logger = logging.getLogger(__name__)

# Failures worth another attempt; everything else propagates on the first try
RETRYABLE_CONNECT_ERRORS = (LDAPSocketOpenError, LDAPBindError)


class MaxRetriesExceeded(Exception):
    """Raised when every connection attempt failed."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_connect(open_and_bind: Callable[[], Any], target: str,
                  attempts: int = 3, wait_seconds: float = 5.0) -> Any:
    """
    Open and bind a directory connection, retrying transient failures.

    Args:
        open_and_bind: Callable performing one full open/StartTLS/bind attempt
        target: Server URL, for log messages
        attempts: Total attempts; values below one still make one attempt
        wait_seconds: Fixed pause between attempts

    Returns:
        Whatever ``open_and_bind`` returned

    Raises:
        MaxRetriesExceeded: If the last attempt also failed with a retryable error
    """
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            result = open_and_bind()
        except RETRYABLE_CONNECT_ERRORS as e:
            if attempt == attempts:
                raise MaxRetriesExceeded(attempts, e) from e
            logger.warning(f"LDAP bind to {target} failed on attempt {attempt}, "
                           f"retrying in {wait_seconds}s due to {type(e).__name__}: {e}")
            time.sleep(wait_seconds)
        else:
            if attempt > 1:
                logger.info(f"Connected to {target} on attempt {attempt}")
            return result
