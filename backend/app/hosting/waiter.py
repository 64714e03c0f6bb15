import logging
import time
from collections.abc import Callable
from typing import TypeVar

from app.hosting.errors import ResourceStateError, WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_until(
    check: Callable[[], T],
    is_ready: Callable[[T], bool],
    *,
    interval: float,
    timeout: float,
    description: str,
    is_failed: Callable[[T], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Poll ``check`` every ``interval`` seconds until ``is_ready`` holds.

    Returns the last value produced by ``check``. Raises
    :class:`ResourceStateError` as soon as ``is_failed`` holds and
    :class:`WaitTimeoutError` once ``timeout`` seconds have elapsed.
    """
    deadline = clock() + timeout
    attempts = 0
    while True:
        attempts += 1
        value = check()
        if is_ready(value):
            logger.debug("%s ready after %d checks", description, attempts)
            return value
        if is_failed is not None and is_failed(value):
            raise ResourceStateError(f"{description} reached a failed state: {value!r}")
        if clock() + interval > deadline:
            raise WaitTimeoutError(
                f"Timed out after {timeout:.0f}s waiting for {description}"
            )
        sleep(interval)
