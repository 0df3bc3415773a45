import enum
import time
import logging
from typing import Callable

log = logging.getLogger(__name__)


class Poll(enum.Enum):
    """Predicate verdict for wait_until."""
    CONTINUE = "continue"
    DONE = "done"


def wait_until(timeout: float, interval: float, predicate: Callable[[], Poll]) -> bool:
    """
    Runs a predicate at a fixed interval until it reports DONE or time runs out.

    The predicate always runs at least once, even when the timeout is shorter
    than the interval. The deadline is checked before sleeping, so detection
    can lag the deadline by up to one interval.

    :param timeout: Wall-clock budget in seconds, measured from the first call.
    :param interval: Seconds to sleep between calls.
    :param predicate: Callable returning Poll.DONE to stop early.
    :return: True if the predicate reported DONE, False on timeout.
    """
    start_time = time.monotonic()
    while True:
        if predicate() is Poll.DONE:
            return True
        if time.monotonic() - start_time >= timeout:
            log.debug(f"Gave up polling after {time.monotonic() - start_time:.1f} seconds.")
            return False
        time.sleep(interval)
