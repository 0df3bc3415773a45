import time
import logging
import requests
from typing import TYPE_CHECKING, Optional
from unicornctl import settings
from unicornctl.control.poller import Poll, wait_until

if TYPE_CHECKING:
    from unicornctl.config import ControllerConfig

log = logging.getLogger(__name__)

PASSING_STATUS = range(100, 400)


class HealthChecker:
    """
    Polls an HTTP endpoint until it answers with an acceptable status.

    A check passes as soon as one attempt gets a 1xx/2xx/3xx response (and,
    if content is set, a body containing it). Timeouts, connection errors
    and bad statuses on a single attempt are retried until the overall
    timeout runs out.
    """

    def __init__(self, url: str, content: Optional[str] = None, attempt_timeout: float = 5,
                 timeout: float = 30, session: Optional[requests.Session] = None) -> None:
        """
        :param url: The health check URL.
        :param content: Optional substring that must occur in the response body.
        :param attempt_timeout: Timeout for a single HTTP request.
        :param timeout: Overall time budget for the check.
        :param session: Optional requests session (defaults to a new one).
        """
        self.url = url
        self.content = content
        self.attempt_timeout = attempt_timeout
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: "ControllerConfig") -> Optional["HealthChecker"]:
        """Builds a checker from the controller config, or None if no URL is configured."""
        if not config.check_url:
            return None
        return cls(
            url=config.check_url,
            content=config.check_content,
            attempt_timeout=config.check_timeout,
            timeout=config.timeout,
        )

    def attempt(self) -> bool:
        """Runs a single health check request and classifies the result."""
        try:
            response = self.session.get(self.url, timeout=self.attempt_timeout, allow_redirects=False)
        except requests.exceptions.Timeout:
            log.info(f"Health check timed out after {self.attempt_timeout} seconds. Retrying...")
            return False
        except requests.exceptions.RequestException as e:
            log.info(f"Health check request failed: {e}. Retrying...")
            return False

        if response.status_code not in PASSING_STATUS:
            log.info(f"Health check failed with status {response.status_code}. Retrying...")
            return False

        log.info(f"Health check succeeded with code: {response.status_code}")
        if self.content is None:
            return True
        if self.content in response.text:
            log.info(f"Content check succeeded, found content in response body: {self.content}")
            return True

        log.error(f"Could not find content in response body: {self.content}. Retrying.")
        return False

    def check(self) -> bool:
        """
        Runs attempts until one passes or the overall timeout elapses.

        :return: True if any attempt passed, False otherwise.
        """
        log.info(f"Checking service health with URL: {self.url}")
        start_time = time.monotonic()
        passed = wait_until(
            self.timeout,
            settings.POLL_INTERVAL,
            lambda: Poll.DONE if self.attempt() else Poll.CONTINUE,
        )
        if not passed:
            log.error(f"Health check has been failing for {time.monotonic() - start_time:.0f} seconds, giving up now!")
        return passed
