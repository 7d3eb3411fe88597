"""Fixed-delay retry for the enhancer's and exporter's HTTP collaborators."""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ServiceRequestError(Exception):
    """Raised when an HTTP request fails permanently (4xx) or retries are exhausted."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        attempts: int = 0,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)


class RetryDeadlineExceeded(ServiceRequestError):
    """Raised when the caller's deadline leaves no time for another attempt."""


# Lower bound for a single attempt's timeout when it is capped by a deadline.
MIN_ATTEMPT_TIMEOUT = 1.0


def _is_transient_status(status_code: int) -> bool:
    return status_code >= 500


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    retries: int,
    retry_delay: float,
    service: str = "service",
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger = logger,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request, retrying connection errors, timeouts and 5xx responses.

    retries is the total number of attempts; retry_delay seconds pass between
    attempts. A 4xx response raises ServiceRequestError at once. Other non-2xx
    responses (1xx/3xx) are treated as permanent as well.

    With a deadline (a clock() reading), each attempt's timeout is capped by the
    time remaining and no retry starts once its delay would reach the deadline;
    RetryDeadlineExceeded is raised instead. The first attempt always runs.
    """
    if retries < 1:
        raise ValueError("retries must be at least 1")

    last_error = ""
    last_status: int | None = None
    for attempt in range(1, retries + 1):
        attempt_kwargs = kwargs
        if deadline is not None:
            remaining = max(deadline - clock(), MIN_ATTEMPT_TIMEOUT)
            timeout = kwargs.get("timeout")
            if not isinstance(timeout, (int, float)) or timeout > remaining:
                attempt_kwargs = {**kwargs, "timeout": remaining}
        try:
            response = client.request(method, url, **attempt_kwargs)
        except httpx.TransportError as e:
            last_error = f"{type(e).__name__}: {e}"
            last_status = None
            logger.warning(
                "%s request %s %s failed (attempt %s/%s): %s",
                service, method, url, attempt, retries, last_error,
            )
        else:
            if response.is_success:
                if attempt > 1:
                    logger.info("%s request %s %s succeeded on attempt %s", service, method, url, attempt)
                return response
            if not _is_transient_status(response.status_code):
                raise ServiceRequestError(
                    f"{service} returned {response.status_code} for {method} {url}; not retrying.",
                    status_code=response.status_code,
                    attempts=attempt,
                )
            last_error = f"HTTP {response.status_code}"
            last_status = response.status_code
            logger.warning(
                "%s request %s %s returned %s (attempt %s/%s)",
                service, method, url, response.status_code, attempt, retries,
            )
        if attempt < retries:
            if deadline is not None and clock() + retry_delay >= deadline:
                raise RetryDeadlineExceeded(
                    f"{service} request {method} {url} stopped after {attempt} attempt(s), "
                    f"deadline reached: {last_error}",
                    status_code=last_status,
                    attempts=attempt,
                )
            sleep(retry_delay)

    raise ServiceRequestError(
        f"{service} request {method} {url} failed after {retries} attempt(s): {last_error}",
        status_code=last_status,
        attempts=retries,
    )
