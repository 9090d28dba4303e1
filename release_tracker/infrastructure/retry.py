"""
Retry logic for provider calls.

Failures are classified by HTTP status or network error code; only transient
ones are retried, with an exponential backoff that starts from a base delay
chosen by the classification.
"""

import asyncio
import dataclasses
import errno
import logging
import socket
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from ..application.domain import RetryPolicy

T = TypeVar("T")

# --- Constants for Retry Logic ---
MAX_RETRIES = 2
MAX_DELAY_SECONDS = 120.0

RATE_LIMIT_DELAY = 60.0
SERVER_ERROR_DELAYS = {500: 5.0, 502: 5.0, 503: 10.0, 504: 5.0}
DEFAULT_SERVER_ERROR_DELAY = 5.0
TIMEOUT_DELAY = 3.0
NETWORK_DELAY = 3.0

TIMEOUT_CODES = frozenset({"ETIMEDOUT", "ESOCKETTIMEDOUT"})
NETWORK_CODES = frozenset({
    "ECONNRESET",
    "ECONNREFUSED",
    "ENOTFOUND",
    "EAI_AGAIN",
    "EPIPE",
    "EHOSTUNREACH",
    "ENETUNREACH",
})


@dataclasses.dataclass(frozen=True)
class ErrorClassification:
    """How a failure should be handled by the retry policy."""

    retryable: bool
    kind: str
    base_delay: float
    message: str


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def _code_of(error: BaseException) -> Optional[str]:
    if isinstance(error, socket.gaierror):
        if error.errno == getattr(socket, "EAI_AGAIN", None):
            return "EAI_AGAIN"
        return "ENOTFOUND"
    if isinstance(error, OSError) and error.errno is not None:
        return errno.errorcode.get(error.errno)
    code = getattr(error, "code", None)
    return code if isinstance(code, str) else None


def classify_error(error: BaseException) -> ErrorClassification:
    """Maps an exception to its retry classification."""

    status = _status_of(error)
    code = _code_of(error)
    detail = str(error) or type(error).__name__

    if status == 429:
        return ErrorClassification(
            True, "rate_limit", RATE_LIMIT_DELAY, f"Rate limited: {detail}"
        )

    if status is not None and 500 <= status < 600:
        return ErrorClassification(
            True,
            "server_error",
            SERVER_ERROR_DELAYS.get(status, DEFAULT_SERVER_ERROR_DELAY),
            f"Server error ({status}): {detail}",
        )

    if status in (401, 403):
        return ErrorClassification(
            False, "auth_error", 0.0, f"Authentication error ({status}): {detail}"
        )

    if status is not None and 400 <= status < 500:
        return ErrorClassification(
            False, "client_error", 0.0, f"Client error ({status}): {detail}"
        )

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)) \
            or code in TIMEOUT_CODES:
        return ErrorClassification(True, "timeout", TIMEOUT_DELAY, f"Timeout: {detail}")

    if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError)) \
            or code in NETWORK_CODES:
        return ErrorClassification(
            True,
            "network",
            NETWORK_DELAY,
            f"Network error ({code or type(error).__name__}): {detail}",
        )

    return ErrorClassification(False, "unknown", 0.0, f"Unknown error: {detail}")


class ClassifiedRetryPolicy(RetryPolicy):
    """A retry policy that delegates backoff to tenacity."""

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        max_delay: float = MAX_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the policy; `sleep` is injectable for tests."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.max_retries = max_retries
        self.max_delay = max_delay
        self._sleep = sleep

    def is_retryable(self, error: BaseException) -> bool:
        return classify_error(error).retryable

    def backoff(self, error: BaseException, attempt_index: int) -> float:
        """Delay before the retry that follows the given zero-based attempt."""
        base_delay = classify_error(error).base_delay
        return min(base_delay * 2 ** attempt_index, self.max_delay)

    def _wait(self, retry_state) -> float:
        return self.backoff(
            retry_state.outcome.exception(), retry_state.attempt_number - 1
        )

    def _before_sleep(self, on_retry):
        def _log_and_notify(retry_state):
            exception = retry_state.outcome.exception()
            classification = classify_error(exception)
            self.logger.warning(
                f"Attempt {retry_state.attempt_number} failed: "
                f"{classification.message}. Retrying in "
                f"{retry_state.next_action.sleep:.2f}s (attempt "
                f"{retry_state.attempt_number + 1}/{self.max_retries + 1})..."
            )
            if on_retry is not None:
                on_retry(retry_state.attempt_number, exception)

        return _log_and_notify

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        on_fail: Optional[Callable[[BaseException], None]] = None,
    ) -> T:
        """
        Runs an async operation, retrying transient failures.

        Args:
            operation: A zero-argument callable returning an awaitable, such
                as a coroutine function or a lambda wrapping a call to one.
            on_retry: Called with (attempt number, error) before each retry.
            on_fail: Called with the last error once retries are exhausted.

        Returns:
            The operation's result.

        Raises:
            The last error, unchanged, when it is permanent or when retries
            are exhausted.
        """

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._before_sleep(on_retry),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await operation()
        except Exception as error:
            classification = classify_error(error)
            if not classification.retryable:
                self.logger.error(
                    f"{classification.message}. Error is not retryable, giving up."
                )
            else:
                self.logger.error(
                    f"{classification.message}. Max retries ({self.max_retries}) "
                    f"exhausted, giving up."
                )
                if on_fail is not None:
                    on_fail(error)
            raise
