"""Retry with bounded exponential backoff for nonce conflicts."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar, Union

from .contracts import RetryContext, RetryPolicy
from .errors import ErrorKind, LedgerError, RetriesExhausted
from .utils import retry as retry_utils

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureClass(str, Enum):
    CONFLICT = "conflict"
    FATAL = "fatal"


Classifier = Callable[[BaseException], Union[FailureClass, str]]
Sleep = Callable[[float], Awaitable[None]]


def classify_error(error: BaseException) -> FailureClass:
    """Treat only ledger conflicts as retryable."""
    if isinstance(error, LedgerError) and error.kind == ErrorKind.CONFLICT:
        return FailureClass.CONFLICT
    return FailureClass.FATAL


async def retry(
    action: Callable[[], Awaitable[T]],
    classify: Classifier = classify_error,
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Optional[Sleep] = None,
    on_retry: Optional[Callable[[RetryContext], None]] = None,
) -> T:
    """Invoke ``action`` until it succeeds, fails fatally, or attempts run out.

    ``action`` must rebuild any ordering-sensitive input on every call;
    nothing is cached between attempts here.

    Args:
        action: Zero-argument coroutine function to invoke.
        classify: Maps a failure to ``"conflict"`` (retry) or ``"fatal"``.
        policy: Backoff settings; defaults to 5 attempts starting at 2s.
        sleep: Optional awaitable taking seconds, used instead of
            :func:`txflow.utils.retry.schedule_retry`.
        on_retry: Called with the context before each backoff sleep.

    Raises:
        RetriesExhausted: The last allowed attempt failed with a conflict.
    """
    policy = policy or RetryPolicy()
    context = RetryContext(
        current_delay_ms=retry_utils.compute_backoff(0, policy),
        max_retries=policy.max_retries,
    )

    while True:
        try:
            return await action()
        except Exception as e:
            context.last_error = e
            if classify(e) != FailureClass.CONFLICT:
                raise

            attempts = context.attempt + 1
            if not context.attempts_remaining:
                logger.error(f"Conflict persisted after {attempts} attempts: {e}")
                raise RetriesExhausted(attempts, e) from e

            delay = context.current_delay_ms
            context.delays_ms.append(delay)
            logger.warning(
                f"Conflict on attempt {attempts}/{policy.max_retries}: {e}. "
                f"Retrying in {delay:.0f}ms"
            )
            if on_retry is not None:
                on_retry(context)

            if sleep is None:
                await retry_utils.schedule_retry(delay)
            else:
                await sleep(delay / 1000)

            context.attempt += 1
            context.current_delay_ms = retry_utils.compute_backoff(context.attempt, policy)


class RetryController:
    """Reusable :func:`retry` bound to a policy, classifier and sleep."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        classify: Classifier = classify_error,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.classify = classify
        self._sleep = sleep

    async def run(
        self,
        action: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[RetryContext], None]] = None,
    ) -> T:
        return await retry(
            action,
            self.classify,
            self.policy,
            sleep=self._sleep,
            on_retry=on_retry,
        )
