"""
Retry Policy - bounded re-reads while waiting for a write to become visible.

The authorization store propagates writes asynchronously, so a mutation is
confirmed by re-reading it a few times with a short fixed delay.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .logging_utils import get_module_logger

logger = get_module_logger("RetryPolicy")

T = TypeVar("T")


class RetryOutcome(Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


@dataclass
class RetryAttempt:
    attempt_number: int
    duration_ms: float
    success: bool
    error: Optional[str] = None


@dataclass
class RetryResult:
    outcome: RetryOutcome
    attempts: List[RetryAttempt] = field(default_factory=list)
    total_duration_ms: float = 0.0
    final_error: Optional[str] = None
    result_data: Any = None

    @property
    def success(self) -> bool:
        return self.outcome is RetryOutcome.SUCCESS

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class RetryPolicy:
    """
    Fixed-delay retry loop with a delay before the first attempt as well.

    Usage:
        policy = RetryPolicy(max_attempts=3, delay=0.2)
        result = await policy.execute_with_result(
            operation=lambda: store.query(path),
            is_success=lambda state: state.granted(service) == desired,
        )
        if not result.success:
            ...  # fall back to a full reconcile
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay: float = 0.2,
        initial_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = max(0.0, delay)
        self.initial_delay = self.delay if initial_delay is None else max(0.0, initial_delay)
        self._sleep = sleep

    def get_delay(self, attempt: int) -> float:
        """Delay before ``attempt`` (1-based)."""
        return self.initial_delay if attempt <= 1 else self.delay

    async def execute_with_result(
        self,
        operation: Callable[[], Awaitable[T]],
        is_success: Callable[[T], bool] = lambda value: value is not None,
        on_retry: Optional[Callable[[int, Any], None]] = None,
    ) -> RetryResult:
        """Run ``operation`` until ``is_success`` accepts its result.

        Exceptions from ``operation`` count as a failed attempt. The last
        observed result is kept in ``result_data`` either way.
        """
        attempts: List[RetryAttempt] = []
        started = time.monotonic()
        last_error: Optional[str] = None
        last_result: Any = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1 and on_retry:
                on_retry(attempt, last_result)
            delay = self.get_delay(attempt)
            if delay:
                await self._sleep(delay)

            attempt_started = time.monotonic()
            try:
                last_result = await operation()
                ok = bool(is_success(last_result))
                error = None if ok else "result not accepted"
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                ok = False
                error = str(exc)
                logger.debug("Attempt %d/%d raised: %s", attempt, self.max_attempts, exc)

            attempts.append(RetryAttempt(
                attempt_number=attempt,
                duration_ms=(time.monotonic() - attempt_started) * 1000,
                success=ok,
                error=error,
            ))

            if ok:
                return RetryResult(
                    outcome=RetryOutcome.SUCCESS,
                    attempts=attempts,
                    total_duration_ms=(time.monotonic() - started) * 1000,
                    result_data=last_result,
                )
            last_error = error

        return RetryResult(
            outcome=RetryOutcome.EXHAUSTED,
            attempts=attempts,
            total_duration_ms=(time.monotonic() - started) * 1000,
            final_error=last_error,
            result_data=last_result,
        )


__all__ = ["RetryOutcome", "RetryAttempt", "RetryResult", "RetryPolicy"]
