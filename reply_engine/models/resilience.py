"""
Timeouts, deadlines and bounded retries for external API calls.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import PipelineTimeoutError, UpstreamAnalysisError, ValidationError

logger = logging.getLogger(__name__)


class Deadline:
    """Overall time allowance for one request, shared by every call it makes."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def bound(self, timeout: Optional[float]) -> Optional[float]:
        """Clamp a per-call timeout to what is left of the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def check(self, stage: Optional[str] = None):
        if self.expired:
            raise PipelineTimeoutError(self.seconds, stage)


@dataclass
class RetryPolicy:
    """Per-call timeout and bounded exponential backoff."""
    timeout: Optional[float] = 15.0
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RetryPolicy":
        return cls(
            timeout=config.get("timeout", 15.0),
            max_attempts=max(1, int(config.get("max_attempts", 3))),
            base_delay=config.get("base_delay", 0.5),
            max_delay=config.get("max_delay", 4.0),
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))


async def call_with_retry(
    func: Callable[[], Awaitable[Any]],
    operation: str,
    policy: Optional[RetryPolicy] = None,
    deadline: Optional[Deadline] = None,
) -> Any:
    """
    Invoke an external call with a timeout and bounded exponential backoff.

    Args:
        func: Zero-argument coroutine factory; called once per attempt
        operation: Name used in logs and errors
        policy: Retry policy (defaults apply when omitted)
        deadline: Request deadline bounding every attempt and backoff sleep

    Returns:
        Whatever the call returns

    Raises:
        ValidationError: Propagated immediately, never retried
        PipelineTimeoutError: The request deadline ran out
        UpstreamAnalysisError: All attempts failed
    """
    policy = policy or RetryPolicy()
    deadline = deadline or Deadline.unbounded()
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        deadline.check(operation)
        timeout = deadline.bound(policy.timeout)
        try:
            if timeout is None:
                return await func()
            return await asyncio.wait_for(func(), timeout=timeout)
        except (ValidationError, PipelineTimeoutError):
            raise
        except asyncio.TimeoutError as e:
            last_error = e
            deadline.check(operation)
            logger.warning(f"{operation} timed out after {timeout:.1f}s (attempt {attempt + 1}/{policy.max_attempts})")
        except Exception as e:
            last_error = e
            logger.warning(f"{operation} failed (attempt {attempt + 1}/{policy.max_attempts}): {e}")

        if attempt + 1 < policy.max_attempts:
            delay = deadline.bound(policy.delay_for(attempt))
            if delay:
                await asyncio.sleep(delay)

    message = str(last_error) or type(last_error).__name__
    raise UpstreamAnalysisError(operation, message, attempts=policy.max_attempts, cause=last_error) from last_error
