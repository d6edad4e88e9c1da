from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import AIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2
    timeout_ms: int = 120000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RetryConfig":
        data = data or {}
        known = {k: data[k] for k in cls.__dataclass_fields__ if data.get(k) is not None}
        return cls(**known)

    def delay_ms(self, attempt: int) -> float:
        return min(self.max_delay_ms, self.initial_delay_ms * (self.backoff_multiplier ** attempt))


class RetryHandler:
    """Exponential-backoff retries for provider calls.

    Only the `retryable` flag of an AIError is consulted; any other exception
    is retried while attempts remain and re-raised unchanged once they run out.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def execute_with_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout_ms: Optional[int] = None,
    ) -> T:
        ms = self.config.timeout_ms if timeout_ms is None else timeout_ms
        try:
            return await asyncio.wait_for(operation(), timeout=ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Operation timed out after {ms}ms") from None

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
        *,
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        backoff_multiplier: Optional[float] = None,
    ) -> T:
        overrides = {
            k: v
            for k, v in {
                "max_retries": max_retries,
                "initial_delay_ms": initial_delay_ms,
                "max_delay_ms": max_delay_ms,
                "backoff_multiplier": backoff_multiplier,
            }.items()
            if v is not None
        }
        cfg = replace(self.config, **overrides) if overrides else self.config

        attempt = 0
        while True:
            try:
                return await self.execute_with_timeout(operation, cfg.timeout_ms)
            except AIError as e:
                if not e.retryable or attempt >= cfg.max_retries:
                    raise
                err: Exception = e
            except Exception as e:
                if attempt >= cfg.max_retries:
                    raise
                err = e

            delay = cfg.delay_ms(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.0fms",
                operation_name,
                attempt + 1,
                cfg.max_retries + 1,
                err,
                delay,
            )
            await self._sleep(delay / 1000)
            attempt += 1
