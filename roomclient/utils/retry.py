"""Connect Retry - Exponential backoff for the initial signaling connect.

Only the first connection attempt of a membership is retried here. Once a
connection exists, drops are handled by the Socket.IO client's own
reconnection and surfaced to the room client as lifecycle events.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from roomclient.config.constants import ROOM
from roomclient.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Backoff schedule for connect attempts.

    The delay after failed attempt n (1-based) is
    initial_delay_s * backoff_factor ** (n - 1), capped at max_delay_s and,
    with jitter, scaled by a random factor in [0.5, 1.5).
    """

    max_retries: int = ROOM.CONNECT_RETRIES
    initial_delay_s: float = ROOM.CONNECT_INITIAL_DELAY_S
    max_delay_s: float = ROOM.CONNECT_MAX_DELAY_S
    backoff_factor: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        delay = min(
            self.initial_delay_s * self.backoff_factor ** (attempt - 1),
            self.max_delay_s,
        )
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay


class RetryExhausted(Exception):
    """Every connect attempt failed."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "connect",
    room_id: str | None = None,
) -> T:
    """Await operation() until it succeeds or the attempts run out.

    Cancellation is never retried.

    Raises:
        RetryExhausted: If every attempt fails

    Example:
        await with_retry(
            lambda: sio.connect(url),
            config=RetryConfig(max_retries=5),
            operation_name="signaling_connect",
        )
    """
    config = config or RetryConfig()
    attempts = max(1, config.max_retries)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
        else:
            if attempt > 1:
                logger.info(f"{operation_name}_recovered", room_id=room_id, attempt=attempt)
            return result

        if attempt == attempts:
            break
        delay = config.delay_for(attempt)
        logger.warning(
            f"{operation_name}_retry",
            room_id=room_id,
            attempt=attempt,
            max_retries=attempts,
            delay_s=round(delay, 3),
            error=str(last_error),
        )
        await asyncio.sleep(delay)

    logger.error(
        f"{operation_name}_retry_exhausted",
        room_id=room_id,
        attempts=attempts,
        error=str(last_error),
    )
    raise RetryExhausted(attempts, last_error) from last_error
