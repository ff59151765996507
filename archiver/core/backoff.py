"""
Backoff utilities for the reconnect loop.

Provides the delay schedules used between connection attempts and an
interruptible sleep that wakes as soon as shutdown is requested.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class BackoffConfig:
    """Configuration for backoff behavior."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
    ):
        """
        Initialize backoff configuration.

        Args:
            base_delay: Initial delay in seconds
            max_delay: Maximum delay in seconds
            exponential_base: Growth factor per attempt
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base


# Outer reconnect loop: 1s, 2s, 4s, ... capped at one minute
RECONNECT_BACKOFF = BackoffConfig(
    base_delay=1.0,
    max_delay=60.0,
)

# Fixed delay between failed dials inside the connector
DIAL_RETRY_DELAY = 5.0


def calculate_delay(
    attempt: int,
    config: BackoffConfig,
) -> float:
    """
    Calculate delay for a given attempt number.

    Args:
        attempt: Zero-based attempt number
        config: Backoff configuration

    Returns:
        Delay in seconds
    """
    # Clamp the exponent so long-running loops never overflow the float
    exponent = min(attempt, 64)
    return min(
        config.base_delay * (config.exponential_base ** exponent),
        config.max_delay
    )


class ExponentialBackoff:
    """
    Stateful delay generator for the reconnect loop.

    Each call to next_delay() advances the schedule; the schedule is
    never reset, so once the cap is reached every later pass waits the cap.
    """

    def __init__(self, config: BackoffConfig = RECONNECT_BACKOFF):
        self.config = config
        self.attempt = 0

    def next_delay(self) -> float:
        delay = calculate_delay(self.attempt, self.config)
        self.attempt += 1
        return delay


async def sleep_unless_shutdown(delay: float, shutdown_event: asyncio.Event) -> bool:
    """
    Sleep for delay seconds, waking early if shutdown is requested.

    Args:
        delay: Seconds to wait
        shutdown_event: Process-wide shutdown signal

    Returns:
        True if the shutdown event fired, False if the full delay elapsed
    """
    if shutdown_event.is_set():
        return True
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False
