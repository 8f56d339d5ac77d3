"""
Reliability utilities for the driver client.

Includes the Circuit Breaker guarding server calls.
"""

import logging
import time
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    After `failure_threshold` consecutive tracked failures the circuit opens
    and rejects calls for `reset_timeout` seconds, then lets one probe call
    through (HALF_OPEN). Exceptions outside `tracked` pass through without
    counting: a server that answers "order not found" is reachable.
    """
    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        tracked: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.tracked = tracked
        self.clock = clock
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if self.clock() - self.last_failure_time >= self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
        except self.tracked:
            self.record_failure()
            raise
        except Exception:
            self.reset_state()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = self.clock()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning("Circuit opened", extra={"failures": self.failures})
            self.state = "OPEN"

    def reset_state(self):
        if self.state != "CLOSED":
            logger.info("Circuit closed")
        self.failures = 0
        self.state = "CLOSED"
