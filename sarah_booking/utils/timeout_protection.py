# sarah_booking/utils/timeout_protection.py
"""
Timeout protection for the live-call webhooks. The voice platform waits
only a few seconds for the inbound webhook before connecting the call
without dynamic variables, so slow lookups are cut off and defaulted.
"""
import asyncio
import time
from typing import Any, Optional

from sarah_booking.core.logging import get_logger

logger = get_logger(__name__)


async def with_timeout(coro, timeout_seconds: float = 4.0, default_value: Any = None, *, operation: str = "operation"):
    """
    Await ``coro`` for at most ``timeout_seconds``; return ``default_value``
    on timeout. Other exceptions propagate.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning("operation_timeout", operation=operation, timeout_seconds=timeout_seconds)
        return default_value


class CallFlowTimer:
    """
    Context manager that logs how long a call-flow step took.

    Usage:
        with CallFlowTimer("inbound_lookup", max_seconds=4.0):
            ...
    """

    def __init__(self, operation_name: str, max_seconds: float = 4.0):
        self.operation_name = operation_name
        self.max_seconds = max_seconds
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = self.elapsed()
        if duration > self.max_seconds:
            logger.warning("call_flow_slow", operation=self.operation_name, duration=round(duration, 3))
        else:
            logger.debug("call_flow_complete", operation=self.operation_name, duration=round(duration, 3))

    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.monotonic() - self.start_time
