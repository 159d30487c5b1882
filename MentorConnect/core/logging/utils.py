"""
Timing helpers built on the logging package.
"""

import logging
import time
from typing import Optional

from MentorConnect.core.logging import get_logger


class LogTimer:
    """
    Times a block and logs the result.

    Durations above ``slow_after`` seconds are logged as warnings so slow
    storage writes stand out in production logs.

    Example:
        with LogTimer("save_message", logger, slow_after=0.5):
            store.save_message(message)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
        slow_after: Optional[float] = None
    ):
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.level = level
        self.slow_after = slow_after
        self.duration: Optional[float] = None
        self._started: Optional[float] = None

    @property
    def is_slow(self) -> bool:
        return (self.slow_after is not None and self.duration is not None
                and self.duration > self.slow_after)

    def __enter__(self) -> 'LogTimer':
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration = time.perf_counter() - self._started
        elapsed_ms = self.duration * 1000
        if exc_type is not None:
            self.logger.warning("%s failed after %.1f ms: %s", self.operation, elapsed_ms, exc_val)
        elif self.is_slow:
            self.logger.warning("%s slow: %.1f ms (limit %.1f ms)",
                                self.operation, elapsed_ms, self.slow_after * 1000)
        else:
            self.logger.log(self.level, "%s took %.1f ms", self.operation, elapsed_ms)
