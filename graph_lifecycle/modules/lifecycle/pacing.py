"""
Delays between lifecycle stages. Purely for pacing a demonstration run;
nothing depends on them for correctness.
"""

import random
import time
from typing import Callable, Optional

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.common.logger import logger


class NoDelay:
    def __call__(self) -> float:
        return 0.0


class RandomDelay:
    """Sleep for a uniformly random time between `min_seconds` and `max_seconds`."""

    def __init__(self, min_seconds: float = 0.5, max_seconds: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep,
                 rng: Optional[random.Random] = None):
        if min_seconds < 0 or max_seconds < min_seconds:
            raise ValueError(f"Invalid delay bounds: {min_seconds}..{max_seconds}")
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self._sleep = sleep
        self._rng = rng or random.Random()

    def __call__(self) -> float:
        delay = self._rng.uniform(self.min_seconds, self.max_seconds)
        logger.debug(f"    pausing {delay:.3f}s")
        self._sleep(delay)
        return delay


def pacing_from_config(config: StoreConfig) -> Callable[[], float]:
    if config.pacing_max_ms == 0:
        return NoDelay()
    return RandomDelay(config.pacing_min_ms / 1000.0, config.pacing_max_ms / 1000.0)
