import contextlib
import time
from typing import Generator

import termcolor
from loguru import logger


@contextlib.contextmanager
def stopwatch(label: str = "unlabeled block") -> Generator[list[float], None, None]:
    """Context manager for measuring runtime. The yielded list holds the elapsed
    time in seconds once the block exits."""
    elapsed = list[float]()
    start_time = time.perf_counter()
    yield elapsed
    elapsed.append(time.perf_counter() - start_time)
    logger.info(
        "{} took {} seconds",
        label,
        termcolor.colored(f"{elapsed[0]:.5f}", attrs=["bold"]),
    )
