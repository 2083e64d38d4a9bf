import time


class Clock:
    """Wall-clock and monotonic time. Swap for a fake in tests."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()


SYSTEM_CLOCK = Clock()
