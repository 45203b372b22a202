import time

MS_PER_DAY = 86_400_000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def cutoff_ms(days: int, now: int | None = None) -> int:
    """Epoch milliseconds *days* before *now*."""
    if now is None:
        now = now_ms()
    return now - days * MS_PER_DAY
