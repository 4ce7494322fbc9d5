from __future__ import annotations

import time
from typing import Callable


def wait_for_zero(
    count: Callable[[], int],
    *,
    label: str,
    interval: float,
    ceiling: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Poll `count` every `interval` seconds until it returns 0 or `ceiling`
    seconds have elapsed. Returns True when drained, False on timeout.

    The ceiling is always honoured in full: False is only returned once the
    clock says the whole window has passed.
    """
    start = clock()
    while True:
        remaining = count()
        waited = clock() - start
        if remaining <= 0:
            return True
        if waited >= ceiling:
            print(f"--- {label}: still {remaining} after {int(waited)}s (timeout)")
            return False
        print(f"--- {label}: remaining={remaining} ({int(waited)}s/{int(ceiling)}s)")
        sleep(min(interval, ceiling - waited))
