"""One-second shell around FocusController.

Everything time-related is injected so the loop can be driven from tests
without real sleeping.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from .config import POLL_INTERVAL_SECONDS
from .controller import FocusController
from .log import get_logger
from .timer import TickResult

logger = get_logger("runner")

TICK_SECONDS = 1.0


def run_timer(
    controller: FocusController,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    max_ticks: Optional[int] = None,
    on_tick: Optional[Callable[[TickResult], None]] = None,
    until: Optional[Callable[[TickResult], bool]] = None,
) -> int:
    """Tick the controller once per second until stopped.

    The first tick fires one second after the call. The active session is
    polled on the first tick and then every `poll_interval` seconds. Stops
    after `max_ticks` ticks, after a tick for which `until(result)` is true,
    or on KeyboardInterrupt. Returns the number of ticks run.
    """
    ticks = 0
    last_poll: Optional[float] = None
    try:
        while max_ticks is None or ticks < max_ticks:
            sleep(TICK_SECONDS)
            now = clock()
            if last_poll is None or now - last_poll >= poll_interval:
                controller.poll()
                last_poll = now

            result = controller.tick(int(now * 1000))
            ticks += 1
            if on_tick is not None:
                on_tick(result)
            if until is not None and until(result):
                break
    except KeyboardInterrupt:
        logger.info(f"Timer stopped after {ticks} ticks")
    return ticks
