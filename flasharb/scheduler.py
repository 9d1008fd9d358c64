# flasharb/scheduler.py
"""
Polling Scheduler
Runs scan cycles back to back: a short wait after a quiet cycle, a longer
cooldown after an execution attempt
"""

import logging
import threading
from typing import Callable, Optional

from flasharb.exceptions import ConfigError, ConfirmationError

logger = logging.getLogger(__name__)


class PollingScheduler:
    """
    run_cycle() returns True when it attempted an execution; a
    ConfirmationError also marks an attempt. Cycles never
    overlap; the stop event is honoured between cycles, never mid-cycle.
    """

    def __init__(
        self,
        run_cycle: Callable[[], bool],
        scan_interval: float = 10.0,
        cooldown: float = 30.0,
        stop_event: Optional[threading.Event] = None,
        max_cycles: Optional[int] = None,
        max_consecutive_failures: int = 5,
        failure_pause: float = 60.0,
    ):
        self.run_cycle = run_cycle
        self.scan_interval = scan_interval
        self.cooldown = cooldown
        self.stop_event = stop_event or threading.Event()
        self.max_cycles = max_cycles
        self.max_consecutive_failures = max_consecutive_failures
        self.failure_pause = failure_pause

        self.cycles = 0
        self.consecutive_failures = 0

    @classmethod
    def from_settings(cls, run_cycle, settings, stop_event=None, max_cycles=None) -> "PollingScheduler":
        return cls(
            run_cycle,
            scan_interval=settings.scan_interval,
            cooldown=settings.cooldown,
            stop_event=stop_event,
            max_cycles=max_cycles,
            max_consecutive_failures=settings.max_consecutive_failures,
            failure_pause=settings.failure_pause,
        )

    def stop(self):
        self.stop_event.set()

    def _done(self) -> bool:
        return self.max_cycles is not None and self.cycles >= self.max_cycles

    def run(self) -> int:
        """Loop until stopped or max_cycles is reached; returns cycles run"""
        while not self.stop_event.is_set():
            attempted = False
            try:
                attempted = bool(self.run_cycle())
                self.consecutive_failures = 0
            except ConfigError:
                raise
            except ConfirmationError as e:
                # A transaction went out, so this still counts as an attempt
                attempted = True
                self.consecutive_failures += 1
                logger.error(f"Cycle error: {e}")
            except Exception as e:
                self.consecutive_failures += 1
                logger.error(f"Cycle error: {e}")

            self.cycles += 1
            if self._done():
                break

            wait = self.cooldown if attempted else self.scan_interval

            # Circuit breaker
            if self.consecutive_failures >= self.max_consecutive_failures:
                logger.error(
                    f"❌ Too many consecutive failures ({self.consecutive_failures}). "
                    f"Pausing {self.failure_pause:.0f}s..."
                )
                wait += self.failure_pause
                self.consecutive_failures = 0
            elif attempted:
                logger.info(f"⏳ Cooling down {self.cooldown:.0f}s after execution attempt")

            if wait > 0 and self.stop_event.wait(wait):
                break

        logger.info(f"Scheduler stopped after {self.cycles} cycles")
        return self.cycles
