"""LogProgressAdapter: writes processing state transitions to the log.

Routine steps go to DEBUG, milestones to INFO, retries and degraded parses
to WARNING, terminal failures to ERROR. Jobs log their total elapsed time
on DONE or FAILED_TERMINAL, which also ends their tracking.
"""

import logging
import time
from typing import Callable, Dict, Optional

from minutes_pipeline.domain.models import ProcessingState
from minutes_pipeline.ports.progress import ProgressPort

logger = logging.getLogger(__name__)

_LEVELS = {
    ProcessingState.PREPARING: logging.INFO,
    ProcessingState.RETRY: logging.WARNING,
    ProcessingState.PARSE_DEGRADED: logging.WARNING,
    ProcessingState.REPROCESSING: logging.WARNING,
    ProcessingState.FAILED_TERMINAL: logging.ERROR,
    ProcessingState.DONE: logging.INFO,
}

_FINAL_STATES = (ProcessingState.DONE, ProcessingState.FAILED_TERMINAL)


class LogProgressAdapter(ProgressPort):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started: Dict[str, float] = {}

    @property
    def active_jobs(self) -> list[str]:
        """Jobs that have reported progress but no final state yet."""
        return list(self._started)

    def report(
        self,
        job_id: str,
        state: ProcessingState,
        progress: float = 0.0,
        detail: Optional[str] = None,
    ) -> None:
        now = self._clock()
        started = self._started.setdefault(job_id, now)

        parts = [f"[{job_id}] {state.value}"]
        if progress > 0:
            parts.append(f"{progress:.0%}")
        if detail:
            parts.append(f"({detail})")
        if state in _FINAL_STATES:
            parts.append(f"after {now - started:.1f}s")
            self._started.pop(job_id, None)
        logger.log(_LEVELS.get(state, logging.DEBUG), " ".join(parts))
