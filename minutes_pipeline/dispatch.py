"""RequestDispatcher: retry loop with error-classified backoff around one model call.

Waits are cooperative ``asyncio`` suspensions, so other units keep running
while one unit backs off. A shared shutdown event aborts any pending wait.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from minutes_pipeline.domain.models import ModelRequest, RawModelResponse
from minutes_pipeline.errors import (
    DispatchCancelled, ErrorKind, PipelineError, classify_error, suggested_retry_delay,
)
from minutes_pipeline.ports.model_client import ModelClientPort

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5

# Free-tier quotas reset on roughly a 30s window, so never retry sooner than this.
MIN_WAIT_SECONDS = 35.0
WAIT_STEP_SECONDS = 10.0
DEFAULT_WAIT_BASE_SECONDS = 30.0
DEFAULT_WAIT_STEP_SECONDS = 5.0

_SCHEDULED_KINDS = {
    ErrorKind.SERVICE_OVERLOAD,
    ErrorKind.INTERNAL_ERROR,
    ErrorKind.PROCESSING,
    ErrorKind.AUTH_FAILED,
}

Sleep = Callable[[float], Awaitable[None]]
RetryCallback = Callable[[int, ErrorKind, float], None]
ResponseCheck = Callable[[str], None]


def backoff_seconds(kind: ErrorKind, attempt: int, suggested: Optional[float] = None) -> float:
    """Minimum wait before the attempt following ``attempt`` (1-based)."""
    scheduled = MIN_WAIT_SECONDS + (attempt - 1) * WAIT_STEP_SECONDS
    if kind == ErrorKind.QUOTA_EXCEEDED:
        if suggested is not None:
            return max(suggested, MIN_WAIT_SECONDS)
        return scheduled
    if kind in _SCHEDULED_KINDS:
        return scheduled
    return max(MIN_WAIT_SECONDS, DEFAULT_WAIT_BASE_SECONDS + attempt * DEFAULT_WAIT_STEP_SECONDS)


class RequestDispatcher:
    def __init__(
        self,
        client: ModelClientPort,
        max_retries: int = DEFAULT_MAX_RETRIES,
        shutdown: Optional[asyncio.Event] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._max_retries = max_retries
        self._shutdown = shutdown or asyncio.Event()
        self._sleep = sleep
        self._clock = clock

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown

    async def dispatch(
        self,
        request: ModelRequest,
        max_retries: Optional[int] = None,
        on_retry: Optional[RetryCallback] = None,
        validate: Optional[ResponseCheck] = None,
    ) -> RawModelResponse:
        """Call the model until it answers or retries run out.

        ``validate`` sees every non-empty response text and may raise a
        PipelineError to reject it; the rejection is retried like any other
        classified failure.

        Raises:
            PipelineError: AUDIO_INSUFFICIENT immediately, or the last
                classified error once retries are exhausted.
            DispatchCancelled: when shutdown is requested.
        """
        retries = max_retries or self._max_retries
        started = self._clock()
        waited = 0.0
        last_error: Optional[PipelineError] = None

        for attempt in range(1, retries + 1):
            if self._shutdown.is_set():
                raise DispatchCancelled(f"Shutdown requested before attempt {attempt}")
            try:
                logger.info(f"Model call attempt {attempt}/{retries} ({self._client.model_name()})")
                response = await self._client.generate(request)
                if not response.text or not response.text.strip():
                    raise PipelineError(ErrorKind.RESPONSE_PARSE_FAILURE, "Model returned an empty response")
                if validate is not None:
                    validate(response.text)
                return RawModelResponse(text=response.text, attempts=attempt, waited_seconds=waited)
            except (asyncio.CancelledError, DispatchCancelled):
                raise
            except Exception as e:
                kind = classify_error(e)
                elapsed = self._clock() - started
                message = e.message if isinstance(e, PipelineError) else str(e)
                last_error = PipelineError(kind, message, attempts=attempt, elapsed_seconds=elapsed)
                last_error.__cause__ = e

                if kind == ErrorKind.AUDIO_INSUFFICIENT:
                    logger.error(f"Attempt {attempt} failed with non-retriable {kind.value}: {e}")
                    raise last_error from e
                if attempt == retries:
                    break

                delay = backoff_seconds(kind, attempt, suggested_retry_delay(e))
                log = logger.error if kind in (ErrorKind.AUTH_FAILED, ErrorKind.INVALID_FORMAT) else logger.warning
                log(f"Attempt {attempt} failed ({kind.value}): {e}; retrying in {delay:.0f}s")
                if on_retry:
                    on_retry(attempt, kind, delay)
                await self._wait(delay)
                waited += delay

        if last_error is None:
            raise PipelineError(ErrorKind.UNKNOWN, "No dispatch attempts were made")
        last_error.elapsed_seconds = self._clock() - started
        logger.error(f"Model call failed after {last_error.attempts} attempts: {last_error}")
        raise last_error

    async def _wait(self, delay: float) -> None:
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(self._shutdown.wait())
        try:
            done, _ = await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()
        if stopper in done:
            logger.info("Shutdown requested, abandoning retry wait")
            raise DispatchCancelled("Shutdown requested during retry backoff")
