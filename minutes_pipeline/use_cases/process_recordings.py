"""ProcessRecordingsUseCase: one polling cycle over the recording source.

Units run concurrently up to ``max_concurrency``. Each unit is isolated:
its terminal failure is reported to the notifier and never aborts siblings.
"""

import asyncio
import logging

from minutes_pipeline.domain.models import UnitOutcome
from minutes_pipeline.errors import DispatchCancelled, ErrorKind, PipelineError
from minutes_pipeline.ports.document_store import DocumentStorePort
from minutes_pipeline.ports.notification import NotificationPort
from minutes_pipeline.ports.recording_source import RecordingSourcePort
from minutes_pipeline.use_cases.process_meeting import ProcessMeetingUseCase

logger = logging.getLogger(__name__)


class ProcessRecordingsUseCase:
    def __init__(
        self,
        source: RecordingSourcePort,
        process_meeting: ProcessMeetingUseCase,
        store: DocumentStorePort,
        notifier: NotificationPort,
        shutdown: asyncio.Event,
        max_concurrency: int = 2,
    ):
        self._source = source
        self._process_meeting = process_meeting
        self._store = store
        self._notifier = notifier
        self._shutdown = shutdown
        self._max_concurrency = max_concurrency

    def request_shutdown(self) -> None:
        """Abort retry waits in flight and stop starting new units."""
        logger.info("Shutdown requested")
        self._shutdown.set()

    async def run_once(self) -> list[UnitOutcome]:
        recording_ids = await asyncio.to_thread(self._source.list_pending)
        if not recording_ids:
            logger.info("No pending recordings")
            return []

        logger.info(f"Processing {len(recording_ids)} recordings (concurrency={self._max_concurrency})")
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def guarded(recording_id: str) -> UnitOutcome:
            async with semaphore:
                return await self._process_one(recording_id)

        results = await asyncio.gather(
            *(guarded(rid) for rid in recording_ids), return_exceptions=True,
        )

        outcomes = []
        for recording_id, result in zip(recording_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected failure processing {recording_id}", exc_info=result)
                outcomes.append(UnitOutcome(recording_id, succeeded=False, error=repr(result)))
            else:
                outcomes.append(result)

        succeeded = sum(1 for o in outcomes if o.succeeded)
        logger.info(f"Cycle finished: {succeeded}/{len(outcomes)} recordings processed")
        return outcomes

    async def _process_one(self, recording_id: str) -> UnitOutcome:
        if self._shutdown.is_set():
            return UnitOutcome(recording_id, succeeded=False, error="skipped: shutting down")

        try:
            unit = await asyncio.to_thread(self._source.fetch, recording_id)
            result = await self._process_meeting.execute(unit)
            location = await asyncio.to_thread(self._store.save, unit, result)
            await asyncio.to_thread(self._notifier.notify_success, unit, result, location)
            await asyncio.to_thread(self._source.mark_done, recording_id)
        except DispatchCancelled as e:
            logger.warning(f"{recording_id} interrupted by shutdown: {e}")
            return UnitOutcome(recording_id, succeeded=False, error=str(e))
        except PipelineError as e:
            await asyncio.to_thread(self._notifier.notify_failure, recording_id, e)
            if e.kind == ErrorKind.AUDIO_INSUFFICIENT:
                # Too-short recordings are terminal, so stop listing them.
                await asyncio.to_thread(self._source.mark_done, recording_id)
            return UnitOutcome(recording_id, succeeded=False, error=str(e))
        except OSError as e:
            wrapped = PipelineError(ErrorKind.UNKNOWN, f"I/O error: {e}")
            await asyncio.to_thread(self._notifier.notify_failure, recording_id, wrapped)
            return UnitOutcome(recording_id, succeeded=False, error=str(wrapped))
        except Exception as e:
            logger.exception(f"Unexpected failure processing {recording_id}")
            wrapped = PipelineError(ErrorKind.UNKNOWN, f"{type(e).__name__}: {e}")
            await asyncio.to_thread(self._notifier.notify_failure, recording_id, wrapped)
            return UnitOutcome(recording_id, succeeded=False, error=str(wrapped))

        return UnitOutcome(recording_id, succeeded=True)
