import asyncio
import copy
import json

from google.api_core import exceptions as google_exceptions

from minutes_pipeline.adapters.local.directory_recording_source import DirectoryRecordingSource
from minutes_pipeline.adapters.local.json_document_store import JsonFileDocumentStore, document_stem
from minutes_pipeline.config import build_pipeline, get_config
from minutes_pipeline.domain.models import (
    MeetingInfo, ParsedResult, QualityReport, RawModelResponse, RecordingUnit,
)
from minutes_pipeline.errors import ErrorKind, PipelineError
from minutes_pipeline.mappers import assemble_result
from minutes_pipeline.ports.document_store import DocumentStorePort
from minutes_pipeline.ports.notification import NotificationPort
from minutes_pipeline.ports.recording_source import RecordingSourcePort
from minutes_pipeline.use_cases.process_recordings import ProcessRecordingsUseCase

from conftest import CLEAN_SUMMARY, LONG_TRANSCRIPT, FakeModelClient, RecordingProgress, model_json


class MemorySource(RecordingSourcePort):
    def __init__(self, ids):
        self.ids = list(ids)
        self.done = []

    def list_pending(self):
        return [i for i in self.ids if i not in self.done]

    def fetch(self, recording_id):
        return RecordingUnit(
            audio_bytes=b"\x01" * 1000, mime_type="audio/mp4",
            meeting=MeetingInfo(topic=recording_id), recording_id=recording_id,
        )

    def mark_done(self, recording_id):
        self.done.append(recording_id)


class MemoryStore(DocumentStorePort):
    def __init__(self):
        self.saved = {}

    def save(self, unit, result):
        self.saved[unit.recording_id] = result
        return f"memory://{unit.recording_id}"


class RecordingNotifier(NotificationPort):
    def __init__(self):
        self.successes = []
        self.failures = []

    def notify_success(self, unit, result, location=None):
        self.successes.append((unit.recording_id, location))

    def notify_failure(self, recording_id, error):
        self.failures.append((recording_id, error.kind))


class ScriptedMeetingProcessor:
    """Fails the recordings named in ``failures`` with the given kind or exception."""

    def __init__(self, failures):
        self.failures = failures

    async def execute(self, unit):
        await asyncio.sleep(0)
        failure = self.failures.get(unit.recording_id)
        if isinstance(failure, BaseException):
            raise failure
        if failure is not None:
            raise PipelineError(failure, "scripted failure", attempts=5)
        parsed = ParsedResult(transcription=LONG_TRANSCRIPT, summary=copy.deepcopy(CLEAN_SUMMARY))
        return assemble_result(parsed, QualityReport(overall_score=100), "fake-model", 5)


def make_batch(ids, failures, shutdown=None):
    source, store, notifier = MemorySource(ids), MemoryStore(), RecordingNotifier()
    batch = ProcessRecordingsUseCase(
        source=source,
        process_meeting=ScriptedMeetingProcessor(failures),
        store=store,
        notifier=notifier,
        shutdown=shutdown or asyncio.Event(),
    )
    return batch, source, store, notifier


def test_failing_unit_does_not_abort_siblings():
    batch, source, store, notifier = make_batch(
        ["a", "b", "c"], {"b": ErrorKind.QUOTA_EXCEEDED},
    )
    outcomes = asyncio.run(batch.run_once())

    assert [(o.recording_id, o.succeeded) for o in outcomes] == [("a", True), ("b", False), ("c", True)]
    assert "QUOTA_EXCEEDED" in outcomes[1].error
    assert sorted(store.saved) == ["a", "c"]
    assert sorted(notifier.successes) == [("a", "memory://a"), ("c", "memory://c")]
    assert notifier.failures == [("b", ErrorKind.QUOTA_EXCEEDED)]
    # retryable failures stay pending for the next cycle
    assert source.list_pending() == ["b"]


def test_insufficient_audio_is_not_listed_again():
    batch, source, _, notifier = make_batch(["short"], {"short": ErrorKind.AUDIO_INSUFFICIENT})
    asyncio.run(batch.run_once())
    assert notifier.failures == [("short", ErrorKind.AUDIO_INSUFFICIENT)]
    assert source.list_pending() == []


def test_shutdown_skips_pending_units():
    batch, _, store, _ = make_batch(["a", "b"], {})
    batch.request_shutdown()
    outcomes = asyncio.run(batch.run_once())
    assert not any(o.succeeded for o in outcomes)
    assert store.saved == {}


def test_empty_inbox():
    batch, *_ = make_batch([], {})
    assert asyncio.run(batch.run_once()) == []


def test_inbox_to_minutes_end_to_end(tmp_path):
    inbox, output = tmp_path / "inbox", tmp_path / "minutes"
    inbox.mkdir()
    (inbox / "weekly.m4a").write_bytes(b"\x01" * 4000)
    (inbox / "weekly.json").write_text(json.dumps({
        "topic": "ACME様_定例", "startTime": "2024-06-10T10:00:00Z", "durationMinutes": 10, "hostName": "Sato",
    }), encoding="utf-8")
    (inbox / "notes.txt").write_text("not audio", encoding="utf-8")

    source = DirectoryRecordingSource(str(inbox))
    notifier = RecordingNotifier()
    _, batch = build_pipeline(
        get_config(),
        client=FakeModelClient([model_json()]),
        adapters={
            "source": source,
            "store": JsonFileDocumentStore(str(output)),
            "notifier": notifier,
            "progress": RecordingProgress(),
        },
    )

    assert source.list_pending() == ["weekly.m4a"]
    outcomes = asyncio.run(batch.run_once())

    assert outcomes[0].succeeded
    minutes_path = output / "20240610_1000_ACME様_定例_minutes.json"
    assert notifier.successes == [("weekly.m4a", str(minutes_path))]
    document = json.loads(minutes_path.read_text(encoding="utf-8"))
    assert document["meeting"]["hostName"] == "Sato"
    assert document["summary"] == CLEAN_SUMMARY["meetingPurpose"]
    assert document["qualityScore"] == 100
    assert (output / "20240610_1000_ACME様_定例_transcript.txt").read_text(encoding="utf-8") == LONG_TRANSCRIPT
    assert source.list_pending() == []


def test_sidecar_metadata_and_defaults(tmp_path):
    (tmp_path / "call.mp3").write_bytes(b"ID3audio")
    (tmp_path / "broken.wav").write_bytes(b"RIFF")
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    source = DirectoryRecordingSource(str(tmp_path))

    unit = source.fetch("call.mp3")
    assert unit.mime_type == "audio/mpeg"
    assert unit.meeting.topic == "call"
    assert unit.meeting.duration_minutes is None
    assert source.fetch("broken.wav").meeting.topic == "broken"

    source.mark_done("call.mp3")
    assert source.list_pending() == ["broken.wav"]


def test_document_stem_is_filesystem_safe():
    unit = RecordingUnit(
        audio_bytes=b"", mime_type=None,
        meeting=MeetingInfo(topic="Q3 plan: ACME/Globex?", start_time="2024-06-10T10:00:00Z"),
    )
    assert document_stem(unit) == "20240610_1000_Q3_plan_ACME_Globex"


def test_unexpected_error_reaches_notifier():
    batch, source, _, notifier = make_batch(["a", "b"], {"a": AttributeError("boom")})
    outcomes = asyncio.run(batch.run_once())

    assert [(o.recording_id, o.succeeded) for o in outcomes] == [("a", False), ("b", True)]
    assert "AttributeError: boom" in outcomes[0].error
    assert notifier.failures == [("a", ErrorKind.UNKNOWN)]
    assert source.list_pending() == ["a"]


def test_backoff_wait_does_not_block_siblings():
    class TopicClient(FakeModelClient):
        """Overloaded for the stuck recording, answers everything else."""

        async def generate(self, request):
            self.requests.append(request)
            if "Topic: stuck" in request.prompt_parts[0]:
                raise google_exceptions.ServiceUnavailable("overloaded")
            return RawModelResponse(text=model_json())

    source, store, notifier = MemorySource(["stuck", "quick"]), MemoryStore(), RecordingNotifier()
    _, batch = build_pipeline(
        get_config(),
        client=TopicClient([]),
        adapters={"source": source, "store": store, "notifier": notifier, "progress": RecordingProgress()},
    )

    async def run():
        cycle = asyncio.create_task(batch.run_once())
        for _ in range(500):
            if store.saved:
                break
            await asyncio.sleep(0.01)
        # the stuck unit is still inside its 35s backoff here
        assert list(store.saved) == ["quick"]
        assert not cycle.done()
        batch.request_shutdown()
        return await cycle

    outcomes = asyncio.run(run())

    assert [(o.recording_id, o.succeeded) for o in outcomes] == [("stuck", False), ("quick", True)]
    assert "Shutdown" in outcomes[0].error
    assert notifier.successes == [("quick", "memory://quick")]
    assert source.list_pending() == ["stuck"]


def test_invalid_sidecar_values_fall_back_to_defaults(tmp_path):
    (tmp_path / "listed.m4a").write_bytes(b"\x01")
    (tmp_path / "listed.json").write_text("[]", encoding="utf-8")
    (tmp_path / "odd.m4a").write_bytes(b"\x01")
    (tmp_path / "odd.json").write_text(json.dumps({
        "topic": 42, "durationMinutes": "about an hour", "hostName": None,
    }), encoding="utf-8")
    source = DirectoryRecordingSource(str(tmp_path))

    assert source.fetch("listed.m4a").meeting == MeetingInfo(topic="listed")
    assert source.fetch("odd.m4a").meeting == MeetingInfo(topic="42")


def test_same_topic_on_one_day_gets_separate_documents(tmp_path):
    store = JsonFileDocumentStore(str(tmp_path))
    parsed = ParsedResult(transcription=LONG_TRANSCRIPT, summary=copy.deepcopy(CLEAN_SUMMARY))
    result = assemble_result(parsed, QualityReport(overall_score=100), "fake-model", 5)

    locations = {
        store.save(RecordingUnit(
            audio_bytes=b"", mime_type=None, recording_id=f"{hhmm}.m4a",
            meeting=MeetingInfo(topic="週次定例", start_time=f"2024-06-10T{hhmm}:00+09:00"),
        ), result)
        for hhmm in ("10:00", "15:00")
    }

    assert {p.rsplit("/", 1)[-1] for p in locations} == {
        "20240610_1000_週次定例_minutes.json", "20240610_1500_週次定例_minutes.json",
    }


def test_document_stem_without_time_uses_recording_id():
    unit = RecordingUnit(
        audio_bytes=b"", mime_type=None, recording_id="zoom-123.m4a",
        meeting=MeetingInfo(topic="週次定例", start_time="2024-06-10"),
    )
    assert document_stem(unit) == "20240610_週次定例_zoom-123"
