import copy

import pytest
from fastapi.testclient import TestClient

from minutes_pipeline.api import create_app
from minutes_pipeline.domain.models import ParsedResult, QualityReport, UnitOutcome
from minutes_pipeline.errors import DispatchCancelled, ErrorKind, PipelineError
from minutes_pipeline.mappers import assemble_result

from conftest import CLEAN_SUMMARY, LONG_TRANSCRIPT


class FakeMeetingProcessor:
    model_name = "fake-model"

    def __init__(self, error=None):
        self.error = error
        self.units = []

    async def execute(self, unit):
        self.units.append(unit)
        if self.error:
            raise self.error
        parsed = ParsedResult(transcription=LONG_TRANSCRIPT, summary=copy.deepcopy(CLEAN_SUMMARY))
        return assemble_result(parsed, QualityReport(overall_score=100), self.model_name, 42)


class FakeRecordings:
    def __init__(self):
        self.shutdown_requested = False

    async def run_once(self):
        return [UnitOutcome("a.m4a", succeeded=True), UnitOutcome("b.m4a", succeeded=False, error="boom")]

    def request_shutdown(self):
        self.shutdown_requested = True


def make_client(meeting=None, recordings=None):
    meeting = meeting or FakeMeetingProcessor()
    recordings = recordings or FakeRecordings()
    return TestClient(create_app(pipeline_factory=lambda: (meeting, recordings)))


def upload(client, **form):
    return client.post(
        "/v1/meetings/process",
        files={"file": ("weekly.m4a", b"\x01" * 1000, "audio/mp4")},
        data=form,
    )


def test_health():
    with make_client() as client:
        response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["model"] == "fake-model"
    assert "has_api_key" in body["config"]
    assert "api_key" not in body["config"]


def test_process_upload():
    meeting = FakeMeetingProcessor()
    with make_client(meeting=meeting) as client:
        response = upload(client, topic="ACME様_定例", duration_minutes="10", host_name="Sato")

    assert response.status_code == 200
    body = response.json()
    assert body["transcription"] == LONG_TRANSCRIPT
    assert body["summary"] == CLEAN_SUMMARY["meetingPurpose"]
    assert body["actionItems"] == body["structuredSummary"]["nextActionsWithDueDate"]
    assert body["processingTime"] == 42

    [unit] = meeting.units
    assert unit.audio_bytes == b"\x01" * 1000
    assert unit.mime_type == "audio/mp4"
    assert unit.recording_id == "weekly.m4a"
    assert unit.meeting.topic == "ACME様_定例"
    assert unit.meeting.duration_minutes == 10
    assert unit.meeting.host_name == "Sato"


@pytest.mark.parametrize("error, status", [
    (PipelineError(ErrorKind.AUDIO_INSUFFICIENT, "too short"), 422),
    (PipelineError(ErrorKind.QUOTA_EXCEEDED, "429 quota", attempts=5), 502),
    (DispatchCancelled("shutdown"), 503),
])
def test_process_error_mapping(error, status):
    with make_client(meeting=FakeMeetingProcessor(error=error)) as client:
        response = upload(client)
    assert response.status_code == status


def test_process_error_detail():
    error = PipelineError(ErrorKind.QUOTA_EXCEEDED, "429 quota", attempts=5)
    with make_client(meeting=FakeMeetingProcessor(error=error)) as client:
        detail = upload(client).json()["detail"]
    assert detail["kind"] == "QUOTA_EXCEEDED"
    assert detail["attempts"] == 5
    assert detail["detail"] == "429 quota"


def test_poll_and_shutdown_on_exit():
    recordings = FakeRecordings()
    with make_client(recordings=recordings) as client:
        response = client.post("/v1/recordings/poll")
    assert response.json() == {
        "processed": 1,
        "failed": 1,
        "recordings": [
            {"id": "a.m4a", "succeeded": True, "error": None},
            {"id": "b.m4a", "succeeded": False, "error": "boom"},
        ],
    }
    assert recordings.shutdown_requested
