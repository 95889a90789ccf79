import copy
import json

import pytest

from minutes_pipeline.domain.models import ProcessingState, RawModelResponse
from minutes_pipeline.ports.model_client import ModelClientPort
from minutes_pipeline.ports.progress import ProgressPort

LONG_TRANSCRIPT = (
    "[00:05] Tanaka (ACME): Thanks for joining. Today we review the rollout plan and budget.\n"
    "[00:21] Suzuki (Nexus): We can ship the first phase at the end of the month."
)

CLEAN_SUMMARY = {
    "meetingPurpose": "Review the Q3 rollout plan with ACME",
    "clientName": "ACME様",
    "attendeesAndCompanies": [
        {"name": "Tanaka", "company": "ACME", "role": "PM"},
        {"name": "Suzuki", "company": "Nexus", "role": "Engineer"},
    ],
    "materials": [],
    "discussionsByTopic": [{
        "topicTitle": "Rollout schedule",
        "timeRange": {"startTime": "00:05", "endTime": "12:30"},
        "discussionFlow": {
            "backgroundContext": "The launch slipped by two weeks",
            "keyArguments": [],
            "logicalProgression": "Risk review led to a phased plan",
            "decisionProcess": "Consensus",
        },
        "outcome": "Phased rollout agreed",
    }],
    "decisions": [{
        "decision": "Phase the rollout",
        "decidedBy": "Tanaka",
        "reason": "Lower launch risk",
        "implementationDate": "2024/07/01",
        "relatedTopic": "Rollout schedule",
    }],
    "nextActionsWithDueDate": [{
        "action": "Send the phased plan",
        "assignee": "Suzuki",
        "dueDate": "2024/06/20",
        "priority": "high",
        "relatedDecision": "Phase the rollout",
    }],
    "audioQuality": {"clarity": "good", "issues": [], "transcriptionConfidence": "high"},
}


def model_json(transcription: str = LONG_TRANSCRIPT, summary: dict = None) -> str:
    return json.dumps(
        {"transcription": transcription, "summary": summary if summary is not None else CLEAN_SUMMARY},
        ensure_ascii=False,
    )


class FakeModelClient(ModelClientPort):
    """Replays scripted outcomes: strings are responses, exceptions are raised."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return RawModelResponse(text=outcome)

    def model_name(self) -> str:
        return "fake-model"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class RecordingProgress(ProgressPort):
    def __init__(self):
        self.states = []

    def report(self, job_id, state: ProcessingState, progress=0.0, detail=None):
        self.states.append(state)


@pytest.fixture
def clean_summary():
    return copy.deepcopy(CLEAN_SUMMARY)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def progress():
    return RecordingProgress()
