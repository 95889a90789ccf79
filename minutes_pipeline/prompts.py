"""Prompt construction for the single-call transcription + summary request."""

from minutes_pipeline.domain.models import GenerationConfig, InlineAudio, MeetingInfo, ModelRequest

STRUCTURED_GENERATION = GenerationConfig(
    max_output_tokens=65536,
    temperature=0.7,
    top_p=0.95,
    top_k=40,
)

_OUTPUT_SHAPE = """{
  "transcription": "Full speaker-labelled transcript, e.g. [00:15] Tanaka (ACME): ...",
  "summary": {
    "meetingPurpose": "Why the meeting was held",
    "clientName": "Client company or person",
    "attendeesAndCompanies": [{"name": "", "company": "", "role": ""}],
    "materials": [{"materialName": "", "description": "", "mentionedBy": "", "timestamp": "MM:SS"}],
    "discussionsByTopic": [{
      "topicTitle": "",
      "timeRange": {"startTime": "MM:SS", "endTime": "MM:SS"},
      "discussionFlow": {
        "backgroundContext": "",
        "keyArguments": [{"speaker": "", "company": "", "timestamp": "MM:SS", "argument": "", "reasoning": "", "reactionFromOthers": ""}],
        "logicalProgression": "",
        "decisionProcess": ""
      },
      "outcome": ""
    }],
    "decisions": [{"decision": "", "decidedBy": "", "reason": "", "implementationDate": "YYYY/MM/DD", "relatedTopic": ""}],
    "nextActionsWithDueDate": [{"action": "", "assignee": "", "dueDate": "YYYY/MM/DD", "priority": "high|medium|low", "relatedDecision": ""}],
    "audioQuality": {"clarity": "excellent|good|fair|poor", "issues": [], "transcriptionConfidence": "high|medium|low"}
  }
}"""


def build_structured_prompt(meeting: MeetingInfo, chunk_label: str = "") -> str:
    duration = f"{meeting.duration_minutes:g} minutes" if meeting.duration_minutes else "unknown"
    lines = [
        "You are a meeting minutes specialist. Transcribe the attached meeting audio",
        "and produce a structured summary in a single response.",
        "",
        "Meeting information:",
        f"- Topic: {meeting.topic or 'unknown'}",
        f"- Start time: {meeting.start_time or 'unknown'}",
        f"- Duration: {duration}",
        f"- Host: {meeting.host_name or 'unknown'}",
    ]
    if chunk_label:
        lines.append(f"- This audio is one segment of a longer recording: {chunk_label}")
    lines += [
        "",
        "Rules:",
        "1. Respond with pure JSON only. No markdown fences and no text before or after the object.",
        "2. The transcription must be verbatim, with a speaker label and [MM:SS] marker per turn.",
        "3. Never place JSON inside a text field. Text fields hold plain prose.",
        "4. Times use MM:SS. Dates use YYYY/MM/DD. Use an empty string when a value is unknown.",
        "5. Keep the structure below exactly, including empty arrays.",
        "",
        "Output format:",
        _OUTPUT_SHAPE,
    ]
    return "\n".join(lines)


def build_request(
    meeting: MeetingInfo,
    audio: bytes,
    mime_type: str,
    chunk_label: str = "",
) -> ModelRequest:
    return ModelRequest(
        prompt_parts=(build_structured_prompt(meeting, chunk_label),),
        inline_audio=InlineAudio(data=audio, mime_type=mime_type),
        generation_config=STRUCTURED_GENERATION,
    )
