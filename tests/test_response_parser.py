import json

import pytest

from minutes_pipeline.errors import ErrorKind, PipelineError
from minutes_pipeline.response_parser import (
    PARSE_FAILURE_MARKER, ResponseParser, balance_braces, ensure_usable, extract_client_from_topic,
    extract_client_name, is_parse_failure, parse_bracket_extraction, parse_cleaned_text,
    parse_direct, parse_fenced_block, parse_line_filtered,
)

from conftest import LONG_TRANSCRIPT, model_json

NOISY_TRANSCRIPT = "hello world, this is a sufficiently long test transcript exceeding fifty characters"


@pytest.fixture
def parser():
    return ResponseParser()


def test_direct_json(parser, clean_summary):
    result = parser.parse(model_json())
    assert result.strategy == "direct"
    assert result.transcription == LONG_TRANSCRIPT
    assert result.summary == clean_summary
    assert not result.degraded


def test_trailing_noise_uses_bracket_extraction(parser):
    text = f'{{"transcription":"{NOISY_TRANSCRIPT}"}} trailing noise'
    assert not parse_direct(text).ok
    assert parse_bracket_extraction(text).ok

    result = parser.parse(text)
    assert result.strategy == "bracket_extraction"
    assert result.transcription == NOISY_TRANSCRIPT
    assert result.summary == {}


def test_fenced_block(parser):
    result = parser.parse(f"Here you go:\n```json\n{model_json()}\n```\nLet me know!")
    assert result.strategy == "fenced_block"
    assert result.transcription == LONG_TRANSCRIPT


def test_leading_garbage(parser):
    result = parser.parse(f"Sure! The minutes are below.\n{model_json()}")
    assert result.strategy == "bracket_extraction"
    assert result.transcription == LONG_TRANSCRIPT


def test_multiple_objects_picks_the_valid_one(parser):
    text = (
        '{"note": "draft output"}\n'
        "Some commentary between objects.\n"
        f"{model_json()}\n"
        '{"status": "done"}'
    )
    result = parser.parse(text)
    assert result.strategy == "multi_block"
    assert result.transcription == LONG_TRANSCRIPT


def test_truncated_response_recovered_by_regex(parser):
    truncated = json.dumps({"transcription": LONG_TRANSCRIPT})[:-1] + (
        ', "summary": {"meetingPurpose": "Budget review", '
        '"audioQuality": {"clarity": "good"}, "decisions": [{"decision": "Approve'
    )
    result = parser.parse(truncated)
    assert result.strategy == "regex_fields"
    assert result.degraded
    assert result.transcription == LONG_TRANSCRIPT
    assert result.summary["meetingPurpose"] == "Budget review"
    assert result.summary["audioQuality"] == {"clarity": "good"}


def test_unrecoverable_summary_is_synthesized(parser):
    text = (
        f'"transcription": "{LONG_TRANSCRIPT.splitlines()[0]} 株式会社アクメ様 discussion", '
        '"summary": {"meetingPurpose": "cut off'
    )
    result = parser.parse(text)
    assert result.strategy == "regex_fields"
    assert result.summary["clientName"] == "株式会社アクメ様"
    assert result.summary["audioQuality"]["issues"]


def test_unparsable_returns_failure_marker(parser):
    result = parser.parse("I'm sorry, I could not process this audio.")
    assert is_parse_failure(result)
    assert result.transcription.startswith(PARSE_FAILURE_MARKER)
    assert result.summary["meetingPurpose"].startswith(PARSE_FAILURE_MARKER)
    assert result.degraded


@pytest.mark.parametrize("text", ["", "{", "}{", "```", "null", "[1, 2]", '{"transcription": 5}'])
def test_parse_never_raises(parser, text):
    assert is_parse_failure(parser.parse(text))


def test_short_transcription_is_not_accepted(parser):
    assert is_parse_failure(parser.parse('{"transcription": "too short", "summary": {}}'))


@pytest.mark.parametrize("text", [
    "[" * 100_000,
    '{"transcription": ' + "1" * 5000 + "}",
])
def test_runaway_output_does_not_raise(parser, text):
    assert not parse_direct(text).ok
    assert is_parse_failure(parser.parse(text))


def test_stray_fence_inside_object_uses_text_cleaning(parser):
    body = json.dumps(LONG_TRANSCRIPT, ensure_ascii=False)
    text = '{"transcription": ' + body + ', ``` "summary": {"meetingPurpose": "Plan"}}'
    assert not parse_fenced_block(text).ok
    assert not parse_bracket_extraction(text).ok
    assert parse_cleaned_text(text).ok

    result = parser.parse(text)
    assert result.strategy == "text_cleaning"
    assert result.transcription == LONG_TRANSCRIPT
    assert result.summary == {"meetingPurpose": "Plan"}


def test_fence_line_inside_object_uses_line_filter(parser):
    body = json.dumps(LONG_TRANSCRIPT, ensure_ascii=False)
    text = '{"transcription": ' + body + ',\n```python\n"summary": {"meetingPurpose": "Plan"}}'
    assert not parse_cleaned_text(text).ok
    assert parse_line_filtered(text).ok

    result = parser.parse(text)
    assert result.strategy == "line_filter"
    assert result.summary == {"meetingPurpose": "Plan"}


def test_json_without_usable_transcription_is_rejected(parser):
    text = '{"transcription": "too short", "summary": {}}'
    with pytest.raises(PipelineError) as excinfo:
        ensure_usable(text, parser.parse(text))
    assert excinfo.value.kind == ErrorKind.RESPONSE_PARSE_FAILURE


@pytest.mark.parametrize("text", ["I could not process this audio.", model_json()])
def test_prose_and_valid_responses_are_not_rejected(parser, text):
    ensure_usable(text, parser.parse(text))


@pytest.mark.parametrize("missing", [1, 2, 3])
def test_balance_braces_appends_missing(missing):
    complete = '{"a": {"b": {"c": {"d": 1}}}}'
    truncated = complete[:-missing]
    repaired = balance_braces(truncated)
    assert repaired == truncated + "}" * missing
    assert json.loads(repaired) == json.loads(complete)


def test_balance_braces_leaves_balanced_input():
    text = '{"a": {"b": 1}}'
    assert balance_braces(text) == text


@pytest.mark.parametrize("text, client", [
    ("本日は田中様にお越しいただきました", "田中様"),
    ("株式会社アクメとの打合せ", "株式会社アクメ"),
    ("Met with the Globex Corp. team", "Globex Corp."),
    ("nothing to see here", "不明"),
])
def test_extract_client_name(text, client):
    assert extract_client_name(text) == client


@pytest.mark.parametrize("topic, client", [
    ("ACME様_定例会議", "ACME様"),
    ("株式会社アクメ_キックオフ", "株式会社アクメ"),
    ("アクメ株式会社_打合せ", "アクメ株式会社"),
    ("Globex_weekly", "Globex様"),
    ("定例_週次", None),
    ("", None),
])
def test_extract_client_from_topic(topic, client):
    assert extract_client_from_topic(topic) == client
