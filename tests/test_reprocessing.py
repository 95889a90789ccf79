from minutes_pipeline.domain.models import Issue, IssueType, ParsedResult, QualityReport, Severity
from minutes_pipeline.quality import QualityEvaluator
from minutes_pipeline.reprocessing import (
    PROCESSING_ERROR_PLACEHOLDER, Reprocessor, clean_string_value,
)

from conftest import LONG_TRANSCRIPT


def repair(parsed):
    evaluator = QualityEvaluator()
    return Reprocessor(evaluator).repair(parsed, evaluator.evaluate(parsed))


def test_leaked_fragment_is_stripped():
    parsed = ParsedResult(
        transcription=LONG_TRANSCRIPT,
        summary={"overview": '{"transcription":"leaked"}real overview text'},
    )
    result = repair(parsed)

    assert result.success
    assert result.repaired_result.summary["overview"] == "real overview text"
    assert result.original_score == 75
    assert result.improved_score == 100
    assert result.improvements_made == ["Removed JSON fragments from summary.overview"]
    # the input is left untouched
    assert parsed.summary["overview"].startswith("{")


def test_clean_string_value_handles_nesting_and_escapes():
    assert clean_string_value('Plan {"a": {"b": "c"}} agreed') == "Plan agreed"
    assert clean_string_value('Intro {\\"k\\": \\"v\\"} outro') == "Intro outro"
    assert clean_string_value('Items ["x", "y"] listed') == "Items listed"


def test_field_that_is_only_json_gets_placeholder():
    parsed = ParsedResult(transcription=LONG_TRANSCRIPT, summary={"meetingPurpose": '{"a": "b"}'})
    result = repair(parsed)
    assert result.repaired_result.summary["meetingPurpose"] == PROCESSING_ERROR_PLACEHOLDER
    assert result.success


def test_empty_field_gets_placeholder(clean_summary):
    clean_summary["decisions"][0]["reason"] = ""
    result = repair(ParsedResult(transcription=LONG_TRANSCRIPT, summary=clean_summary))
    assert result.repaired_result.summary["decisions"][0]["reason"] == PROCESSING_ERROR_PLACEHOLDER
    assert result.improved_score == 100


def test_unrepairable_issue_reports_no_success():
    parsed = ParsedResult(transcription="short", summary={})
    result = repair(parsed)
    assert not result.success
    assert result.improved_score == result.original_score
    assert result.repaired_result.transcription == "short"


def test_bad_paths_never_raise():
    parsed = ParsedResult(transcription=LONG_TRANSCRIPT, summary={"a": ["x"]})
    report = QualityReport(overall_score=50, issues=[
        Issue(IssueType.JSON_MIXED_CONTENT, "summary.missing", Severity.HIGH),
        Issue(IssueType.EMPTY_CONTENT, "summary.a[5]", Severity.MEDIUM),
        Issue(IssueType.EMPTY_CONTENT, "summary.a.b", Severity.MEDIUM),
    ])
    result = Reprocessor(QualityEvaluator()).repair(parsed, report)
    assert result.improvements_made == []
    assert result.repaired_result.summary == {"a": ["x"]}
