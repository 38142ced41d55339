"""
review-pipeline — unit tests for check data models

File: tests/unit/checks/test_models.py

Purpose
- Validate status roll-up, definition normalization and report compilation.

What this test file should cover
- Worst-status-wins roll-up, including the empty case.
- Category defaulting and option validation on definitions.
- Report grouping by category in first-seen order and per-check status lookup.
- Persisted report payloads rebuild to the same statuses.
"""

from __future__ import annotations

import pytest

from review_pipeline.checks.models import (
    CheckDefinition,
    CheckOption,
    CheckReport,
    CheckResult,
    CheckStatus,
    CompiledCheckResult,
    OptionType,
    RawCheckResult,
    as_check_status,
    errored,
    failed,
    passed,
    roll_up,
)
from review_pipeline.documents.model import Position


def _definition(check_id: str, category: str) -> CheckDefinition:
    return CheckDefinition(
        id=check_id, title=check_id, purpose=f"check {check_id}", category=category
    )


def _compiled(check_id: str, category: str, raw: RawCheckResult) -> CompiledCheckResult:
    definition = _definition(check_id, category)
    return CompiledCheckResult(definition=definition, result=CheckResult.from_raw(definition, raw))


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ([], CheckStatus.PASS),
        (["pass", "pass"], CheckStatus.PASS),
        (["pass", "fail"], CheckStatus.FAIL),
        (["fail", "error", "pass"], CheckStatus.ERROR),
        ([CheckStatus.ERROR, CheckStatus.FAIL], CheckStatus.ERROR),
    ],
)
def test_roll_up_is_worst_status_wins(statuses: list[str], expected: CheckStatus) -> None:
    assert roll_up(statuses) is expected


def test_as_check_status_rejects_unknown_values() -> None:
    assert as_check_status(" PASS ") is CheckStatus.PASS
    with pytest.raises(ValueError, match="must be one of"):
        as_check_status("warning")


def test_definition_category_defaults_to_first_tag() -> None:
    definition = CheckDefinition(
        id="abstract-exists", title="Abstract", purpose="ensure abstract", tags=("abstract",)
    )
    assert definition.category == "abstract"

    with pytest.raises(ValueError, match="category is required"):
        CheckDefinition(id="orphan", title="Orphan", purpose="no category")


def test_definition_rejects_duplicate_option_ids() -> None:
    option = CheckOption(id="max", type=OptionType.NUMBER)
    with pytest.raises(ValueError, match="duplicate option id"):
        CheckDefinition(
            id="word-count",
            title="Word Count",
            purpose="count words",
            category="content",
            options=(option, option),
        )


def test_option_bounds_only_apply_to_numbers() -> None:
    with pytest.raises(ValueError, match="number options only"):
        CheckOption(id="part", type=OptionType.STRING, min=1)
    with pytest.raises(ValueError, match="min must be <= max"):
        CheckOption(id="max", type=OptionType.NUMBER, min=5, max=1)


def test_definition_from_mapping_reports_unknown_fields() -> None:
    with pytest.raises(ValueError, match="unknown field"):
        CheckDefinition.from_mapping(
            {"id": "x", "title": "X", "purpose": "x", "category": "c", "severity": "high"}
        )


def test_compiled_result_rejects_mismatched_ids() -> None:
    definition = _definition("links-resolve", "links")
    other = CheckResult(id="doi-exists", status=CheckStatus.PASS, message="ok", category="links")
    with pytest.raises(ValueError, match="does not match"):
        CompiledCheckResult(definition=definition, result=other)


def test_report_groups_by_category_in_first_seen_order() -> None:
    report = CheckReport.compile(
        [
            _compiled("keywords-defined", "keywords", passed("Found 3 keywords")),
            _compiled("abstract-exists", "abstract", passed("Abstract found")),
            _compiled("keywords-unique", "keywords", failed("Duplicate keyword: ai")),
            _compiled("abstract-length", "abstract", passed("Abstract is correct length")),
        ]
    )

    assert report.categories == ("keywords", "abstract")
    assert report.category_status("keywords") is CheckStatus.FAIL
    assert report.category_status("abstract") is CheckStatus.PASS
    assert report.category_status("links") is None
    assert report.status is CheckStatus.FAIL

    keywords = report.results[0]
    assert (keywords.passed, keywords.total) == (1, 2)


def test_check_status_rolls_up_multiple_results_for_one_check() -> None:
    report = CheckReport.compile(
        [
            _compiled("authors-have-orcid", "authors", passed("Ada has an ORCID")),
            _compiled("authors-have-orcid", "authors", errored("lookup failed")),
        ]
    )

    assert report.check_status("authors-have-orcid") is CheckStatus.ERROR
    assert report.check_status("authors-exist") is None


def test_empty_report_passes() -> None:
    report = CheckReport.compile([])
    assert report.status is CheckStatus.PASS
    assert report.results == ()


def test_report_payload_rebuilds_statuses() -> None:
    report = CheckReport.compile(
        [
            _compiled(
                "word-count",
                "content",
                failed(
                    "Document is too long: 4000/3500 words",
                    help="Shorten your document",
                    position=Position(start_line=3, start_column=1),
                    file="paper.md",
                ),
            ),
            _compiled("figure-count", "content", passed("Found 2 figures/tables")),
        ]
    )

    payload = report.to_dict()
    assert payload["status"] == "fail"
    assert payload["results"][0]["passed"] == 1

    rebuilt = CheckReport.from_dict(payload)
    assert rebuilt.status is CheckStatus.FAIL
    assert rebuilt.check_status("word-count") is CheckStatus.FAIL
    first = rebuilt.compiled[0]
    assert first.result.position == Position(start_line=3, start_column=1)
    assert first.result.help == "Shorten your document"


def test_report_from_dict_recomputes_tampered_status() -> None:
    payload = {
        "status": "pass",
        "results": [
            {
                "category": "links",
                "status": "pass",
                "checks": [{"id": "links-resolve", "status": "fail", "message": "x (404)"}],
            }
        ],
    }

    report = CheckReport.from_dict(payload)

    assert report.status is CheckStatus.FAIL
    assert report.category_status("links") is CheckStatus.FAIL
