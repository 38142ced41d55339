"""
review-pipeline — integration tests for the command line interface

File: tests/integration/test_cli.py

Purpose
- Drive ``cli_entrypoint`` end to end and assert on exit codes and output.

What this test file should cover
- Check listing and running, with option overrides and JSON output.
- Workflow listing, inspection, validation and dry-run transitions.
- Exit-code contract: 0 success, 1 rejected, 2 configuration error.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from review_pipeline.main import ExitCode, cli_entrypoint

pytestmark = pytest.mark.integration

_PUBLISH_SCOPES = [
    "--scope",
    "site:submissions:update",
    "--scope",
    "site:submissions:publishing",
]


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, str, str]:
    code = cli_entrypoint(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_checks_list_json(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, out, _ = _run(capsys, "checks", "list", "--json")

    payload = json.loads(out)
    ids = [item["id"] for item in payload["checks"]]
    assert code == ExitCode.SUCCESS
    assert payload["command"] == "checks list"
    assert ids[:2] == ["abstract-exists", "abstract-length"]
    assert "doi-exists" in ids


def test_checks_list_filters_and_renders_a_table(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _run(capsys, "checks", "list", "--category", "keywords")

    lines = out.splitlines()
    assert code == 0
    assert lines[0].split() == ["ID", "CATEGORY", "TAGS", "TITLE"]
    assert [line.split()[0] for line in lines[2:]] == [
        "keywords-defined",
        "keywords-length",
        "keywords-unique",
    ]


def test_checks_run_passing_selection(
    document_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _run(capsys, "checks", "run", str(document_path), "--tag", "abstract", "--json")

    payload = json.loads(out)
    assert code == ExitCode.SUCCESS
    assert payload["status"] == "pass"
    assert [group["category"] for group in payload["results"]] == ["abstract"]
    assert payload["results"][0]["passed"] == 2


def test_checks_run_full_catalog_is_rejected_without_authors(
    document_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _run(capsys, "checks", "run", str(document_path), "--no-color")

    assert code == ExitCode.REJECTED
    assert "\nauthors [ERROR]" in out
    assert "FAIL  authors-exist:" in out
    assert out.rstrip().endswith("Overall: ERROR")


def test_checks_run_option_override(
    document_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _run(
        capsys,
        "checks",
        "run",
        str(document_path),
        "--id",
        "word-count",
        "--option",
        "word-count.max=2",
        "--json",
    )

    payload = json.loads(out)
    (check,) = payload["results"][0]["checks"]
    assert code == ExitCode.REJECTED
    assert check["message"] == "Document is too long: 4/2 words"


@pytest.mark.parametrize(
    ("option", "fragment"),
    [
        ("word-count", "--option expects CHECK.OPTION=VALUE"),
        ("word-count.max=lots", "word-count:"),
    ],
)
def test_checks_run_rejects_malformed_options(
    document_path: Path, capsys: pytest.CaptureFixture[str], option: str, fragment: str
) -> None:
    code, _, err = _run(capsys, "checks", "run", str(document_path), "--option", option)

    assert code == ExitCode.CONFIG_ERROR
    assert fragment in err


def test_checks_run_missing_document(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, _, err = _run(capsys, "checks", "run", "nowhere.yaml")

    assert code == ExitCode.CONFIG_ERROR
    assert "file not found" in err


def test_workflow_list_and_show(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, out, _ = _run(capsys, "workflow", "list", "--json")
    payload = json.loads(out)
    assert code == 0
    assert payload["default"] == "SIMPLE"
    assert [row["name"] for row in payload["workflows"]] == [
        "SIMPLE",
        "PRIVATE",
        "OPEN_REVIEW",
        "CLOSED_REVIEW",
    ]

    code, out, _ = _run(capsys, "workflow", "show", "SIMPLE", "--mermaid")
    assert code == 0
    assert out.startswith("graph TD\n")
    assert "    PENDING -->|publish| PUBLISHED" in out.splitlines()

    code, out, _ = _run(capsys, "workflow", "show", "OPEN_REVIEW")
    assert code == 0
    assert "Workflow: OPEN_REVIEW (v1)" in out
    assert "Transitions:" in out


def test_workflow_show_unknown_name(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, _, err = _run(capsys, "workflow", "show", "NOPE")

    assert code == ExitCode.CONFIG_ERROR
    assert "workflow 'NOPE' not found" in err


def test_workflow_validate(workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    good = workdir / "good.yaml"
    good.write_text(
        "name: GOOD\ninitial_state: a\nstates: [a, b]\n"
        "transitions:\n  - {name: go, from: a, to: b}\n",
        encoding="utf-8",
    )
    bad = workdir / "bad.yaml"
    bad.write_text(
        "name: BAD\ninitial_state: a\nstates: [a]\n"
        "transitions:\n  - {name: go, from: a, to: nowhere}\n",
        encoding="utf-8",
    )

    code, out, _ = _run(capsys, "workflow", "validate", str(good), "--json")
    assert code == 0
    assert json.loads(out)["terminal_states"] == ["b"]

    code, out, _ = _run(capsys, "workflow", "validate", str(bad))
    assert code == ExitCode.CONFIG_ERROR
    assert "Invalid workflow 'BAD':" in out
    assert "to-state 'nowhere' is not declared" in out


def test_workflow_transition_requires_scopes(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, _, err = _run(
        capsys, "workflow", "transition", "--state", "PENDING", "--trigger", "publish"
    )

    assert code == ExitCode.REJECTED
    assert (
        "rejected: forbidden: transition 'publish' requires scope(s): "
        "site:submissions:update, site:submissions:publishing"
    ) in err

    code, out, _ = _run(
        capsys,
        "workflow",
        "transition",
        "--state",
        "PENDING",
        "--trigger",
        "publish",
        *_PUBLISH_SCOPES,
    )

    assert code == ExitCode.SUCCESS
    assert "Transition: PENDING -> PUBLISHED" in out
    assert "Job: PUBLISH" in out


def test_workflow_transition_unknown_trigger_json(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, out, _ = _run(
        capsys,
        "workflow",
        "transition",
        "--workflow",
        "CLOSED_REVIEW",
        "--state",
        "RETRACTED",
        "--trigger",
        "publish",
        "--json",
    )

    payload = json.loads(out)
    assert code == ExitCode.REJECTED
    assert payload["ok"] is False
    assert payload["code"] == "unknown_transition"
    assert payload["available"] == []


def test_workflow_transition_undeclared_state(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, _, err = _run(capsys, "workflow", "transition", "--state", "LIMBO", "--trigger", "x")

    assert code == ExitCode.CONFIG_ERROR
    assert "state 'LIMBO' is not declared in workflow 'SIMPLE'" in err


def test_gated_transition_uses_a_saved_report(
    document_path: Path,
    editorial_config: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code, out, _ = _run(capsys, "checks", "run", str(document_path), "--tag", "abstract", "--json")
    assert code == 0
    report_path = document_path.parent / "report.json"
    report_path.write_text(out, encoding="utf-8")

    code, _, err = _run(
        capsys, "workflow", "transition", "--state", "submitted", "--trigger", "publish"
    )
    assert code == ExitCode.REJECTED
    assert "rejected: checks_not_satisfied: no check report supplied" in err

    code, out, _ = _run(
        capsys,
        "workflow",
        "transition",
        "--state",
        "submitted",
        "--trigger",
        "publish",
        "--report",
        str(report_path),
        "--json",
    )
    payload = json.loads(out)
    assert code == ExitCode.SUCCESS
    assert payload["state"] == "published"
    assert payload["record"]["workflow"] == "EDITORIAL"
    assert payload["record"]["check_report"]["status"] == "pass"


def test_invalid_config_file_is_a_configuration_error(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (workdir / "review.toml").write_text("[executor]\nworkers = 3\n", encoding="utf-8")

    code, _, err = _run(capsys, "workflow", "list")

    assert code == ExitCode.CONFIG_ERROR
    assert "executor.workers: unknown field" in err


def test_argparse_usage_errors_exit_with_configuration_code(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code, _, err = _run(capsys, "workflow", "frobnicate")

    assert code == ExitCode.CONFIG_ERROR
    assert "invalid choice" in err


def test_checks_run_network_flag_wires_http_resolver(
    document_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    built: list[dict[str, object]] = []

    class _OfflineResolver:
        def __init__(self, **kwargs: object) -> None:
            built.append(kwargs)

        def services(self) -> dict[str, object]:
            return {"link_resolver": lambda url: True, "doi_resolver": lambda doi: True}

    monkeypatch.setattr("review_pipeline.ui.cli.HttpResolver", _OfflineResolver)

    code, _, _ = _run(capsys, "checks", "run", str(document_path), "--id", "doi-exists", "--json")
    assert code in (ExitCode.SUCCESS, ExitCode.REJECTED)
    assert built == []

    _run(capsys, "checks", "run", str(document_path), "--id", "doi-exists", "--network", "--json")
    assert built == [{"timeout_seconds": 10.0, "max_connections": 25}]
