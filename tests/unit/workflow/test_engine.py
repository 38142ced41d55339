"""
review-pipeline — unit tests for the workflow engine

File: tests/unit/workflow/test_engine.py

Purpose
- Validate trigger resolution, scope and check guards, and the versioned commit.

What this test file should cover
- Guard order: unknown trigger, then scopes, then check gating.
- Rejected attempts leave state, version and history untouched.
- Two concurrent attempts from the same snapshot: exactly one commits.
- Transition records, published dates and availability listings.

Non-functional requirements
- Deterministic: clocks are injected and thread interleavings are forced with barriers.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any

import pytest

from review_pipeline.checks import (
    CheckDefinition,
    CheckReport,
    CheckResult,
    CheckStatus,
    CompiledCheckResult,
)
from review_pipeline.errors import (
    ChecksNotSatisfied,
    ConcurrentModification,
    Forbidden,
    TransitionError,
    UnknownTransition,
)
from review_pipeline.workflow import (
    SUBMISSIONS_PUBLISHING,
    SUBMISSIONS_UPDATE,
    Principal,
    PrincipalScopeChecker,
    Submission,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowRegistry,
    load,
)

_FIXED_NOW = datetime(2026, 3, 14, 9, 26, 53, tzinfo=timezone.utc)


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def debug(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def info(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def warning(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))


def _editorial_workflow() -> WorkflowDefinition:
    return load(
        {
            "name": "EDITORIAL",
            "initial_state": "draft",
            "states": ["draft", "submitted", "published"],
            "transitions": [
                {
                    "name": "submit",
                    "from": "draft",
                    "to": "submitted",
                    "required_scopes": ["submit"],
                },
                {
                    "name": "publish",
                    "from": "submitted",
                    "to": "published",
                    "required_check_categories": ["abstract"],
                    "options": {"sets_published_date": True},
                },
            ],
        }
    )


def _engine(logger: Any | None = None) -> WorkflowEngine:
    return WorkflowEngine(_editorial_workflow(), clock=lambda: _FIXED_NOW, logger=logger)


def _report(**statuses: CheckStatus) -> CheckReport:
    compiled = []
    for category, status in statuses.items():
        check_id = f"{category}-check"
        definition = CheckDefinition(
            id=check_id, title=check_id, purpose=f"check {category}", category=category
        )
        result = CheckResult(id=check_id, status=status, message=status.value, category=category)
        compiled.append(CompiledCheckResult(definition=definition, result=result))
    return CheckReport.compile(compiled)


def _at(engine: WorkflowEngine, state: str) -> Submission:
    submission = engine.new_submission("sub-1")
    submission.current_state = state
    return submission


def _snapshot(submission: Submission) -> tuple[str, int, int]:
    return submission.current_state, submission.version, len(submission.history)


def test_submit_without_scope_is_forbidden() -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")

    with pytest.raises(Forbidden) as excinfo:
        engine.attempt_transition(submission, "submit", Principal(id="reader"))

    assert excinfo.value.missing_scopes == ("submit",)
    assert _snapshot(submission) == ("draft", 0, 0)


def test_publish_is_gated_on_the_abstract_category() -> None:
    engine = _engine()
    submission = _at(engine, "submitted")
    editor = Principal.with_scopes("editor", ["submit"])

    with pytest.raises(ChecksNotSatisfied) as excinfo:
        engine.attempt_transition(
            submission, "publish", editor, _report(abstract=CheckStatus.FAIL)
        )
    assert excinfo.value.offending == {"abstract": "fail"}
    assert _snapshot(submission) == ("submitted", 0, 0)

    outcome = engine.attempt_transition(
        submission, "publish", editor, _report(abstract=CheckStatus.PASS)
    )

    assert outcome.state == "published"
    assert submission.current_state == "published"
    assert submission.version == 1


def test_missing_report_or_category_is_reported_as_missing() -> None:
    engine = _engine()
    submission = _at(engine, "submitted")
    editor = Principal(id="editor")

    with pytest.raises(ChecksNotSatisfied) as no_report:
        engine.attempt_transition(submission, "publish", editor)
    assert no_report.value.offending == {"abstract": "missing"}
    assert not no_report.value.report_supplied

    with pytest.raises(ChecksNotSatisfied) as other_category:
        engine.attempt_transition(submission, "publish", editor, _report(links=CheckStatus.PASS))
    assert other_category.value.offending == {"abstract": "missing"}
    assert other_category.value.report_supplied


def test_report_may_be_supplied_as_a_persisted_payload() -> None:
    engine = _engine()
    submission = _at(engine, "submitted")

    outcome = engine.attempt_transition(
        submission,
        "publish",
        Principal(id="editor"),
        _report(abstract=CheckStatus.PASS).to_dict(),
    )

    assert outcome.record.check_report is not None
    assert outcome.record.check_report["status"] == "pass"


def test_unknown_trigger_leaves_submission_unchanged() -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")

    with pytest.raises(UnknownTransition) as excinfo:
        engine.attempt_transition(submission, "publish", Principal.with_scopes("x", ["submit"]))

    assert excinfo.value.available == ("submit",)
    assert excinfo.value.code == "unknown_transition"
    assert _snapshot(submission) == ("draft", 0, 0)


def test_trigger_from_terminal_state_is_unknown() -> None:
    engine = _engine()
    submission = _at(engine, "published")

    with pytest.raises(UnknownTransition, match="state is terminal"):
        engine.attempt_transition(submission, "publish", Principal(id="editor"))


def test_unknown_trigger_is_checked_before_scopes() -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")

    with pytest.raises(UnknownTransition):
        engine.attempt_transition(submission, "retract", Principal(id="nobody"))


def test_successful_transition_appends_a_record() -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")

    outcome = engine.attempt_transition(
        submission, "submit", Principal.with_scopes("author-7", ["submit"])
    )

    record = outcome.record
    assert submission.history == [record]
    assert record.to_dict() == {
        "submission_id": "sub-1",
        "workflow": "EDITORIAL",
        "from_state": "draft",
        "to_state": "submitted",
        "trigger": "submit",
        "timestamp": "2026-03-14T09:26:53Z",
        "principal_id": "author-7",
        "version": 1,
        "check_report": None,
        "job_type": None,
    }


def test_publish_sets_date_published_once() -> None:
    engine = _engine()
    submission = _at(engine, "submitted")
    submission.date_published = None

    engine.attempt_transition(
        submission, "publish", Principal(id="editor"), _report(abstract=CheckStatus.PASS)
    )

    assert submission.date_published == "2026-03-14T09:26:53Z"


def test_stale_expected_version_is_rejected_before_guards() -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")
    author = Principal.with_scopes("author", ["submit"])

    with pytest.raises(ConcurrentModification) as excinfo:
        engine.attempt_transition(submission, "retract", author, expected_version=3)

    assert excinfo.value.retryable
    assert (excinfo.value.expected_version, excinfo.value.actual_version) == (3, 0)
    engine.attempt_transition(submission, "submit", author, expected_version=0)
    assert submission.version == 1


class _BarrierScopeChecker(PrincipalScopeChecker):
    """Holds every scope check at a barrier so both attempts snapshot before committing."""

    def __init__(self, parties: int) -> None:
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=5)

    def has_scope(self, principal: Principal, scope: str, resource_id: str | None) -> bool:
        self.barrier.wait()
        return super().has_scope(principal, scope, resource_id)


def test_concurrent_attempts_commit_exactly_once() -> None:
    checker = _BarrierScopeChecker(parties=2)
    engine = WorkflowEngine(
        _editorial_workflow(), scope_checker=checker, clock=lambda: _FIXED_NOW
    )
    submission = engine.new_submission("sub-1")
    outcomes: list[str] = []
    errors: list[TransitionError] = []
    lock = threading.Lock()

    def attempt(principal_id: str) -> None:
        try:
            engine.attempt_transition(
                submission, "submit", Principal.with_scopes(principal_id, ["submit"])
            )
        except TransitionError as exc:
            with lock:
                errors.append(exc)
        else:
            with lock:
                outcomes.append(principal_id)

    threads = [threading.Thread(target=attempt, args=(name,)) for name in ("alice", "bob")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(outcomes) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ConcurrentModification)
    assert errors[0].actual_state == "submitted"
    assert submission.version == 1
    assert [record.principal_id for record in submission.history] == outcomes


def test_rejections_and_commits_are_logged() -> None:
    logger = _RecordingLogger()
    engine = _engine(logger)
    submission = engine.new_submission("sub-1")

    with pytest.raises(Forbidden):
        engine.attempt_transition(submission, "submit", Principal(id="reader"))
    engine.attempt_transition(submission, "submit", Principal.with_scopes("author", ["submit"]))

    events = [event for event, _ in logger.events]
    assert events == ["workflow_transition_rejected", "workflow_transition_applied"]
    assert logger.events[0][1]["code"] == "forbidden"
    assert logger.events[1][1]["to_state"] == "submitted"


def test_available_transitions_reports_blockers_without_mutating() -> None:
    engine = _engine()
    submission = _at(engine, "submitted")

    (publish,) = engine.available_transitions(
        submission, Principal(id="editor"), _report(abstract=CheckStatus.ERROR)
    )

    assert publish.transition.name == "publish"
    assert not publish.allowed
    assert publish.unsatisfied_checks == {"abstract": "error"}
    assert publish.to_dict()["to"] == "published"
    assert _snapshot(submission) == ("submitted", 0, 0)


def test_site_scoped_grants_apply_to_matching_submissions() -> None:
    engine = WorkflowEngine(WorkflowRegistry.with_builtins(), clock=lambda: _FIXED_NOW)
    submission = engine.new_submission("sub-9", site="site-a")
    editor = Principal(
        id="editor",
        resource_scopes={"site-a": frozenset({SUBMISSIONS_UPDATE, SUBMISSIONS_PUBLISHING})},
    )

    outcome = engine.attempt_transition(submission, "publish", editor)

    assert outcome.state == "PUBLISHED"
    assert outcome.record.job_type == "PUBLISH"
    assert submission.date_published == "2026-03-14T09:26:53Z"

    other_site = engine.new_submission("sub-10", site="site-b")
    with pytest.raises(Forbidden) as excinfo:
        engine.attempt_transition(other_site, "publish", editor)
    assert excinfo.value.missing_scopes == (SUBMISSIONS_UPDATE, SUBMISSIONS_PUBLISHING)


def test_admin_scope_satisfies_every_requirement() -> None:
    engine = WorkflowEngine(WorkflowRegistry.with_builtins())
    submission = engine.new_submission("sub-3", workflow="OPEN_REVIEW")

    admin = Principal.with_scopes("root", ["system:admin"])

    engine.attempt_transition(submission, "start_review", admin)

    assert submission.current_state == "IN_REVIEW"


def test_submission_payload_round_trip_keeps_history() -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")
    engine.attempt_transition(submission, "submit", Principal.with_scopes("author", ["submit"]))

    restored = Submission.from_dict(submission.to_dict())

    assert restored.to_dict() == submission.to_dict()
    assert restored.history[0].trigger == "submit"


_MALFORMED_REPORT: dict[str, Any] = {
    "results": [{"category": "abstract", "checks": [{"id": "a", "status": "bogus"}]}]
}


@pytest.mark.parametrize(
    "report",
    [_report(abstract=CheckStatus.FAIL), _MALFORMED_REPORT, {"results": "not-a-list"}],
    ids=["failing", "bad-status", "bad-shape"],
)
def test_ungated_transition_ignores_report_contents(report: Any) -> None:
    engine = _engine()
    submission = engine.new_submission("sub-1")

    outcome = engine.attempt_transition(
        submission, "submit", Principal.with_scopes("author", ["submit"]), report
    )

    assert outcome.state == "submitted"
    assert outcome.record.check_report is None
    assert submission.version == 1


def test_unreadable_report_blocks_gated_transition_as_invalid() -> None:
    logger = _RecordingLogger()
    engine = _engine(logger)
    submission = _at(engine, "submitted")

    with pytest.raises(ChecksNotSatisfied) as excinfo:
        engine.attempt_transition(submission, "publish", Principal(id="editor"), _MALFORMED_REPORT)

    assert excinfo.value.offending == {"abstract": "invalid"}
    assert excinfo.value.report_supplied
    assert excinfo.value.report_error is not None
    assert "check report is invalid" in excinfo.value.detail
    assert _snapshot(submission) == ("submitted", 0, 0)
    events = [event for event, _ in logger.events]
    assert events == ["workflow_check_report_invalid", "workflow_transition_rejected"]


def test_available_transitions_marks_unreadable_report_as_invalid() -> None:
    engine = _engine()
    submission = _at(engine, "submitted")

    (publish,) = engine.available_transitions(submission, Principal(id="editor"), [1, 2])

    assert publish.unsatisfied_checks == {"abstract": "invalid"}
    assert not publish.allowed


def test_undeclared_current_state_is_reported_as_such() -> None:
    engine = _engine()
    submission = _at(engine, "archived")

    with pytest.raises(UnknownTransition, match="state is not declared in workflow") as excinfo:
        engine.attempt_transition(submission, "submit", Principal.with_scopes("a", ["submit"]))

    assert not excinfo.value.state_declared
    assert _snapshot(submission) == ("archived", 0, 0)


class _BrokenScopeChecker:
    def has_scope(self, principal: Principal, scope: str, resource_id: str | None) -> bool:
        raise ConnectionError("auth service unavailable")


def test_failing_scope_checker_is_a_logged_forbidden() -> None:
    logger = _RecordingLogger()
    engine = WorkflowEngine(
        _editorial_workflow(),
        scope_checker=_BrokenScopeChecker(),
        clock=lambda: _FIXED_NOW,
        logger=logger,
    )
    submission = engine.new_submission("sub-1")

    with pytest.raises(Forbidden) as excinfo:
        engine.attempt_transition(submission, "submit", Principal.with_scopes("a", ["submit"]))

    assert excinfo.value.missing_scopes == ("submit",)
    assert excinfo.value.scope_check_error == "ConnectionError: auth service unavailable"
    assert _snapshot(submission) == ("draft", 0, 0)
    events = [event for event, _ in logger.events]
    assert events == ["workflow_scope_check_failed", "workflow_transition_rejected"]
    assert logger.events[1][1]["code"] == "forbidden"
