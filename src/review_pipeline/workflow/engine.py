"""
review-pipeline — workflow engine.

File: src/review_pipeline/workflow/engine.py

Purpose
- Interpret any ``WorkflowDefinition``: resolve a trigger, evaluate its guards,
  and move a submission to the next state with a transition record.

What should be included in this file
- ``Submission``: the caller-owned state carrier (state, version, history).
- ``WorkflowTransitionRecord`` and ``TransitionOutcome`` as plain serializable data.
- ``WorkflowEngine.attempt_transition`` and the read-only ``available_transitions``.

Functional requirements
- Guard order: trigger resolution, then scopes, then check gating.
- Guards are evaluated against a ``(current_state, version)`` snapshot; the commit
  is a compare-and-swap on ``version``. A lost race raises
  ``ConcurrentModification`` and leaves the submission untouched.
- Failed attempts never change state, version or history.
- Ungated transitions ignore the supplied report. On a gated transition an
  unreadable report marks every requirement ``invalid``, and a failing scope
  checker denies every required scope; both surface as typed rejections.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from review_pipeline.checks.models import CheckReport, CheckStatus
from review_pipeline.errors import (
    INVALID_STATUS,
    MISSING_STATUS,
    ChecksNotSatisfied,
    ConcurrentModification,
    Forbidden,
    TransitionError,
    UnknownTransition,
)
from review_pipeline.workflow.definition import WorkflowDefinition, WorkflowTransition
from review_pipeline.workflow.registry import WorkflowRegistry
from review_pipeline.workflow.scopes import (
    Principal,
    PrincipalScopeChecker,
    ScopeChecker,
    missing_scopes,
)

Clock = Callable[[], datetime]
ReportInput = CheckReport | Mapping[str, Any] | None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class WorkflowTransitionRecord:
    """Audit entry appended to ``Submission.history`` on every committed transition."""

    submission_id: str
    workflow: str
    from_state: str
    to_state: str
    trigger: str
    timestamp: str
    principal_id: str
    version: int
    check_report: Mapping[str, Any] | None = None
    job_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "workflow": self.workflow,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "trigger": self.trigger,
            "timestamp": self.timestamp,
            "principal_id": self.principal_id,
            "version": self.version,
            "check_report": None if self.check_report is None else dict(self.check_report),
            "job_type": self.job_type,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> WorkflowTransitionRecord:
        report = payload.get("check_report")
        return cls(
            submission_id=str(payload["submission_id"]),
            workflow=str(payload["workflow"]),
            from_state=str(payload["from_state"]),
            to_state=str(payload["to_state"]),
            trigger=str(payload["trigger"]),
            timestamp=str(payload["timestamp"]),
            principal_id=str(payload["principal_id"]),
            version=int(payload["version"]),
            check_report=dict(report) if isinstance(report, Mapping) else None,
            job_type=payload.get("job_type"),
        )


@dataclass(slots=True, eq=False)
class Submission:
    """Submission state as seen by the engine.

    Storage is the caller's concern; ``to_dict``/``from_dict`` exchange plain data.
    Only the engine should change ``current_state``, ``version`` and ``history``.
    """

    id: str
    workflow: str
    current_state: str
    version: int = 0
    history: list[WorkflowTransitionRecord] = field(default_factory=list)
    site: str | None = None
    date_published: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def new(
        cls, submission_id: str, definition: WorkflowDefinition, *, site: str | None = None
    ) -> Submission:
        return cls(
            id=submission_id,
            workflow=definition.name,
            current_state=definition.initial_state,
            site=site,
        )

    def snapshot(self) -> tuple[str, int]:
        with self._lock:
            return self.current_state, self.version

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "id": self.id,
                "workflow": self.workflow,
                "current_state": self.current_state,
                "version": self.version,
                "site": self.site,
                "date_published": self.date_published,
                "history": [record.to_dict() for record in self.history],
            }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Submission:
        return cls(
            id=str(payload["id"]),
            workflow=str(payload["workflow"]),
            current_state=str(payload["current_state"]),
            version=int(payload.get("version", 0)),
            history=[
                WorkflowTransitionRecord.from_dict(item) for item in payload.get("history", ())
            ],
            site=payload.get("site"),
            date_published=payload.get("date_published"),
        )


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    state: str
    record: WorkflowTransitionRecord

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state, "record": self.record.to_dict()}


@dataclass(frozen=True, slots=True)
class TransitionAvailability:
    """Admissibility of one outgoing transition for a principal and report."""

    transition: WorkflowTransition
    missing_scopes: tuple[str, ...] = ()
    unsatisfied_checks: Mapping[str, str] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return not self.missing_scopes and not self.unsatisfied_checks

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.transition.name,
            "to": self.transition.target,
            "label": self.transition.label,
            "allowed": self.allowed,
            "missing_scopes": list(self.missing_scopes),
            "unsatisfied_checks": dict(self.unsatisfied_checks),
        }


def _as_report(report: ReportInput) -> CheckReport | None:
    if report is None or isinstance(report, CheckReport):
        return report
    if not isinstance(report, Mapping):
        raise TypeError(f"check report must be a mapping, got {type(report).__name__}")
    return CheckReport.from_dict(report)


def _read_report(report: ReportInput) -> tuple[CheckReport | None, str | None]:
    """Return ``(report, error)``; a payload that cannot be rebuilt yields its error."""

    try:
        return _as_report(report), None
    except (KeyError, TypeError, ValueError) as exc:
        return None, f"{type(exc).__name__}: {exc}"


def unsatisfied_checks(
    transition: WorkflowTransition,
    report: CheckReport | None,
    *,
    absent_status: str = MISSING_STATUS,
) -> tuple[dict[str, str], dict[str, str]]:
    """Return ``(categories, check_ids)`` that did not roll up to ``pass``.

    Requirements the report does not cover are marked with ``absent_status``.
    """

    categories: dict[str, str] = {}
    check_ids: dict[str, str] = {}
    for category in transition.required_check_categories:
        status = None if report is None else report.category_status(category)
        if status is None:
            categories[category] = absent_status
        elif status is not CheckStatus.PASS:
            categories[category] = str(status)
    for check_id in transition.required_check_ids:
        status = None if report is None else report.check_status(check_id)
        if status is None:
            check_ids[check_id] = absent_status
        elif status is not CheckStatus.PASS:
            check_ids[check_id] = str(status)
    return categories, check_ids


class WorkflowEngine:
    """One generic interpreter for every registered workflow."""

    def __init__(
        self,
        workflows: WorkflowRegistry | WorkflowDefinition,
        *,
        scope_checker: ScopeChecker | None = None,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        if isinstance(workflows, WorkflowDefinition):
            workflows = WorkflowRegistry([workflows], default_name=workflows.name, logger=logger)
        self._workflows = workflows
        self._scopes = scope_checker if scope_checker is not None else PrincipalScopeChecker()
        self._clock = clock if clock is not None else _utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def workflows(self) -> WorkflowRegistry:
        return self._workflows

    def definition_for(self, submission: Submission) -> WorkflowDefinition:
        return self._workflows.get(submission.workflow)

    def new_submission(
        self, submission_id: str, *, workflow: str | None = None, site: str | None = None
    ) -> Submission:
        definition = (
            self._workflows.default() if workflow is None else self._workflows.get(workflow)
        )
        return Submission.new(submission_id, definition, site=site)

    def attempt_transition(
        self,
        submission: Submission,
        trigger: str,
        principal: Principal,
        latest_check_report: ReportInput = None,
        *,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> TransitionOutcome:
        """Apply ``trigger`` to ``submission`` or raise a ``TransitionError``."""

        definition = self.definition_for(submission)
        state, version = submission.snapshot()
        try:
            if expected_version is not None and expected_version != version:
                raise ConcurrentModification(
                    submission_id=submission.id,
                    trigger=trigger,
                    expected_version=expected_version,
                    actual_version=version,
                    actual_state=state,
                )

            transition = definition.transition(state, trigger)
            if transition is None:
                raise UnknownTransition(
                    submission_id=submission.id,
                    trigger=trigger,
                    from_state=state,
                    available=[item.name for item in definition.transitions_from(state)],
                    state_declared=definition.has_state(state),
                )

            lacking, scope_error = self._lacking_scopes(submission, transition, principal)
            if lacking:
                raise Forbidden(
                    submission_id=submission.id,
                    trigger=trigger,
                    missing_scopes=lacking,
                    scope_check_error=scope_error,
                )

            # Ungated transitions ignore the report, malformed or not.
            report: CheckReport | None = None
            if transition.requires_checks:
                report, report_error = self._gate_report(submission, trigger, latest_check_report)
                categories, check_ids = unsatisfied_checks(
                    transition,
                    report,
                    absent_status=MISSING_STATUS if report_error is None else INVALID_STATUS,
                )
                if categories or check_ids:
                    raise ChecksNotSatisfied(
                        submission_id=submission.id,
                        trigger=trigger,
                        offending_categories=categories,
                        offending_check_ids=check_ids,
                        report_supplied=latest_check_report is not None,
                        report_error=report_error,
                    )

            timestamp = _isoformat(now if now is not None else self._clock())
            record = WorkflowTransitionRecord(
                submission_id=submission.id,
                workflow=definition.name,
                from_state=state,
                to_state=transition.target,
                trigger=transition.name,
                timestamp=timestamp,
                principal_id=principal.id,
                version=version + 1,
                check_report=None if report is None else report.to_dict(),
                job_type=transition.job_type,
            )
            self._commit(submission, transition, record, expected=(state, version))
        except TransitionError as exc:
            self._logger.info(
                "workflow_transition_rejected",
                submission_id=submission.id,
                workflow=definition.name,
                trigger=trigger,
                from_state=state,
                code=exc.code,
                detail=exc.detail,
            )
            raise

        self._logger.info(
            "workflow_transition_applied",
            submission_id=submission.id,
            workflow=definition.name,
            trigger=record.trigger,
            from_state=record.from_state,
            to_state=record.to_state,
            version=record.version,
            principal_id=record.principal_id,
            job_type=record.job_type,
        )
        return TransitionOutcome(state=record.to_state, record=record)

    def available_transitions(
        self,
        submission: Submission,
        principal: Principal,
        latest_check_report: ReportInput = None,
    ) -> tuple[TransitionAvailability, ...]:
        """Describe every outgoing transition without changing the submission."""

        definition = self.definition_for(submission)
        state, _ = submission.snapshot()
        transitions = definition.transitions_from(state)
        report: CheckReport | None = None
        absent_status = MISSING_STATUS
        if any(transition.requires_checks for transition in transitions):
            report, report_error = self._gate_report(submission, None, latest_check_report)
            if report_error is not None:
                absent_status = INVALID_STATUS

        available: list[TransitionAvailability] = []
        for transition in transitions:
            categories, check_ids = (
                unsatisfied_checks(transition, report, absent_status=absent_status)
                if transition.requires_checks
                else ({}, {})
            )
            lacking, _ = self._lacking_scopes(submission, transition, principal)
            available.append(
                TransitionAvailability(
                    transition=transition,
                    missing_scopes=lacking,
                    unsatisfied_checks={**categories, **check_ids},
                )
            )
        return tuple(available)

    def _lacking_scopes(
        self, submission: Submission, transition: WorkflowTransition, principal: Principal
    ) -> tuple[tuple[str, ...], str | None]:
        """Scopes ``principal`` lacks; a failing scope checker denies every required scope."""

        try:
            lacking = missing_scopes(
                self._scopes, principal, transition.required_scopes, submission.site
            )
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "workflow_scope_check_failed",
                submission_id=submission.id,
                trigger=transition.name,
                principal_id=principal.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return transition.required_scopes, f"{type(exc).__name__}: {exc}"
        return lacking, None

    def _gate_report(
        self, submission: Submission, trigger: str | None, latest_check_report: ReportInput
    ) -> tuple[CheckReport | None, str | None]:
        report, error = _read_report(latest_check_report)
        if error is not None:
            self._logger.warning(
                "workflow_check_report_invalid",
                submission_id=submission.id,
                trigger=trigger,
                error=error,
            )
        return report, error

    @staticmethod
    def _commit(
        submission: Submission,
        transition: WorkflowTransition,
        record: WorkflowTransitionRecord,
        *,
        expected: tuple[str, int],
    ) -> None:
        expected_state, expected_version = expected
        with submission._lock:
            if (
                submission.version != expected_version
                or submission.current_state != expected_state
            ):
                raise ConcurrentModification(
                    submission_id=submission.id,
                    trigger=record.trigger,
                    expected_version=expected_version,
                    actual_version=submission.version,
                    actual_state=submission.current_state,
                )
            submission.current_state = transition.target
            submission.version = expected_version + 1
            submission.history.append(record)
            if transition.options.sets_published_date and submission.date_published is None:
                submission.date_published = record.timestamp


__all__ = [
    "Submission",
    "TransitionAvailability",
    "TransitionOutcome",
    "WorkflowEngine",
    "WorkflowTransitionRecord",
    "unsatisfied_checks",
]
