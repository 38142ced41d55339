"""
review-pipeline — typed error taxonomy.

File: src/review_pipeline/errors.py

Purpose
- Define every typed outcome the review core raises to its callers.

What should be included in this file
- Configuration-time errors (duplicate check ids, unknown checks, malformed workflows).
- Caller errors raised by the workflow engine guard steps.
- Optimistic-concurrency conflicts.

Functional requirements
- Every error exposes a stable machine code and a JSON-safe ``to_dict`` payload.
- Configuration errors are also ``ValueError`` so loaders can be caught uniformly.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

MISSING_STATUS: Final[str] = "missing"
INVALID_STATUS: Final[str] = "invalid"


class ReviewPipelineError(RuntimeError):
    """Base error for every typed outcome of the review core."""

    code: str = "review_pipeline_error"
    retryable: bool = False

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)

    def __str__(self) -> str:
        return f"code={self.code} retryable={str(self.retryable).lower()} detail={self.detail}"

    def payload(self) -> dict[str, JSONValue]:
        return {}

    def to_dict(self) -> dict[str, JSONValue]:
        """Stable-key JSON-safe export for surfacing to clients."""

        return {
            "code": self.code,
            "detail": self.detail,
            "retryable": self.retryable,
            **self.payload(),
        }


class ConfigurationError(ReviewPipelineError, ValueError):
    """Configuration-time invariant violation; fatal at startup."""

    code = "configuration_error"


class DuplicateCheckId(ConfigurationError):
    """Raised when a registration batch collides with known or batch-local ids."""

    code = "duplicate_check_id"

    def __init__(self, ids: Iterable[str]) -> None:
        self.ids = tuple(sorted(set(ids)))
        super().__init__(f"duplicate check id(s): {', '.join(self.ids)}")

    def payload(self) -> dict[str, JSONValue]:
        return {"ids": list(self.ids)}


class CheckNotFound(ConfigurationError):
    code = "check_not_found"

    def __init__(self, check_id: str) -> None:
        self.check_id = check_id
        super().__init__(f"unknown check id: {check_id!r}")

    def payload(self) -> dict[str, JSONValue]:
        return {"check_id": self.check_id}


class InvalidCheckOptions(ConfigurationError):
    """Raised when supplied options do not satisfy a check's option schema."""

    code = "invalid_check_options"

    def __init__(self, check_id: str, problems: Iterable[str]) -> None:
        self.check_id = check_id
        self.problems = tuple(problems)
        super().__init__(f"invalid options for check {check_id!r}: {'; '.join(self.problems)}")

    def payload(self) -> dict[str, JSONValue]:
        return {"check_id": self.check_id, "problems": list(self.problems)}


class InvalidWorkflow(ConfigurationError):
    """Raised when a workflow definition fails structural validation."""

    code = "invalid_workflow"

    def __init__(self, workflow_name: str, problems: Iterable[str]) -> None:
        self.workflow_name = workflow_name
        self.problems = tuple(problems)
        rendered = "\n".join(f"- {item}" for item in self.problems) or "- unknown problem"
        super().__init__(f"invalid workflow {workflow_name!r}:\n{rendered}")

    def payload(self) -> dict[str, JSONValue]:
        return {"workflow": self.workflow_name, "problems": list(self.problems)}


class WorkflowNotFound(ConfigurationError):
    code = "workflow_not_found"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"workflow {name!r} not found")

    def payload(self) -> dict[str, JSONValue]:
        return {"workflow": self.name}


class TransitionError(ReviewPipelineError):
    """Recoverable caller error raised by ``WorkflowEngine.attempt_transition``."""

    code = "transition_error"

    def __init__(self, detail: str, *, submission_id: str, trigger: str) -> None:
        self.submission_id = submission_id
        self.trigger = trigger
        super().__init__(detail)

    def payload(self) -> dict[str, JSONValue]:
        return {"submission_id": self.submission_id, "trigger": self.trigger}


class UnknownTransition(TransitionError):
    code = "unknown_transition"

    def __init__(
        self,
        *,
        submission_id: str,
        trigger: str,
        from_state: str,
        available: Iterable[str] = (),
        state_declared: bool = True,
    ) -> None:
        self.from_state = from_state
        self.available = tuple(available)
        self.state_declared = state_declared
        if not state_declared:
            detail = (
                f"no transition {trigger!r} from state {from_state!r}; "
                "state is not declared in workflow"
            )
        elif self.available:
            detail = (
                f"no transition {trigger!r} from state {from_state!r}; "
                f"available: {', '.join(self.available)}"
            )
        else:
            detail = f"no transition {trigger!r} from state {from_state!r}; state is terminal"
        super().__init__(detail, submission_id=submission_id, trigger=trigger)

    def payload(self) -> dict[str, JSONValue]:
        return {
            **super().payload(),
            "from_state": self.from_state,
            "available": list(self.available),
        }


class Forbidden(TransitionError):
    code = "forbidden"

    def __init__(
        self,
        *,
        submission_id: str,
        trigger: str,
        missing_scopes: Iterable[str],
        scope_check_error: str | None = None,
    ) -> None:
        self.missing_scopes = tuple(missing_scopes)
        self.scope_check_error = scope_check_error
        detail = f"transition {trigger!r} requires scope(s): {', '.join(self.missing_scopes)}"
        if scope_check_error is not None:
            detail = f"{detail}; scope check failed: {scope_check_error}"
        super().__init__(
            detail,
            submission_id=submission_id,
            trigger=trigger,
        )

    def payload(self) -> dict[str, JSONValue]:
        return {
            **super().payload(),
            "missing_scopes": list(self.missing_scopes),
            "scope_check_error": self.scope_check_error,
        }


class ChecksNotSatisfied(TransitionError):
    """Raised when required categories or check ids have not rolled up to ``pass``.

    ``offending`` maps each category or check id to the status observed in the
    supplied report, or ``"missing"`` when the report does not contain it. When no
    report was supplied at all, every requirement is reported as missing; when the
    supplied report cannot be read, every requirement is reported as ``"invalid"``.
    """

    code = "checks_not_satisfied"

    def __init__(
        self,
        *,
        submission_id: str,
        trigger: str,
        offending_categories: Mapping[str, str],
        offending_check_ids: Mapping[str, str],
        report_supplied: bool = True,
        report_error: str | None = None,
    ) -> None:
        self.offending_categories = dict(offending_categories)
        self.offending_check_ids = dict(offending_check_ids)
        self.report_supplied = report_supplied
        self.report_error = report_error
        parts = [f"category {key}={value}" for key, value in self.offending_categories.items()]
        parts.extend(f"check {key}={value}" for key, value in self.offending_check_ids.items())
        if report_error is not None:
            prefix = f"check report is invalid ({report_error}); "
        elif not report_supplied:
            prefix = "no check report supplied; "
        else:
            prefix = ""
        super().__init__(
            f"{prefix}transition {trigger!r} blocked by {', '.join(parts)}",
            submission_id=submission_id,
            trigger=trigger,
        )

    @property
    def offending(self) -> dict[str, str]:
        return {**self.offending_categories, **self.offending_check_ids}

    def payload(self) -> dict[str, JSONValue]:
        categories: dict[str, JSONValue] = dict(self.offending_categories)
        check_ids: dict[str, JSONValue] = dict(self.offending_check_ids)
        return {
            **super().payload(),
            "offending_categories": categories,
            "offending_check_ids": check_ids,
            "report_supplied": self.report_supplied,
            "report_error": self.report_error,
        }


class ConcurrentModification(TransitionError):
    """Raised when the submission changed between read and commit."""

    code = "concurrent_modification"
    retryable = True

    def __init__(
        self,
        *,
        submission_id: str,
        trigger: str,
        expected_version: int,
        actual_version: int,
        actual_state: str,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.actual_state = actual_state
        super().__init__(
            f"submission {submission_id!r} moved to version {actual_version} "
            f"(state {actual_state!r}); expected version {expected_version}",
            submission_id=submission_id,
            trigger=trigger,
        )

    def payload(self) -> dict[str, JSONValue]:
        return {
            **super().payload(),
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
            "actual_state": self.actual_state,
        }


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Render any exception as a client-facing payload."""

    if isinstance(exc, ReviewPipelineError):
        return exc.to_dict()
    return {"code": "internal_error", "detail": str(exc), "retryable": False}


__all__ = [
    "INVALID_STATUS",
    "MISSING_STATUS",
    "CheckNotFound",
    "ChecksNotSatisfied",
    "ConcurrentModification",
    "ConfigurationError",
    "DuplicateCheckId",
    "Forbidden",
    "InvalidCheckOptions",
    "InvalidWorkflow",
    "ReviewPipelineError",
    "TransitionError",
    "UnknownTransition",
    "WorkflowNotFound",
    "error_payload",
]
