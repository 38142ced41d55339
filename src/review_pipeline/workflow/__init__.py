"""Workflow definitions, registry, scopes and the generic transition engine."""

from review_pipeline.workflow.definition import (
    TransitionOptions,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTransition,
    load,
    load_file,
)
from review_pipeline.workflow.diagram import render_mermaid
from review_pipeline.workflow.engine import (
    Submission,
    TransitionAvailability,
    TransitionOutcome,
    WorkflowEngine,
    WorkflowTransitionRecord,
)
from review_pipeline.workflow.registry import (
    BUILTIN_WORKFLOW_NAMES,
    DEFAULT_WORKFLOW,
    WorkflowRegistry,
    builtin_workflows,
    load_definition_dir,
)
from review_pipeline.workflow.scopes import (
    SUBMISSIONS_PUBLISHING,
    SUBMISSIONS_UPDATE,
    Principal,
    PrincipalScopeChecker,
    ScopeChecker,
)

__all__ = [
    "BUILTIN_WORKFLOW_NAMES",
    "DEFAULT_WORKFLOW",
    "SUBMISSIONS_PUBLISHING",
    "SUBMISSIONS_UPDATE",
    "Principal",
    "PrincipalScopeChecker",
    "ScopeChecker",
    "Submission",
    "TransitionAvailability",
    "TransitionOptions",
    "TransitionOutcome",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowRegistry",
    "WorkflowState",
    "WorkflowTransition",
    "WorkflowTransitionRecord",
    "builtin_workflows",
    "load",
    "load_definition_dir",
    "load_file",
    "render_mermaid",
]
