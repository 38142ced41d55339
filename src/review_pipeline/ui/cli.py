"""Command-line interface router for review-pipeline."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, cast

import yaml

from review_pipeline.checks import (
    CheckExecutor,
    CheckRegistry,
    CheckReport,
    CheckSelection,
    CheckStatus,
    default_registry,
    parse_option_text,
)
from review_pipeline.checks.builtin.resolvers import HttpResolver
from review_pipeline.config import ConfigLoadError, ConfigValidationError, load_config
from review_pipeline.documents import load_document
from review_pipeline.errors import InvalidWorkflow, ReviewPipelineError, TransitionError
from review_pipeline.observability import LoggingConfig, configure_logging, correlation_scope
from review_pipeline.ui.render import CLIRenderer, create_renderer
from review_pipeline.workflow import (
    Principal,
    Submission,
    WorkflowEngine,
    WorkflowRegistry,
    load_file,
    render_mermaid,
)

DRY_RUN_SUBMISSION_ID: Final[str] = "dry-run"
DRY_RUN_PRINCIPAL_ID: Final[str] = "cli"


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="review-pipeline",
        description=(
            "review-pipeline — submission checks and review workflows.\n\n"
            "Common workflows:\n"
            "  review-pipeline checks list                 List registered checks\n"
            "  review-pipeline checks run doc.yaml         Run checks on a document\n"
            "  review-pipeline workflow show SIMPLE        Inspect a workflow\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to review TOML config (default: ./review.toml if present).",
    )
    common.add_argument("--log-level", default=None, help="Override logging.level.")
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # checks --------------------------------------------------------------
    checks_parser = subparsers.add_parser("checks", help="Inspect and run document checks")
    checks_sub = checks_parser.add_subparsers(dest="checks_command", required=True)

    list_parser = checks_sub.add_parser("list", parents=[common], help="List registered checks")
    list_parser.add_argument("--tag", action="append", default=[], help="Filter by tag (any)")
    list_parser.add_argument("--category", default=None, help="Filter by category")
    list_parser.set_defaults(handler=_cmd_checks_list)

    run_parser = checks_sub.add_parser(
        "run", parents=[common], help="Run checks against a resolved document (YAML/JSON)"
    )
    run_parser.add_argument("document", help="Path to a resolved document file")
    run_parser.add_argument(
        "--id", dest="ids", action="append", default=[], help="Check id to run (repeatable)"
    )
    run_parser.add_argument("--tag", action="append", default=[], help="Select checks by tag")
    run_parser.add_argument("--category", default=None, help="Select checks by category")
    run_parser.add_argument(
        "--option",
        action="append",
        default=[],
        metavar="CHECK.OPTION=VALUE",
        help="Override a check option (repeatable)",
    )
    run_parser.add_argument("--max-concurrency", type=int, default=None)
    run_parser.add_argument("--timeout", type=float, default=None, help="Per-check timeout (s)")
    run_parser.add_argument(
        "--network",
        action="store_true",
        default=None,
        help="Resolve links and DOIs over HTTP (sets checks.resolve_network)",
    )
    run_parser.set_defaults(handler=_cmd_checks_run)

    # workflow ------------------------------------------------------------
    workflow_parser = subparsers.add_parser("workflow", help="Inspect review workflows")
    workflow_sub = workflow_parser.add_subparsers(dest="workflow_command", required=True)

    wf_list = workflow_sub.add_parser("list", parents=[common], help="List workflows")
    wf_list.set_defaults(handler=_cmd_workflow_list)

    wf_show = workflow_sub.add_parser("show", parents=[common], help="Show one workflow")
    wf_show.add_argument("name", help="Workflow name, e.g. SIMPLE")
    wf_show.add_argument("--mermaid", action="store_true", help="Print a Mermaid diagram")
    wf_show.set_defaults(handler=_cmd_workflow_show)

    wf_validate = workflow_sub.add_parser(
        "validate", parents=[common], help="Validate a workflow definition file"
    )
    wf_validate.add_argument("file", help="Path to a workflow YAML file")
    wf_validate.set_defaults(handler=_cmd_workflow_validate)

    wf_transition = workflow_sub.add_parser(
        "transition", parents=[common], help="Dry-run one transition"
    )
    wf_transition.add_argument("--workflow", default=None, help="Workflow name (default: config)")
    wf_transition.add_argument("--state", required=True, help="Current state")
    wf_transition.add_argument("--trigger", required=True, help="Transition name")
    wf_transition.add_argument(
        "--scope", dest="scopes", action="append", default=[], help="Scope held (repeatable)"
    )
    wf_transition.add_argument("--principal", default=DRY_RUN_PRINCIPAL_ID)
    wf_transition.add_argument("--report", default=None, help="Check report file (JSON/YAML)")
    wf_transition.set_defaults(handler=_cmd_workflow_transition)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_checks_list(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    registry = _check_registry(config)
    definitions = registry.list(tags=args.tag or None, category=args.category)

    if _flag(args, "json"):
        _emit_json({"command": "checks list", "checks": [item.to_dict() for item in definitions]})
        return 0

    renderer = _get_renderer(args)
    if not definitions:
        renderer.text("No checks matched.")
        return 0
    renderer.table(
        ["ID", "CATEGORY", "TAGS", "TITLE"],
        [[item.id, item.category, ",".join(sorted(item.tags)), item.title] for item in definitions],
    )
    return 0


def _cmd_checks_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    registry = _check_registry(config)
    document_path = _existing_file(args.document)
    try:
        document = load_document(document_path)
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    executor_cfg = cast("Mapping[str, Any]", config["executor"])
    executor = CheckExecutor(
        registry,
        max_concurrency=executor_cfg["max_concurrency"],
        timeout_seconds=executor_cfg["check_timeout_seconds"],
        timeouts=executor_cfg["timeouts"],
        services=_check_services(config),
    )
    selection = CheckSelection(ids=tuple(args.ids), tags=tuple(args.tag), category=args.category)
    options = _parse_option_overrides(registry, args.option)

    with correlation_scope(run_id=document_path.name):
        report = executor.run_sync(document, selection, options)

    exit_code = 0 if report.status is CheckStatus.PASS else 1
    if _flag(args, "json"):
        _emit_json({"command": "checks run", "document": str(document_path), **report.to_dict()})
        return exit_code

    _get_renderer(args).report(report)
    return exit_code


def _cmd_workflow_list(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    workflows = _workflow_registry(config)
    rows = [
        {"name": item.name, "label": item.label, "version": item.version} for item in workflows
    ]

    if _flag(args, "json"):
        _emit_json(
            {"command": "workflow list", "default": workflows.default_name, "workflows": rows}
        )
        return 0

    renderer = _get_renderer(args)
    renderer.table(
        ["NAME", "VERSION", "LABEL"],
        [
            [
                f"{row['name']}*" if row["name"] == workflows.default_name else str(row["name"]),
                str(row["version"]),
                str(row["label"]),
            ]
            for row in rows
        ],
    )
    return 0


def _cmd_workflow_show(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    definition = _workflow_registry(config).get(args.name)

    if _flag(args, "mermaid"):
        sys.stdout.write(render_mermaid(definition))
        return 0
    if _flag(args, "json"):
        _emit_json({"command": "workflow show", "workflow": definition.to_dict()})
        return 0

    _get_renderer(args).workflow(definition)
    return 0


def _cmd_workflow_validate(args: argparse.Namespace) -> int:
    path = _existing_file(args.file)
    try:
        definition = load_file(path)
    except InvalidWorkflow as exc:
        if _flag(args, "json"):
            _emit_json({"command": "workflow validate", "valid": False, **exc.to_dict()})
        else:
            renderer = _get_renderer(args)
            renderer.text(f"Invalid workflow {exc.workflow_name!r}:")
            renderer.items(list(exc.problems))
        return 2

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "workflow validate",
                "valid": True,
                "workflow": definition.name,
                "terminal_states": list(definition.terminal_states()),
            }
        )
        return 0
    _get_renderer(args).text(
        f"Workflow {definition.name!r} is valid "
        f"({len(definition.states)} states, {len(definition.transitions)} transitions)."
    )
    return 0


def _cmd_workflow_transition(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    workflows = _workflow_registry(config)
    definition = workflows.default() if args.workflow is None else workflows.get(args.workflow)
    if not definition.has_state(args.state):
        raise CLIError(
            f"state {args.state!r} is not declared in workflow {definition.name!r}", exit_code=2
        )

    report = _load_report(args.report) if args.report else None
    submission = Submission(
        id=DRY_RUN_SUBMISSION_ID, workflow=definition.name, current_state=args.state
    )
    principal = Principal.with_scopes(args.principal, args.scopes)
    engine = WorkflowEngine(workflows)

    try:
        with correlation_scope(
            submission_id=submission.id, workflow=definition.name, trigger=args.trigger
        ):
            outcome = engine.attempt_transition(submission, args.trigger, principal, report)
    except TransitionError as exc:
        if _flag(args, "json"):
            _emit_json({"command": "workflow transition", "ok": False, **exc.to_dict()})
        else:
            print(f"rejected: {exc.code}: {exc.detail}", file=sys.stderr)
        return 1

    if _flag(args, "json"):
        _emit_json({"command": "workflow transition", "ok": True, **outcome.to_dict()})
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Transition", f"{outcome.record.from_state} -> {outcome.state}")
    if outcome.record.job_type:
        renderer.kv("Job", outcome.record.job_type)
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {
        "logging.level": getattr(args, "log_level", None),
        "executor.max_concurrency": getattr(args, "max_concurrency", None),
        "executor.check_timeout_seconds": getattr(args, "timeout", None),
        "checks.resolve_network": getattr(args, "network", None),
    }
    try:
        config = load_config(getattr(args, "config_path", None), cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    configure_logging(LoggingConfig.from_mapping(cast("Mapping[str, object]", config["logging"])))
    return config


def _check_registry(config: Mapping[str, object]) -> CheckRegistry:
    checks_cfg = cast("Mapping[str, Any]", config["checks"])
    try:
        registry = default_registry(extra_catalogs=tuple(checks_cfg["catalog_files"]))
    except (OSError, ValueError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    registry.freeze()
    return registry


def _check_services(config: Mapping[str, object]) -> dict[str, Any]:
    checks_cfg = cast("Mapping[str, Any]", config["checks"])
    if not checks_cfg["resolve_network"]:
        return {}
    resolver = HttpResolver(
        timeout_seconds=checks_cfg["network_timeout_seconds"],
        max_connections=checks_cfg["max_connections"],
    )
    return resolver.services()


def _workflow_registry(config: Mapping[str, object]) -> WorkflowRegistry:
    workflow_cfg = cast("Mapping[str, Any]", config["workflow"])
    try:
        return WorkflowRegistry.with_builtins(
            extra_dirs=tuple(workflow_cfg["definition_dirs"]),
            default_name=workflow_cfg["default_workflow"],
        )
    except (OSError, ReviewPipelineError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _parse_option_overrides(
    registry: CheckRegistry, raw_options: Sequence[str]
) -> dict[str, dict[str, Any]]:
    overrides: dict[str, dict[str, Any]] = {}
    for raw in raw_options:
        target, separator, value = raw.partition("=")
        check_id, dot, option_id = target.rpartition(".")
        if not separator or not dot or not check_id or not option_id:
            raise CLIError(f"--option expects CHECK.OPTION=VALUE, got {raw!r}", exit_code=2)
        option = registry.get(check_id).option(option_id)
        try:
            parsed = value if option is None else parse_option_text(option, value)
        except ValueError as exc:
            raise CLIError(f"{check_id}: {exc}", exit_code=2) from exc
        overrides.setdefault(check_id, {})[option_id] = parsed
    return overrides


def _load_report(raw_path: str) -> CheckReport:
    path = _existing_file(raw_path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
        if not isinstance(payload, Mapping):
            raise ValueError(f"{path}: expected a report mapping")
        return CheckReport.from_dict(payload)
    except (yaml.YAMLError, ValueError, KeyError) as exc:
        raise CLIError(f"invalid check report {path}: {exc}", exit_code=2) from exc


def _existing_file(raw: str) -> Path:
    path = Path(raw).expanduser().resolve()
    if not path.is_file():
        raise CLIError(f"file not found: {path}", exit_code=2)
    return path


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
