"""
review-pipeline — check executor.

File: src/review_pipeline/checks/executor.py

Purpose
- Run a selected set of checks against one resolved document and compile a report.

Normative behavior
- Selection resolves to a concrete, id-deduplicated list: explicit ids first in the
  order given, then tag/category matches in registration order. An empty selection
  runs every registered check.
- Each check gets its own frozen copy of the document and its resolved options;
  no check can observe another's results.
- Checks run concurrently, bounded by ``max_concurrency``; synchronous checks run on
  their own daemon thread, so a timed-out check stops counting toward the bound and
  each check's timeout starts when that check starts.
- Exceptions and timeouts are downgraded to a single ``error`` result for that check
  so one broken check never aborts the batch.
- Compiled results keep selection order, then emission order within a check.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Final

import structlog

from review_pipeline.checks.models import (
    CheckContext,
    CheckDefinition,
    CheckImplementation,
    CheckOutput,
    CheckReport,
    CheckResult,
    CompiledCheckResult,
    RawCheckResult,
    errored,
)
from review_pipeline.checks.options import resolve_options
from review_pipeline.checks.registry import CheckRegistry
from review_pipeline.documents.model import ResolvedDocument
from review_pipeline.errors import CheckNotFound
from review_pipeline.utils.concurrency import (
    CancellationToken,
    WorkerPool,
    default_concurrency,
    run_in_thread,
    run_with_timeout,
)

DEFAULT_CHECK_TIMEOUT_SECONDS: Final[float] = 30.0
NO_IMPLEMENTATION_MESSAGE: Final[str] = "no implementation registered for this check"


@dataclass(frozen=True, slots=True)
class CheckSelection:
    """Which checks to run. All fields empty means every registered check."""

    ids: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    category: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.ids, str) or isinstance(self.tags, str):
            raise ValueError("CheckSelection ids/tags must be collections, not strings")
        object.__setattr__(self, "ids", tuple(self.ids))
        object.__setattr__(self, "tags", tuple(self.tags))
        if self.category is not None and not self.category.strip():
            object.__setattr__(self, "category", None)

    @property
    def is_empty(self) -> bool:
        return not self.ids and not self.tags and self.category is None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> CheckSelection:
        if not payload:
            return cls()
        category = payload.get("category")
        return cls(
            ids=tuple(payload.get("ids") or ()),
            tags=tuple(payload.get("tags") or ()),
            category=category if isinstance(category, str) else None,
        )


class CheckExecutor:
    """Runs checks from a ``CheckRegistry`` and compiles a ``CheckReport``."""

    def __init__(
        self,
        registry: CheckRegistry,
        *,
        max_concurrency: int | None = None,
        timeout_seconds: float = DEFAULT_CHECK_TIMEOUT_SECONDS,
        timeouts: Mapping[str, float] | None = None,
        services: Mapping[str, Any] | None = None,
        logger: Any | None = None,
    ) -> None:
        concurrency = default_concurrency() if max_concurrency is None else max_concurrency
        if concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        resolved_timeouts = dict(timeouts or {})
        for check_id, value in resolved_timeouts.items():
            if value <= 0:
                raise ValueError(f"timeout for check {check_id!r} must be > 0")

        self._registry = registry
        self._max_concurrency = concurrency
        self._timeout_seconds = float(timeout_seconds)
        self._timeouts = resolved_timeouts
        self._services = MappingProxyType(dict(services or {}))
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._last_peak_concurrency = 0

    @property
    def registry(self) -> CheckRegistry:
        return self._registry

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def last_peak_concurrency(self) -> int:
        """Highest number of checks in flight during the most recent run."""

        return self._last_peak_concurrency

    def timeout_for(self, check_id: str) -> float:
        return self._timeouts.get(check_id, self._timeout_seconds)

    def resolve(self, selection: CheckSelection | None = None) -> tuple[CheckDefinition, ...]:
        """Resolve ``selection`` to an ordered, id-deduplicated definition list."""

        selected = selection or CheckSelection()
        if selected.is_empty:
            return self._registry.list()

        ordered: dict[str, CheckDefinition] = {}
        for check_id in selected.ids:
            ordered.setdefault(check_id, self._registry.get(check_id))
        if selected.tags or selected.category is not None:
            matches = self._registry.list(
                tags=selected.tags or None,
                category=selected.category,
            )
            for definition in matches:
                ordered.setdefault(definition.id, definition)
        return tuple(ordered.values())

    async def run(
        self,
        document: ResolvedDocument,
        selection: CheckSelection | None = None,
        options: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> CheckReport:
        """Run the selected checks and return the compiled report.

        ``options`` maps check id to option overrides. Option validation happens for
        every selected check before any check runs.
        """

        definitions = self.resolve(selection)
        supplied = dict(options or {})
        for check_id in supplied:
            if check_id not in self._registry:
                raise CheckNotFound(check_id)
        resolved_options = {
            definition.id: resolve_options(definition, supplied.get(definition.id))
            for definition in definitions
        }

        started = time.perf_counter()
        self._logger.debug(
            "check_executor_run_started",
            check_ids=[definition.id for definition in definitions],
            max_concurrency=self._max_concurrency,
        )

        pool: WorkerPool[list[CompiledCheckResult]] = WorkerPool(
            max_concurrency=self._max_concurrency,
            cancel_token=cancel_token,
        )
        try:
            per_check = await pool.gather(
                self._run_check(
                    definition=definition,
                    document=document,
                    options=resolved_options[definition.id],
                    cancel_token=cancel_token,
                )
                for definition in definitions
            )
        finally:
            self._last_peak_concurrency = pool.peak_concurrency

        report = CheckReport.compile(item for batch in per_check for item in batch)
        self._logger.info(
            "check_executor_report_compiled",
            status=report.status.value,
            checks=len(definitions),
            results=len(report.compiled),
            categories={group.category: group.status.value for group in report.results},
            duration_ms=_duration_ms(started),
        )
        return report

    def run_sync(
        self,
        document: ResolvedDocument,
        selection: CheckSelection | None = None,
        options: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> CheckReport:
        """Blocking wrapper around ``run`` for callers without an event loop."""

        return asyncio.run(self.run(document, selection, options))

    async def _run_check(
        self,
        *,
        definition: CheckDefinition,
        document: ResolvedDocument,
        options: Mapping[str, Any],
        cancel_token: CancellationToken | None,
    ) -> list[CompiledCheckResult]:
        implementation = self._registry.implementation(definition.id)
        if implementation is None:
            self._logger.warning("check_executor_missing_implementation", check_id=definition.id)
            return [_compile(definition, errored(NO_IMPLEMENTATION_MESSAGE))]

        timeout_seconds = self.timeout_for(definition.id)
        context = CheckContext(
            check_id=definition.id,
            options=options,
            timeout_seconds=timeout_seconds,
            services=self._services,
        )

        try:
            view = document.frozen_view()
            raw_output = await run_with_timeout(
                _invoke(implementation, view, context),
                timeout_seconds,
                cancel_token,
            )
            raw_results = normalize_check_output(raw_output)
        except TimeoutError:
            self._logger.warning(
                "check_executor_check_timed_out",
                check_id=definition.id,
                timeout_seconds=timeout_seconds,
            )
            return [
                _compile(
                    definition,
                    errored(
                        f"check timed out after {timeout_seconds:g}s",
                        help="The check did not finish in time; rerun or raise its timeout",
                    ),
                )
            ]
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "check_executor_check_raised",
                check_id=definition.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return [_compile(definition, errored(f"{type(exc).__name__}: {exc}"))]

        return [_compile(definition, raw) for raw in raw_results]


def normalize_check_output(output: CheckOutput) -> list[RawCheckResult]:
    """Flatten a check's return value into raw results.

    Accepts ``None`` (zero results), one result or mapping, or a sequence of them.
    """

    if output is None:
        return []
    if isinstance(output, (RawCheckResult, Mapping)):
        return [_as_raw(output, 0)]
    if isinstance(output, (str, bytes)) or not isinstance(output, Iterable):
        raise TypeError(f"unsupported check output type {type(output).__name__}")
    items: Sequence[object] = list(output)
    return [_as_raw(item, index) for index, item in enumerate(items)]


async def _invoke(
    implementation: CheckImplementation,
    document: ResolvedDocument,
    context: CheckContext,
) -> CheckOutput:
    if _is_async_callable(implementation):
        candidate: object = implementation(document, context)
    else:
        # Sync checks cannot be interrupted; a timed-out one is left to finish alone.
        candidate = await run_in_thread(
            implementation, document, context, name=f"review-check-{context.check_id}"
        )
    if inspect.isawaitable(candidate):
        return await candidate  # type: ignore[no-any-return]
    return candidate  # type: ignore[return-value]


def _is_async_callable(candidate: object) -> bool:
    if inspect.iscoroutinefunction(candidate):
        return True
    call = getattr(candidate, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


def _as_raw(item: object, index: int) -> RawCheckResult:
    if isinstance(item, RawCheckResult):
        return item
    if isinstance(item, Mapping):
        try:
            return RawCheckResult.from_mapping(item)
        except ValueError as exc:
            raise ValueError(f"check output[{index}]: {exc}") from exc
    raise TypeError(f"check output[{index}]: unsupported type {type(item).__name__}")


def _compile(definition: CheckDefinition, raw: RawCheckResult) -> CompiledCheckResult:
    return CompiledCheckResult(definition=definition, result=CheckResult.from_raw(definition, raw))


def _duration_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


__all__ = [
    "DEFAULT_CHECK_TIMEOUT_SECONDS",
    "NO_IMPLEMENTATION_MESSAGE",
    "CheckExecutor",
    "CheckSelection",
    "normalize_check_output",
]
