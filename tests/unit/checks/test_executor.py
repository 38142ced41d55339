"""
review-pipeline — unit tests for the check executor

File: tests/unit/checks/test_executor.py

Purpose
- Validate concurrent check execution and report compilation.

What this test file should cover
- A raising, hanging or unbound check becomes an ``error`` result without
  affecting the other checks, including a blocking synchronous check queued ahead
  of them.
- The concurrency bound is honored.
- Option validation happens before any check runs.
- Repeated runs over the same document produce the same report.

Non-functional requirements
- Offline and deterministic; sleeps stay in the tens of milliseconds.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Mapping
from typing import Any

import pytest

from review_pipeline.checks import (
    CheckContext,
    CheckDefinition,
    CheckExecutor,
    CheckOption,
    CheckRegistry,
    CheckSelection,
    CheckStatus,
    OptionType,
    RawCheckResult,
    failed,
    passed,
)
from review_pipeline.checks.executor import NO_IMPLEMENTATION_MESSAGE, normalize_check_output
from review_pipeline.documents import ResolvedDocument
from review_pipeline.errors import CheckNotFound, InvalidCheckOptions
from review_pipeline.utils.concurrency import CancellationToken


def _definition(
    check_id: str,
    category: str = "content",
    *,
    tags: tuple[str, ...] = (),
    options: tuple[CheckOption, ...] = (),
) -> CheckDefinition:
    return CheckDefinition(
        id=check_id,
        title=check_id,
        purpose=f"ensure {check_id}",
        category=category,
        tags=frozenset(tags),
        options=options,
    )


def _document() -> ResolvedDocument:
    return ResolvedDocument(
        frontmatter={"title": "On Review", "keywords": ["review", "workflow"]},
        file="paper.md",
    )


def _registry(implementations: Mapping[str, Any]) -> CheckRegistry:
    return CheckRegistry(
        [_definition(check_id) for check_id in implementations],
        implementations=implementations,
    )


def _always_pass(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    return passed("ok", file=document.file)


def _always_fail(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    return failed("nope", help="fix it")


def _explodes(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    raise RuntimeError("kaboom")


async def _hangs(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    await asyncio.sleep(5)
    return passed("too late")


async def test_raising_check_is_reported_as_error_and_others_still_run() -> None:
    registry = _registry({"good": _always_pass, "bad": _explodes, "meh": _always_fail})
    executor = CheckExecutor(registry, max_concurrency=2)

    report = await executor.run(_document())

    assert [item.id for item in report.compiled] == ["good", "bad", "meh"]
    assert report.check_status("good") is CheckStatus.PASS
    assert report.check_status("meh") is CheckStatus.FAIL
    bad = next(item for item in report.compiled if item.id == "bad")
    assert bad.status is CheckStatus.ERROR
    assert bad.result.message == "RuntimeError: kaboom"
    assert report.status is CheckStatus.ERROR


async def test_hanging_check_times_out_as_error() -> None:
    registry = _registry({"slow": _hangs, "fast": _always_pass})
    executor = CheckExecutor(registry, timeouts={"slow": 0.05})

    report = await executor.run(_document())

    slow = next(item for item in report.compiled if item.id == "slow")
    assert slow.status is CheckStatus.ERROR
    assert "timed out" in slow.result.message
    assert report.check_status("fast") is CheckStatus.PASS
    assert executor.timeout_for("fast") == executor.timeout_for("unknown")


def _blocks(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    time.sleep(0.6)
    return passed("too late")


async def test_timed_out_sync_check_does_not_starve_the_next_one() -> None:
    registry = _registry({"slow": _blocks, "fast": _always_pass})
    executor = CheckExecutor(
        registry, max_concurrency=1, timeouts={"slow": 0.1, "fast": 0.2}
    )

    report = await executor.run(_document())

    slow = next(item for item in report.compiled if item.id == "slow")
    assert slow.status is CheckStatus.ERROR
    assert slow.result.message == "check timed out after 0.1s"
    assert report.check_status("fast") is CheckStatus.PASS


async def test_unbound_check_yields_single_error_result() -> None:
    registry = CheckRegistry([_definition("cover-letter", "submission")])
    executor = CheckExecutor(registry)

    report = await executor.run(_document())

    assert len(report.compiled) == 1
    only = report.compiled[0]
    assert only.status is CheckStatus.ERROR
    assert only.result.message == NO_IMPLEMENTATION_MESSAGE
    assert report.category_status("submission") is CheckStatus.ERROR


async def test_concurrency_bound_is_honored() -> None:
    in_flight = 0
    peak = 0
    lock = threading.Lock()

    async def tracked(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        with lock:
            in_flight -= 1
        return passed(context.check_id)

    registry = _registry({f"check-{index}": tracked for index in range(6)})
    executor = CheckExecutor(registry, max_concurrency=2)

    report = await executor.run(_document())

    assert len(report.compiled) == 6
    assert peak <= 2
    assert executor.last_peak_concurrency == 2


async def test_check_may_emit_zero_or_many_results() -> None:
    def silent(document: ResolvedDocument, context: CheckContext) -> None:
        return None

    def per_keyword(document: ResolvedDocument, context: CheckContext) -> list[RawCheckResult]:
        return [passed(f"keyword {item}") for item in document.keywords]

    registry = CheckRegistry(
        [_definition("silent", "quiet"), _definition("per-keyword", "keywords")],
        implementations={"silent": silent, "per-keyword": per_keyword},
    )

    report = await CheckExecutor(registry).run(_document())

    assert report.categories == ("keywords",)
    assert [item.result.message for item in report.compiled] == [
        "keyword review",
        "keyword workflow",
    ]
    assert report.check_status("silent") is None


async def test_invalid_options_fail_before_any_check_runs() -> None:
    calls: list[str] = []

    def recorder(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
        calls.append(context.check_id)
        return passed("ran")

    registry = CheckRegistry(
        [
            _definition(
                "word-count",
                options=(CheckOption(id="max", type=OptionType.NUMBER, min=0),),
            ),
            _definition("figure-count"),
        ],
        implementations={"word-count": recorder, "figure-count": recorder},
    )

    with pytest.raises(InvalidCheckOptions):
        await CheckExecutor(registry).run(_document(), options={"word-count": {"max": -5}})
    assert calls == []


async def test_options_reach_the_check_context() -> None:
    seen: dict[str, Any] = {}

    def capture(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
        seen.update(context.options)
        seen["service"] = context.service("clock")
        return passed("captured")

    registry = CheckRegistry(
        [
            _definition(
                "word-count",
                options=(CheckOption(id="max", type=OptionType.NUMBER, default=10),),
            )
        ],
        implementations={"word-count": capture},
    )
    executor = CheckExecutor(registry, services={"clock": "fixed"})

    await executor.run(_document(), options={"word-count": {"max": 99}})

    assert seen == {"max": 99, "service": "fixed"}


async def test_unknown_ids_raise_check_not_found() -> None:
    executor = CheckExecutor(_registry({"good": _always_pass}))

    with pytest.raises(CheckNotFound):
        await executor.run(_document(), CheckSelection(ids=("missing",)))
    with pytest.raises(CheckNotFound):
        await executor.run(_document(), options={"missing": {"max": 1}})


def test_selection_unions_ids_with_tag_and_category_matches() -> None:
    registry = CheckRegistry(
        [
            _definition("abstract-exists", "abstract", tags=("frontmatter",)),
            _definition("keywords-defined", "keywords", tags=("frontmatter",)),
            _definition("links-resolve", "links", tags=("content",)),
        ]
    )
    executor = CheckExecutor(registry)

    resolved = executor.resolve(
        CheckSelection(ids=("links-resolve",), tags=("frontmatter",), category="keywords")
    )

    assert [item.id for item in resolved] == ["links-resolve", "keywords-defined"]
    assert len(executor.resolve(CheckSelection())) == 3


async def test_checks_receive_an_independent_document_copy() -> None:
    seen: list[ResolvedDocument] = []

    def mutate(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
        seen.append(document)
        document.frontmatter["title"] = "changed"  # type: ignore[index]
        return passed("mutated")

    original = _document()
    report = await CheckExecutor(_registry({"mutate": mutate})).run(original)

    assert seen and seen[0] is not original
    assert report.check_status("mutate") is CheckStatus.ERROR
    assert original.frontmatter["title"] == "On Review"


async def test_repeated_runs_produce_identical_reports() -> None:
    registry = _registry({"good": _always_pass, "meh": _always_fail, "bad": _explodes})
    executor = CheckExecutor(registry, max_concurrency=3)

    first = await executor.run(_document())
    second = await executor.run(_document())

    assert first.to_dict() == second.to_dict()


async def test_cancelled_token_aborts_the_run() -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await CheckExecutor(_registry({"slow": _hangs})).run(_document(), cancel_token=token)


def test_run_sync_wraps_the_async_run() -> None:
    report = CheckExecutor(_registry({"good": _always_pass})).run_sync(_document())
    assert report.status is CheckStatus.PASS


def test_executor_rejects_invalid_limits() -> None:
    registry = CheckRegistry()
    with pytest.raises(ValueError, match="max_concurrency"):
        CheckExecutor(registry, max_concurrency=0)
    with pytest.raises(ValueError, match="timeout_seconds"):
        CheckExecutor(registry, timeout_seconds=0)
    with pytest.raises(ValueError, match="must be > 0"):
        CheckExecutor(registry, timeouts={"slow": -1})


def test_normalize_check_output_accepts_mappings_and_sequences() -> None:
    results = normalize_check_output(
        [{"status": "fail", "message": "bad"}, passed("good")]
    )
    assert [item.status for item in results] == [CheckStatus.FAIL, CheckStatus.PASS]
    assert normalize_check_output(None) == []
    with pytest.raises(TypeError):
        normalize_check_output("pass")  # type: ignore[arg-type]
