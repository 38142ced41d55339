"""Body content checks: word count and figure count."""

from __future__ import annotations

from review_pipeline.checks.builtin.text import count_words, word_count_text
from review_pipeline.checks.models import CheckContext, RawCheckResult, errored, failed, passed
from review_pipeline.documents.model import ResolvedDocument


def _upper(value: str) -> str:
    return value[:1].upper() + value[1:]


def word_count(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    part = context.option("part")
    maximum = context.option("max")
    minimum = context.option("min", 0)

    if part:
        content = document.part(part)
        if content is None:
            return errored(f"No {part} found", file=document.file)
        subject = part
    else:
        content = document.body()
        subject = "document"

    length = count_words(
        word_count_text(
            content,
            figures=bool(context.option("figures", False)),
            footnotes=bool(context.option("footnotes", False)),
        )
    )
    if maximum is not None and length > maximum:
        return failed(
            f"{_upper(subject)} is too long: {length}/{maximum} words",
            file=document.file,
            position=content.position,
            help=f"Shorten your {subject} to less than {maximum} words",
        )
    if length < minimum:
        return failed(
            f"{_upper(subject)} is too short: {length}/{minimum} words",
            file=document.file,
            position=content.position,
            help=f"Increase the length of your {subject} to more than {minimum} words",
        )
    suffix = "" if maximum is None else f"/{maximum}"
    return passed(
        f"{_upper(subject)} is correct length ({length}{suffix} words)",
        file=document.file,
        position=content.position,
    )


def figure_count(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    kind = context.option("kind")
    maximum = context.option("max")
    minimum = context.option("min", 0)

    containers = [
        node
        for node in document.iter_nodes("container")
        if not kind or node.attrs.get("kind", "figure") == kind
    ]
    label = f"{kind} containers" if kind else "figures/tables"
    count = len(containers)
    if maximum is not None and count > maximum:
        return failed(
            f"Too many {label}: {count}/{maximum}",
            file=document.file,
            help=f"Reduce the number of {label} to at most {maximum}",
        )
    if count < minimum:
        return failed(
            f"Too few {label}: {count}/{minimum}",
            file=document.file,
            help=f"Add {label} until there are at least {minimum}",
        )
    return passed(f"Found {count} {label}", file=document.file)


__all__ = ["figure_count", "word_count"]
