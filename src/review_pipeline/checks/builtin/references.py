"""
review-pipeline — external reference checks.

File: src/review_pipeline/checks/builtin/references.py

Purpose
- ``links-resolve``: one result per external link in the content.
- ``doi-exists``: one result per citation, flagging missing and duplicate DOIs.

Lookups go through resolvers in the executor ``services`` mapping:
- ``link_resolver(url) -> bool`` (sync or async)
- ``doi_resolver(doi) -> bool`` (sync or async)
``resolvers.HttpResolver`` provides both over HTTP. Without a resolver, links are
checked for well-formedness only and DOIs pass once present and unique. Lookups
within one check run concurrently, at most ``MAX_OUTGOING_CONNECTIONS`` at a time.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Awaitable
from typing import Final, Protocol
from urllib.parse import urlparse

from review_pipeline.checks.models import CheckContext, RawCheckResult, errored, failed, passed
from review_pipeline.documents.model import DocumentNode, ResolvedDocument
from review_pipeline.utils.concurrency import WorkerPool

LINK_RESOLVER_SERVICE: Final[str] = "link_resolver"
DOI_RESOLVER_SERVICE: Final[str] = "doi_resolver"
MAX_OUTGOING_CONNECTIONS: Final[int] = 25

_LINK_NODE_TYPES: Final[tuple[str, ...]] = ("link", "linkBlock", "card")
_DOI_PATTERN: Final[re.Pattern[str]] = re.compile(r"(10\.\d{4,9}/[^\s\"<>]+)", re.IGNORECASE)
_DOI_HOSTS: Final[frozenset[str]] = frozenset({"doi.org", "dx.doi.org", "www.doi.org"})


class Resolver(Protocol):
    def __call__(self, target: str, /) -> bool | Awaitable[bool]: ...


def normalize_doi(value: str | None) -> str | None:
    """Return the bare ``10.xxxx/...`` form of a DOI string or URL, lowercased."""

    if not value:
        return None
    match = _DOI_PATTERN.search(value.strip())
    if match is None:
        return None
    return match.group(1).rstrip(".").lower()


def _is_doi_link(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.netloc.lower() in _DOI_HOSTS or url.lower().startswith("doi:")


def _is_well_formed(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


async def _resolve(resolver: Resolver, target: str) -> bool:
    if inspect.iscoroutinefunction(resolver):
        outcome = await resolver(target)
    else:
        outcome = await asyncio.to_thread(resolver, target)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    return bool(outcome)


def _external_links(document: ResolvedDocument) -> list[DocumentNode]:
    links: list[DocumentNode] = []
    for node in document.iter_nodes(*_LINK_NODE_TYPES):
        url = node.attrs.get("url")
        if not isinstance(url, str) or not url.strip():
            continue
        if node.attrs.get("internal") or node.attrs.get("static"):
            continue
        links.append(node)
    return links


async def _check_link(
    document: ResolvedDocument, node: DocumentNode, resolver: Resolver | None
) -> RawCheckResult:
    url = str(node.attrs["url"]).strip()
    if _is_doi_link(url):
        return failed(
            f"{url} (DOI link)",
            file=document.file,
            position=node.position,
            help=f'Cite "{url}" as a citation instead of linking it',
        )
    if resolver is None:
        if _is_well_formed(url):
            return passed(url, file=document.file, position=node.position, note="not fetched")
        return failed(
            f"{url} (malformed URL)",
            file=document.file,
            position=node.position,
            help=f'Check that "{url}" is correct',
        )
    try:
        ok = await _resolve(resolver, url)
    except Exception as exc:  # noqa: BLE001
        return errored(
            f"{url} ({type(exc).__name__}: {exc})",
            file=document.file,
            position=node.position,
        )
    if ok:
        return passed(url, file=document.file, position=node.position)
    return failed(
        f"{url} (did not resolve)",
        file=document.file,
        position=node.position,
        help=f'Check that "{url}" is correct',
    )


async def links_resolve(
    document: ResolvedDocument, context: CheckContext
) -> list[RawCheckResult]:
    resolver = context.service(LINK_RESOLVER_SERVICE)
    pool: WorkerPool[RawCheckResult] = WorkerPool(max_concurrency=MAX_OUTGOING_CONNECTIONS)
    return await pool.gather(
        _check_link(document, node, resolver) for node in _external_links(document)
    )


async def _check_doi(
    document: ResolvedDocument, key: str, doi: str, resolver: Resolver | None
) -> RawCheckResult:
    if resolver is None:
        return passed(f"Citation has DOI: {key}", file=document.file, note=f"Citation DOI: {doi}")
    try:
        ok = await _resolve(resolver, doi)
    except Exception as exc:  # noqa: BLE001
        return errored(f"DOI lookup failed for {key}: {type(exc).__name__}: {exc}")
    if ok:
        return passed(
            f"Citation has valid DOI: {key}",
            file=document.file,
            note=f"Citation DOI: {doi}",
        )
    return failed(
        f"DOI not found: https://doi.org/{doi} [{key}]",
        file=document.file,
        help=f"Check the citation DOI for {key}, it may not be correct",
    )


async def doi_exists(document: ResolvedDocument, context: CheckContext) -> list[RawCheckResult]:
    resolver = context.service(DOI_RESOLVER_SERVICE)
    # Citation order: a finished result, or a (key, doi) pair still to look up.
    entries: list[RawCheckResult | tuple[str, str]] = []
    seen: dict[str, str] = {}
    for key, citation in document.citations.items():
        raw_doi = citation.get("doi")
        doi = normalize_doi(raw_doi if isinstance(raw_doi, str) else None)
        if doi is None:
            entries.append(
                failed(
                    f"Citation does not have DOI: {key}",
                    file=document.file,
                    help=f"Add a DOI for {key} if it exists",
                )
            )
            continue
        if doi in seen:
            entries.append(
                failed(
                    f"Two citations with duplicate DOIs: {key} and {seen[doi]}",
                    file=document.file,
                    help=f"Remove one of the duplicate citations: {key} and {seen[doi]}",
                )
            )
            continue
        seen[doi] = key
        entries.append((key, doi))

    pool: WorkerPool[RawCheckResult] = WorkerPool(max_concurrency=MAX_OUTGOING_CONNECTIONS)
    looked_up = iter(
        await pool.gather(
            _check_doi(document, key, doi, resolver)
            for key, doi in (entry for entry in entries if isinstance(entry, tuple))
        )
    )
    return [next(looked_up) if isinstance(entry, tuple) else entry for entry in entries]


__all__ = [
    "DOI_RESOLVER_SERVICE",
    "LINK_RESOLVER_SERVICE",
    "MAX_OUTGOING_CONNECTIONS",
    "Resolver",
    "doi_exists",
    "links_resolve",
    "normalize_doi",
]
