"""Frontmatter checks: abstract, authors, data availability, and keywords."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Final

from review_pipeline.checks.builtin.text import count_words
from review_pipeline.checks.models import CheckContext, RawCheckResult, errored, failed, passed
from review_pipeline.documents.model import ResolvedDocument

CREDIT_ROLES: Final[tuple[str, ...]] = (
    "Conceptualization",
    "Data curation",
    "Formal analysis",
    "Funding acquisition",
    "Investigation",
    "Methodology",
    "Project administration",
    "Resources",
    "Software",
    "Supervision",
    "Validation",
    "Visualization",
    "Writing – original draft",
    "Writing – review & editing",
)

_ROLE_ALIASES: Final[Mapping[str, str]] = {
    "writingoriginaldraft": "Writing – original draft",
    "originaldraft": "Writing – original draft",
    "writingreviewediting": "Writing – review & editing",
    "writingreviewandediting": "Writing – review & editing",
    "reviewediting": "Writing – review & editing",
    "conceptualisation": "Conceptualization",
    "visualisation": "Visualization",
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CONJUNCTION = re.compile(r"\band\b|&")


def _role_key(value: str) -> str:
    return _NON_ALNUM.sub("", _CONJUNCTION.sub(" ", value.lower()))


_ROLE_LOOKUP: Final[Mapping[str, str]] = {
    **{_role_key(role): role for role in CREDIT_ROLES},
    **{_role_key(alias): role for alias, role in _ROLE_ALIASES.items()},
}


def credit_role(value: object) -> str | None:
    """Return the canonical CRediT role for ``value`` or ``None`` when unknown."""

    if not isinstance(value, str) or not value.strip():
        return None
    return _ROLE_LOOKUP.get(_role_key(value))


def _author_name(author: Mapping[str, Any], index: int) -> str:
    name = author.get("name")
    if isinstance(name, Mapping):
        name = name.get("literal") or " ".join(
            str(part) for part in (name.get("given"), name.get("family")) if part
        )
    return str(name) if name else f"Author {index + 1}"


def abstract_exists(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    abstract = document.part("abstract")
    if abstract is None or not abstract.text().strip():
        return failed(
            "No abstract found",
            file=document.file,
            help="Add an abstract to your frontmatter or as a tagged block",
        )
    return passed("Abstract found", file=document.file, position=abstract.position)


def abstract_length(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    maximum = context.option("max")
    abstract = document.part("abstract")
    if abstract is None:
        return errored("No abstract found", file=document.file, note="see abstract-exists")
    length = count_words(abstract.text())
    if maximum is not None and length > maximum:
        return failed(
            f"Abstract is too long: {length}/{maximum:g} words",
            file=document.file,
            position=abstract.position,
            help=f"Shorten your abstract to at most {maximum:g} words",
        )
    return passed(
        f"Abstract is correct length ({length} words)",
        file=document.file,
        position=abstract.position,
    )


def authors_exist(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    authors = document.authors
    if not authors:
        return failed("No authors found", file=document.file, help="Add authors to your project")
    return passed(f"Found {len(authors)} authors", file=document.file)


def _no_authors(document: ResolvedDocument, help_text: str) -> RawCheckResult:
    return errored(
        "No authors found",
        file=document.file,
        help=help_text,
        note="depends on authors-exist",
    )


def authors_corresponding(
    document: ResolvedDocument, context: CheckContext
) -> list[RawCheckResult] | RawCheckResult:
    authors = document.authors
    help_text = "Add an email to one of the authors"
    if not authors:
        return _no_authors(document, help_text)
    with_email = [
        (index, author) for index, author in enumerate(authors) if author.get("email")
    ]
    if not with_email:
        return failed(
            "No authors provided an email",
            file=document.file,
            help=help_text,
            note=f"There were {len(authors)} authors found, none of them had emails",
        )
    return [
        passed(
            f"{_author_name(author, index)} provided an email: <{author['email']}>",
            file=document.file,
        )
        for index, author in with_email
    ]


def authors_have_affiliations(
    document: ResolvedDocument, context: CheckContext
) -> list[RawCheckResult] | RawCheckResult:
    authors = document.authors
    help_text = "Add an affiliation to each author"
    if not authors:
        return _no_authors(document, help_text)
    results: list[RawCheckResult] = []
    for index, author in enumerate(authors):
        name = _author_name(author, index)
        if author.get("affiliations"):
            results.append(passed(f"{name} has an affiliation", file=document.file))
        else:
            results.append(
                failed(f"{name} does not have an affiliation", file=document.file, help=help_text)
            )
    return results


def authors_have_orcid(
    document: ResolvedDocument, context: CheckContext
) -> list[RawCheckResult] | RawCheckResult:
    authors = document.authors
    help_text = "Add an ORCID to each author"
    if not authors:
        return _no_authors(document, help_text)
    results: list[RawCheckResult] = []
    for index, author in enumerate(authors):
        name = _author_name(author, index)
        if author.get("orcid"):
            results.append(passed(f"{name} has an ORCID", file=document.file))
        else:
            results.append(
                failed(f"{name} does not have an ORCID", file=document.file, help=help_text)
            )
    return results


def authors_have_credit_roles(
    document: ResolvedDocument, context: CheckContext
) -> list[RawCheckResult] | RawCheckResult:
    authors = document.authors
    if not authors:
        return _no_authors(document, "Add CRediT roles to each author")
    results: list[RawCheckResult] = []
    for index, author in enumerate(authors):
        name = _author_name(author, index)
        roles = author.get("roles") or ()
        if isinstance(roles, str):
            roles = (roles,)
        if not roles:
            results.append(
                failed(
                    f"{name} does not have any CRediT Roles",
                    file=document.file,
                    help="Add CRediT roles to each author",
                )
            )
            continue
        for role in roles:
            if credit_role(role) is not None:
                results.append(
                    passed(f'{name} has valid CRediT role of "{role}"', file=document.file)
                )
            else:
                results.append(
                    failed(
                        f'{name} has an invalid CRediT role of "{role}"',
                        file=document.file,
                        help=f'Change the role "{role}" to a valid CRediT role',
                    )
                )
    return results


def data_availability_exists(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    statement = document.part("data_availability")
    if statement is None or not statement.text().strip():
        return failed(
            "No data availability statement found",
            file=document.file,
            help="Add a data availability statement to your frontmatter or as a tagged block",
        )
    return passed(
        "Data availability statement found",
        file=document.file,
        position=statement.position,
    )


def keywords_defined(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    keywords = document.keywords
    if not keywords:
        return failed("No keywords found", file=document.file, help="Add keywords to your project")
    return passed(f"Found {len(keywords)} keywords", file=document.file)


def keywords_length(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    keywords = document.keywords
    maximum = context.option("max")
    if not keywords:
        return errored("No keywords found", file=document.file, note="depends on keywords-defined")
    if maximum is not None and len(keywords) > maximum:
        return failed(
            f"Too many keywords: {len(keywords)}/{maximum:g}",
            file=document.file,
            help=f"Reduce the number of keywords to at most {maximum:g}",
        )
    return passed(f"Keyword count is acceptable ({len(keywords)})", file=document.file)


def keywords_unique(document: ResolvedDocument, context: CheckContext) -> RawCheckResult:
    keywords = document.keywords
    if not keywords:
        return errored("No keywords found", file=document.file, note="depends on keywords-defined")
    seen: dict[str, str] = {}
    duplicates: list[str] = []
    for keyword in keywords:
        key = keyword.strip().lower()
        if key in seen:
            duplicates.append(keyword)
        else:
            seen[key] = keyword
    if duplicates:
        return failed(
            f"Duplicate keywords: {', '.join(duplicates)}",
            file=document.file,
            help="Remove repeated keywords",
        )
    return passed("Keywords are unique", file=document.file)


__all__ = [
    "CREDIT_ROLES",
    "abstract_exists",
    "abstract_length",
    "authors_corresponding",
    "authors_exist",
    "authors_have_affiliations",
    "authors_have_credit_roles",
    "authors_have_orcid",
    "credit_role",
    "data_availability_exists",
    "keywords_defined",
    "keywords_length",
    "keywords_unique",
]
