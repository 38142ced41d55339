"""Built-in submission checks and the default registry wiring."""

from __future__ import annotations

from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any, Final

from review_pipeline.checks.builtin.content import figure_count, word_count
from review_pipeline.checks.builtin.frontmatter import (
    abstract_exists,
    abstract_length,
    authors_corresponding,
    authors_exist,
    authors_have_affiliations,
    authors_have_credit_roles,
    authors_have_orcid,
    data_availability_exists,
    keywords_defined,
    keywords_length,
    keywords_unique,
)
from review_pipeline.checks.builtin.references import doi_exists, links_resolve
from review_pipeline.checks.models import CheckDefinition, CheckImplementation
from review_pipeline.checks.registry import CheckRegistry, load_check_catalog

BUILTIN_IMPLEMENTATIONS: Final[Mapping[str, CheckImplementation]] = {
    "abstract-exists": abstract_exists,
    "abstract-length": abstract_length,
    "authors-exist": authors_exist,
    "authors-corresponding": authors_corresponding,
    "authors-have-affiliations": authors_have_affiliations,
    "authors-have-orcid": authors_have_orcid,
    "authors-have-credit-roles": authors_have_credit_roles,
    "data-availability-exists": data_availability_exists,
    "keywords-defined": keywords_defined,
    "keywords-length": keywords_length,
    "keywords-unique": keywords_unique,
    "links-resolve": links_resolve,
    "doi-exists": doi_exists,
    "word-count": word_count,
    "figure-count": figure_count,
}


def builtin_definitions() -> tuple[CheckDefinition, ...]:
    """Load the packaged built-in catalog."""

    catalog = resources.files(__package__).joinpath("catalog.yaml")
    with resources.as_file(catalog) as path:
        return load_check_catalog(path)


def default_registry(
    *,
    extra_catalogs: tuple[str | Path, ...] = (),
    logger: Any | None = None,
) -> CheckRegistry:
    """Return a new registry holding the built-in checks plus any extra catalogs.

    Checks from extra catalogs have no implementation until bound by the caller.
    """

    registry = CheckRegistry(logger=logger)
    registry.register(builtin_definitions(), implementations=BUILTIN_IMPLEMENTATIONS)
    for catalog in extra_catalogs:
        registry.load_catalog(catalog)
    return registry


__all__ = ["BUILTIN_IMPLEMENTATIONS", "builtin_definitions", "default_registry"]
