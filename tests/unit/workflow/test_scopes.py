"""Unit tests for principals and the default scope checker."""

from __future__ import annotations

import pytest

from review_pipeline.workflow import (
    SUBMISSIONS_PUBLISHING,
    SUBMISSIONS_UPDATE,
    Principal,
    PrincipalScopeChecker,
    ScopeChecker,
)
from review_pipeline.workflow.scopes import SYSTEM_ADMIN, missing_scopes

_REQUIRED = (SUBMISSIONS_UPDATE, SUBMISSIONS_PUBLISHING)


def test_missing_scopes_keeps_declaration_order() -> None:
    checker = PrincipalScopeChecker()
    principal = Principal.with_scopes("editor", [SUBMISSIONS_PUBLISHING])

    assert missing_scopes(checker, principal, _REQUIRED, None) == (SUBMISSIONS_UPDATE,)
    assert isinstance(checker, ScopeChecker)


def test_resource_scopes_only_apply_to_their_resource() -> None:
    checker = PrincipalScopeChecker()
    principal = Principal(id="editor", resource_scopes={"site-a": set(_REQUIRED)})

    assert missing_scopes(checker, principal, _REQUIRED, "site-a") == ()
    assert missing_scopes(checker, principal, _REQUIRED, "site-b") == _REQUIRED
    assert missing_scopes(checker, principal, _REQUIRED, None) == _REQUIRED


def test_admin_scope_can_be_disabled() -> None:
    admin = Principal.with_scopes("root", [SYSTEM_ADMIN])

    assert missing_scopes(PrincipalScopeChecker(), admin, _REQUIRED, None) == ()
    strict = PrincipalScopeChecker(admin_scope=None)
    assert missing_scopes(strict, admin, _REQUIRED, None) == _REQUIRED


def test_principal_requires_an_id() -> None:
    with pytest.raises(ValueError, match="non-empty"):
        Principal(id="  ")
