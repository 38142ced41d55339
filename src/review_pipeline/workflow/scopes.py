"""Principals and the scope predicate consulted by the engine's guard step."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Final, Protocol, runtime_checkable

SUBMISSIONS_UPDATE: Final[str] = "site:submissions:update"
SUBMISSIONS_PUBLISHING: Final[str] = "site:submissions:publishing"
SYSTEM_ADMIN: Final[str] = "system:admin"


@dataclass(frozen=True, slots=True)
class Principal:
    """Acting user or service.

    ``scopes`` apply to every resource; ``resource_scopes`` grants extra scopes
    for specific resource ids (for example a single site).
    """

    id: str
    scopes: frozenset[str] = frozenset()
    resource_scopes: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("Principal.id must be a non-empty string")
        object.__setattr__(self, "scopes", frozenset(self.scopes))
        object.__setattr__(
            self,
            "resource_scopes",
            {str(key): frozenset(value) for key, value in self.resource_scopes.items()},
        )

    @classmethod
    def with_scopes(cls, principal_id: str, scopes: Iterable[str]) -> Principal:
        return cls(id=principal_id, scopes=frozenset(scopes))


@runtime_checkable
class ScopeChecker(Protocol):
    def has_scope(self, principal: Principal, scope: str, resource_id: str | None) -> bool: ...


class PrincipalScopeChecker:
    """Default checker: reads scopes straight off the principal."""

    def __init__(self, *, admin_scope: str | None = SYSTEM_ADMIN) -> None:
        self._admin_scope = admin_scope

    def has_scope(self, principal: Principal, scope: str, resource_id: str | None) -> bool:
        granted = set(principal.scopes)
        if resource_id is not None:
            granted.update(principal.resource_scopes.get(resource_id, ()))
        if self._admin_scope is not None and self._admin_scope in granted:
            return True
        return scope in granted


def missing_scopes(
    checker: ScopeChecker,
    principal: Principal,
    required: Iterable[str],
    resource_id: str | None,
) -> tuple[str, ...]:
    """Return the required scopes ``principal`` lacks, in declaration order."""

    return tuple(
        scope for scope in required if not checker.has_scope(principal, scope, resource_id)
    )


__all__ = [
    "SUBMISSIONS_PUBLISHING",
    "SUBMISSIONS_UPDATE",
    "SYSTEM_ADMIN",
    "Principal",
    "PrincipalScopeChecker",
    "ScopeChecker",
    "missing_scopes",
]
