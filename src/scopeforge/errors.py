"""Error types for compile-time schema problems and runtime query failures.

Compile-time problems are collected as :class:`SchemaIssue` records so that
every broken model is reported in one pass. Runtime errors form the taxonomy
surfaced by generated data-access code; each carries an HTTP status hint.
"""

from __future__ import annotations

from dataclasses import dataclass


class ScopeforgeError(Exception):
    """Base class for every error raised by scopeforge."""


@dataclass
class SchemaIssue:
    """A single schema finding for one model."""

    model: str
    message: str
    path: str = ""           # location within the model, e.g. "fields[2].userAccess"
    severity: str = "error"  # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.model}{loc}: {self.message}"


class CompileFailed(ScopeforgeError):
    """Raised when one or more models have schema errors."""

    def __init__(self, issues: list[SchemaIssue]):
        self.issues = issues
        models = sorted({i.model for i in issues})
        super().__init__(
            f"{len(issues)} schema error(s) in {len(models)} model(s): {', '.join(models)}"
        )


class QueryError(ScopeforgeError):
    """Base class for errors raised while running compiled statements."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(QueryError):
    """The row is absent, or the caller holds no permission on it."""

    status_code = 404


class MissingParent(QueryError):
    """A child row referenced a parent that does not exist."""

    status_code = 404


class PermissionDenied(QueryError):
    """The caller lacks the permission a route requires."""

    status_code = 403


class InvalidFilterOrOrder(QueryError):
    """A list request named an unknown filter, order-by field or direction."""

    status_code = 400


class DatabaseError(QueryError):
    """Any other backend failure."""

    status_code = 500
