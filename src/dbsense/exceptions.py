"""
Package-level exception hierarchy for dbsense.

All exceptions inherit from DBSenseError, enabling:
- Catching all dbsense errors with a single except clause
- Context fields for debugging (operation, pass_name, phase, table)
- Structured serialization via to_dict() for JSON error responses

Hierarchy:
    DBSenseError
    ├── DatabaseConnectionError  – Could not open a connection or pool
    ├── CatalogReadError         – Reading catalog or statistics metadata failed
    ├── RecommendationPassError  – One advisory pass failed (non-fatal)
    ├── MaintenanceError         – A maintenance phase failed (fatal)
    │   └── TableMaintenanceError – Rebuilding one table failed (non-fatal)
    ├── TransactionContextError  – Maintenance attempted inside a transaction
    ├── OperationCancelledError  – Operation timed out before completion
    └── ConfigurationError       – Invalid configuration
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dbsense.maintenance import MaintenancePhase


class DBSenseError(Exception):
    """
    Base exception for all dbsense errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


def _describe(error: Exception) -> str:
    return f"{error.__class__.__name__}: {error}"


# ── Connection Errors ────────────────────────────────────────────────────


class DatabaseConnectionError(DBSenseError):
    """
    Opening the connection pool failed (unreachable host, bad credentials).

    Attributes:
        original_error: The underlying driver or socket exception.
    """

    def __init__(self, original_error: Exception) -> None:
        self.original_error = original_error
        super().__init__(f"Could not connect to the database: {_describe(original_error)}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["original_error_type"] = self.original_error.__class__.__name__
        return result


# ── Catalog Errors ───────────────────────────────────────────────────────


class CatalogReadError(DBSenseError):
    """
    Failed to read index, usage, table-statistics or constraint metadata.

    Attributes:
        operation: The catalog read that failed (e.g. "list_indexes").
        original_error: The underlying driver exception.
    """

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"Catalog read '{operation}' failed: {_describe(original_error)}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["operation"] = self.operation
        result["original_error_type"] = self.original_error.__class__.__name__
        return result


# ── Recommendation Errors ────────────────────────────────────────────────


class RecommendationPassError(DBSenseError):
    """
    A single advisory pass (missing-FK or duplicate-index) failed.

    Never propagated out of IndexAnalyzer.analyze_indexes(); it is logged
    and the pass's output is omitted.
    """

    def __init__(self, pass_name: str, original_error: Exception) -> None:
        self.pass_name = pass_name
        self.original_error = original_error
        super().__init__(f"Recommendation pass '{pass_name}' failed: {_describe(original_error)}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["pass_name"] = self.pass_name
        result["original_error_type"] = self.original_error.__class__.__name__
        return result


# ── Maintenance Errors ───────────────────────────────────────────────────


class MaintenanceError(DBSenseError):
    """
    A maintenance phase failed and aborted the run.

    Attributes:
        phase: The phase that failed.
        original_error: The underlying exception.
    """

    def __init__(
        self,
        phase: "MaintenancePhase",
        original_error: Exception,
        message: str | None = None,
    ) -> None:
        self.phase = phase
        self.original_error = original_error
        super().__init__(
            message
            or f"Maintenance phase {phase.value} ({phase.label}) failed: {_describe(original_error)}"
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["phase"] = self.phase.label
        result["original_error_type"] = self.original_error.__class__.__name__
        return result


class TableMaintenanceError(MaintenanceError):
    """Rebuilding one table's indexes failed. Logged; the run continues."""

    def __init__(
        self,
        phase: "MaintenancePhase",
        table: str,
        original_error: Exception,
    ) -> None:
        self.table = table
        super().__init__(
            phase,
            original_error,
            message=f"Rebuilding indexes of table '{table}' failed: {_describe(original_error)}",
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["table"] = self.table
        return result


class TransactionContextError(DBSenseError):
    """
    A maintenance statement was issued inside an explicit transaction block.

    ANALYZE/VACUUM/REINDEX must run in autocommit mode.
    """

    def __init__(self, statement: str) -> None:
        self.statement = statement
        super().__init__(
            f"Statement must run outside a transaction block: {statement}"
        )


class OperationCancelledError(DBSenseError):
    """
    An operation was stopped by its caller-supplied timeout.

    Attributes:
        operation: The public operation that was cancelled.
        phase: Maintenance phase in progress, if any.
    """

    def __init__(
        self,
        operation: str,
        timeout: float | None = None,
        phase: "MaintenancePhase | None" = None,
    ) -> None:
        self.operation = operation
        self.timeout = timeout
        self.phase = phase

        message = f"Operation '{operation}' cancelled"
        if timeout is not None:
            message += f" after {timeout:g}s"
        if phase is not None:
            message += f" during phase {phase.value} ({phase.label})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["operation"] = self.operation
        result["timeout"] = self.timeout
        result["phase"] = self.phase.label if self.phase else None
        return result


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(DBSenseError):
    """
    Invalid configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result
