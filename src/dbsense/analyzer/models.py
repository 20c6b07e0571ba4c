"""
Data models for the analyzer module.

Recommendations are the output of the index passes. They're designed to be:
- Immutable (frozen=True): recommendations don't change after creation
- Serializable: model_dump(mode="json") for presentation layers
- Hashable: can be compared as sets across runs
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RecommendationType(str, Enum):
    """Kinds of index recommendation."""

    UNUSED_INDEX = "unused_index"
    MISSING_FK_INDEX = "missing_fk_index"
    DUPLICATE_INDEX = "duplicate_index"


class Severity(str, Enum):
    """
    Severity levels for recommendations.

    CRITICAL: Actively harming the workload, act now
    HIGH: Likely performance problem (e.g. unindexed foreign key)
    MEDIUM: Wasted space or write amplification
    LOW: Housekeeping
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        """Enable sorting by severity (CRITICAL first)."""
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class IndexRecommendation(BaseModel):
    """
    A single actionable recommendation about an index.

    Attributes:
        type: What was detected
        severity: How urgent it is
        table: Table the recommendation applies to
        index: Index concerned (unused / duplicate)
        related_index: Second index of a duplicate pair
        column: Column concerned (missing FK index)
        description: Human-readable explanation
        action: Suggested action
        sql: Optional ready-to-execute statement
    """

    model_config = ConfigDict(frozen=True)

    type: RecommendationType
    severity: Severity
    table: str
    index: str | None = None
    related_index: str | None = None
    column: str | None = None
    description: str = Field(min_length=1)
    action: str = Field(min_length=1)
    sql: str | None = None

    def __lt__(self, other: "IndexRecommendation") -> bool:
        """Sort by severity, then table, then index/column name."""
        return (self.severity.rank, self.table, self.index or "", self.column or "") < (
            other.severity.rank, other.table, other.index or "", other.column or ""
        )
