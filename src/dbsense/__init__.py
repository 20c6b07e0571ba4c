"""dbsense - Index health auditing and maintenance for PostgreSQL."""

__version__ = "0.1.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from dbsense.exceptions import (
    DBSenseError,
    DatabaseConnectionError,
    CatalogReadError,
    RecommendationPassError,
    MaintenanceError,
    TableMaintenanceError,
    TransactionContextError,
    OperationCancelledError,
    ConfigurationError,
)

from dbsense.analyzer import (
    IndexAnalyzer,
    IndexRecommendation,
    RecommendationType,
    Severity,
    SlowQueryAnalyzer,
)
from dbsense.config import Config, get_config
from dbsense.db import (
    AsyncpgExecutor,
    CatalogReader,
    ForeignKey,
    IndexInfo,
    QueryExecutor,
    QueryStats,
    TableStats,
)
from dbsense.engine import DatabaseStats, HealthReport, OptimizationService
from dbsense.maintenance import (
    MaintenanceOrchestrator,
    MaintenancePhase,
    MaintenanceReport,
    select_rebuild_candidates,
)

__all__ = [
    # Exception hierarchy
    "DBSenseError",
    "DatabaseConnectionError",
    "CatalogReadError",
    "RecommendationPassError",
    "MaintenanceError",
    "TableMaintenanceError",
    "TransactionContextError",
    "OperationCancelledError",
    "ConfigurationError",
    # Entry point
    "OptimizationService",
    "DatabaseStats",
    "HealthReport",
    # Catalog
    "AsyncpgExecutor",
    "CatalogReader",
    "ForeignKey",
    "IndexInfo",
    "QueryExecutor",
    "QueryStats",
    "TableStats",
    # Analysis
    "IndexAnalyzer",
    "IndexRecommendation",
    "RecommendationType",
    "Severity",
    "SlowQueryAnalyzer",
    # Maintenance
    "MaintenanceOrchestrator",
    "MaintenancePhase",
    "MaintenanceReport",
    "select_rebuild_candidates",
    # Configuration
    "Config",
    "get_config",
]
