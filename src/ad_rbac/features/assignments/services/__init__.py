"""Assignment services."""

from .assignment_service import AssignmentService
from .statistics_service import CatalogStatistics, StatisticsService

__all__ = ["AssignmentService", "CatalogStatistics", "StatisticsService"]
