"""SQLAlchemy ORM models."""

from vulntrail.models.base import Base
from vulntrail.models.finding import Finding, Package, Reference, Resource
from vulntrail.models.history import (
    RESOLUTION_FIXED,
    RESOLUTION_SUPERSEDED,
    HistoryFinding,
    HistoryResource,
)
from vulntrail.models.report import DiffSummary, Report

__all__ = [
    "Base",
    "DiffSummary",
    "Finding",
    "HistoryFinding",
    "HistoryResource",
    "Package",
    "RESOLUTION_FIXED",
    "RESOLUTION_SUPERSEDED",
    "Reference",
    "Report",
    "Resource",
]
