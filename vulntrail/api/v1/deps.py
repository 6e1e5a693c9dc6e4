"""Shared FastAPI dependencies for the ingestion routes."""

from fastapi import Request

from vulntrail.services.ingest import IngestionOrchestrator
from vulntrail.services.operations import OperationRegistry


def get_orchestrator(request: Request) -> IngestionOrchestrator:
    """Process-wide orchestrator (its lock manager must be shared by every request)."""
    return request.app.state.orchestrator


def get_operation_registry(request: Request) -> OperationRegistry:
    return request.app.state.operations
