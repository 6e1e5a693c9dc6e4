"""Health check endpoint: database connectivity and which ingestion locking mode is active."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vulntrail.core.config import settings
from vulntrail.core.database import check_db_connected, get_db
from vulntrail.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health(db: Annotated[Session, Depends(get_db)]) -> HealthResponse:
    """
    Used by load balancers and monitoring. Always 200; status is degraded
    when the database cannot be reached.
    """
    connected = check_db_connected(db)
    dialect = db.get_bind().dialect.name
    return HealthResponse(
        status="ok" if connected else "degraded",
        environment=settings.APP_ENV,
        database="connected" if connected else "disconnected",
        dialect=dialect,
        cross_process_locking=dialect == "postgresql",
    )
