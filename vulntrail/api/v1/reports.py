"""Ingested reports with their diff summaries."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from vulntrail.core.config import settings
from vulntrail.core.database import get_read_db
from vulntrail.schemas.queries import ReportPage
from vulntrail.services.queries import list_reports

router = APIRouter()


@router.get("", response_model=ReportPage)
def get_reports(
    db: Annotated[Session, Depends(get_read_db)],
    account_id: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=settings.MAX_PAGE_SIZE)] = None,
) -> ReportPage:
    """Upload history, newest report date first."""
    return list_reports(db, account_id=account_id, page=page, page_size=page_size)
