"""Fixed findings: entries that disappeared from a later report, with aggregates."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from vulntrail.core.config import settings
from vulntrail.core.database import get_read_db
from vulntrail.schemas.history import FixedPage
from vulntrail.schemas.queries import FixedFilters
from vulntrail.services.queries import list_fixed

router = APIRouter()


@router.get("", response_model=FixedPage)
def get_fixed(
    db: Annotated[Session, Depends(get_read_db)],
    filters: Annotated[FixedFilters, Depends()],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=settings.MAX_PAGE_SIZE)] = None,
) -> FixedPage:
    """
    Fixed findings, most recently fixed first.

    The summary (counts by severity and fix availability, average days active) covers
    every fixed finding matching the filters, not only the returned page. Findings that
    reappeared in a later report are excluded unless include_reopened is set.
    """
    return list_fixed(db, filters, page=page, page_size=page_size)
