"""Live finding listing and per-finding timeline."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from vulntrail.core.config import settings
from vulntrail.core.database import get_read_db
from vulntrail.schemas.history import Timeline
from vulntrail.schemas.queries import FindingFilters, FindingPage
from vulntrail.services.queries import get_timeline, list_findings

router = APIRouter()


@router.get("", response_model=FindingPage)
def get_findings(
    db: Annotated[Session, Depends(get_read_db)],
    filters: Annotated[FindingFilters, Depends()],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=settings.MAX_PAGE_SIZE)] = None,
) -> FindingPage:
    """Current findings across all ingested accounts, most severe first."""
    return list_findings(db, filters, page=page, page_size=page_size)


@router.get("/timeline/{identifier:path}", response_model=Timeline)
def get_finding_timeline(
    identifier: str,
    db: Annotated[Session, Depends(get_read_db)],
    account_id: str | None = None,
    resource_id: str | None = None,
) -> Timeline:
    """
    Current state and archived history of a finding.

    identifier may be a finding ARN, a match key, or a vulnerability id (CVE/GHSA);
    a vulnerability id returns every affected resource unless resource_id narrows it.
    """
    return get_timeline(db, identifier, account_id=account_id, resource_id=resource_id)
