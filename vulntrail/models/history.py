"""ORM models for the append-only history trail."""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from vulntrail.models.base import Base, JSONType

RESOLUTION_SUPERSEDED = "SUPERSEDED"
RESOLUTION_FIXED = "FIXED"


class HistoryFinding(Base):
    """
    Snapshot of a live finding taken when a new report replaces the snapshot.

    report_id is the report whose ingestion archived it; source_report_id is the report
    the finding last belonged to. Findings absent from the new report are marked FIXED
    with fixed_date and days_active in the same transaction that archives them; rows are
    never modified after commit.
    """

    __tablename__ = "history_findings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        Integer,
        ForeignKey("reports.id"),
        nullable=False,
        index=True,
    )
    source_report_id = Column(Integer, nullable=True, index=True)
    account_id = Column(String(32), nullable=False, index=True)
    match_key = Column(String(2048), nullable=False, index=True)
    finding_arn = Column(String(2048), nullable=True, index=True)
    vulnerability_id = Column(String(255), nullable=True, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    severity = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    fix_available = Column(String(10), nullable=False, default="NO")
    exploit_available = Column(String(10), nullable=True)
    inspector_score = Column(Float, nullable=True)
    epss_score = Column(Float, nullable=True)
    first_observed_at = Column(DateTime(timezone=True), nullable=False)
    last_observed_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    packages = Column(JSONType, nullable=False, default=list)
    references = Column(JSONType, nullable=False, default=list)
    archived_at = Column(DateTime(timezone=True), nullable=False, index=True)
    resolution = Column(String(20), nullable=False, default=RESOLUTION_SUPERSEDED, index=True)
    fixed_date = Column(Date, nullable=True, index=True)
    days_active = Column(Integer, nullable=True)

    resources = relationship(
        "HistoryResource",
        cascade="all, delete-orphan",
        order_by="HistoryResource.id",
        lazy="selectin",
    )


class HistoryResource(Base):
    """Resource attached to a history snapshot (kept as rows so fixed listings can filter on it)."""

    __tablename__ = "history_resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    history_finding_id = Column(
        Integer,
        ForeignKey("history_findings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource_id = Column(String(2048), nullable=True, index=True)
    resource_arn = Column(String(2048), nullable=True)
    resource_type = Column(String(64), nullable=True, index=True)
    platform = Column(String(255), nullable=True, index=True)
    region = Column(String(32), nullable=True)
