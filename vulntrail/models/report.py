"""ORM models for ingested reports and their cached diff summaries."""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from vulntrail.models.base import Base, JSONType


class Report(Base):
    """
    One ingested export file. Immutable once its batch commits.

    A report belongs to exactly one account; (account_id, report_run_date) is unique
    so the same scan run can never be ingested twice.
    """

    __tablename__ = "reports"
    __table_args__ = (
        UniqueConstraint("account_id", "report_run_date", name="uq_reports_account_run_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String(255), nullable=False)
    source_format = Column(String(16), nullable=False)
    report_run_date = Column(Date, nullable=False, index=True)
    report_date_source = Column(String(16), nullable=False, default="filename")
    uploaded_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    account_id = Column(String(32), nullable=False, index=True)
    finding_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="PROCESSED")
    batch_id = Column(String(36), nullable=True, index=True)

    diff_summary = relationship(
        "DiffSummary",
        back_populates="report",
        uselist=False,
        cascade="all, delete-orphan",
    )


class DiffSummary(Base):
    """Diff outcome for one report, aggregated at ingest time so reads need not recompute it."""

    __tablename__ = "diff_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        Integer,
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    account_id = Column(String(32), nullable=False, index=True)
    new_count = Column(Integer, nullable=False, default=0)
    active_count = Column(Integer, nullable=False, default=0)
    fixed_count = Column(Integer, nullable=False, default=0)
    fixed_by_severity = Column(JSONType, nullable=False, default=dict)
    fixed_by_fix_available = Column(JSONType, nullable=False, default=dict)
    total_days_active = Column(Integer, nullable=False, default=0)
    avg_days_active = Column(Float, nullable=False, default=0.0)
    computed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    report = relationship("Report", back_populates="diff_summary")
