"""ORM models for the live finding snapshot and its child entities."""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from vulntrail.models.base import Base, JSONType


class Finding(Base):
    """
    Current (live) finding for one account.

    Keyed by (account_id, match_key): the finding ARN, or vulnerability id + resource id
    when the scanner gave no ARN. Updated in place when the same key reappears in a later
    report; first_observed_at is never overwritten.
    """

    __tablename__ = "findings"
    __table_args__ = (
        UniqueConstraint("account_id", "match_key", name="uq_findings_account_match_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        Integer,
        ForeignKey("reports.id"),
        nullable=False,
        index=True,
    )
    account_id = Column(String(32), nullable=False, index=True)
    match_key = Column(String(2048), nullable=False)
    finding_arn = Column(String(2048), nullable=True, index=True)
    vulnerability_id = Column(String(255), nullable=True, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    severity = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="ACTIVE", index=True)
    fix_available = Column(String(10), nullable=False, default="NO", index=True)
    exploit_available = Column(String(10), nullable=True)
    inspector_score = Column(Float, nullable=True)
    epss_score = Column(Float, nullable=True)
    first_observed_at = Column(DateTime(timezone=True), nullable=False)
    last_observed_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    resources = relationship(
        "Resource",
        cascade="all, delete-orphan",
        order_by="Resource.id",
        lazy="selectin",
    )
    packages = relationship(
        "Package",
        cascade="all, delete-orphan",
        order_by="Package.id",
        lazy="selectin",
    )
    references = relationship(
        "Reference",
        cascade="all, delete-orphan",
        order_by="Reference.id",
        lazy="selectin",
    )


class Resource(Base):
    """Cloud resource affected by a finding (instance, image, function)."""

    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    finding_id = Column(
        Integer,
        ForeignKey("findings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource_id = Column(String(2048), nullable=True, index=True)
    resource_arn = Column(String(2048), nullable=True)
    resource_type = Column(String(64), nullable=True, index=True)
    platform = Column(String(255), nullable=True, index=True)
    region = Column(String(32), nullable=True)
    details = Column(JSONType, nullable=True)
    tags = Column(JSONType, nullable=True)


class Package(Base):
    """Vulnerable package installed on the resource."""

    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    finding_id = Column(
        Integer,
        ForeignKey("findings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(1024), nullable=False)
    version = Column(String(255), nullable=True)
    fixed_in_version = Column(String(255), nullable=True)
    ecosystem = Column(String(64), nullable=True)
    file_path = Column(String(2048), nullable=True)


class Reference(Base):
    """Remediation or advisory URL for a finding."""

    __tablename__ = "references"

    id = Column(Integer, primary_key=True, autoincrement=True)
    finding_id = Column(
        Integer,
        ForeignKey("findings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url = Column(Text, nullable=False)
