"""Reports, live findings with children, history trail and diff summaries.

Revision ID: 20240601000000
Revises:
Create Date: 2024-06-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20240601000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")

# (table, columns) with a plain non-unique index each; names follow SQLAlchemy's ix_<table>_<column>.
INDEXES = [
    ("reports", ["report_run_date", "uploaded_at", "account_id", "batch_id"]),
    (
        "findings",
        [
            "report_id",
            "account_id",
            "finding_arn",
            "vulnerability_id",
            "severity",
            "status",
            "fix_available",
            "last_observed_at",
        ],
    ),
    ("resources", ["finding_id", "resource_id", "resource_type", "platform"]),
    ("packages", ["finding_id"]),
    ("references", ["finding_id"]),
    (
        "history_findings",
        [
            "report_id",
            "source_report_id",
            "account_id",
            "match_key",
            "finding_arn",
            "vulnerability_id",
            "severity",
            "archived_at",
            "resolution",
            "fixed_date",
        ],
    ),
    ("history_resources", ["history_finding_id", "resource_id", "resource_type", "platform"]),
    ("diff_summaries", ["account_id"]),
]


def upgrade() -> None:
    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("source_format", sa.String(length=16), nullable=False),
        sa.Column("report_run_date", sa.Date(), nullable=False),
        sa.Column("report_date_source", sa.String(length=16), nullable=False),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("account_id", sa.String(length=32), nullable=False),
        sa.Column("finding_count", sa.Integer(), nullable=False),
        sa.Column("skipped_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "report_run_date", name="uq_reports_account_run_date"),
    )
    op.create_table(
        "findings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("report_id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.String(length=32), nullable=False),
        sa.Column("match_key", sa.String(length=2048), nullable=False),
        sa.Column("finding_arn", sa.String(length=2048), nullable=True),
        sa.Column("vulnerability_id", sa.String(length=255), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("fix_available", sa.String(length=10), nullable=False),
        sa.Column("exploit_available", sa.String(length=10), nullable=True),
        sa.Column("inspector_score", sa.Float(), nullable=True),
        sa.Column("epss_score", sa.Float(), nullable=True),
        sa.Column("first_observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["report_id"], ["reports.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "match_key", name="uq_findings_account_match_key"),
    )
    op.create_table(
        "resources",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("finding_id", sa.Integer(), nullable=False),
        sa.Column("resource_id", sa.String(length=2048), nullable=True),
        sa.Column("resource_arn", sa.String(length=2048), nullable=True),
        sa.Column("resource_type", sa.String(length=64), nullable=True),
        sa.Column("platform", sa.String(length=255), nullable=True),
        sa.Column("region", sa.String(length=32), nullable=True),
        sa.Column("details", JSON_TYPE, nullable=True),
        sa.Column("tags", JSON_TYPE, nullable=True),
        sa.ForeignKeyConstraint(["finding_id"], ["findings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "packages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("finding_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=1024), nullable=False),
        sa.Column("version", sa.String(length=255), nullable=True),
        sa.Column("fixed_in_version", sa.String(length=255), nullable=True),
        sa.Column("ecosystem", sa.String(length=64), nullable=True),
        sa.Column("file_path", sa.String(length=2048), nullable=True),
        sa.ForeignKeyConstraint(["finding_id"], ["findings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "references",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("finding_id", sa.Integer(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["finding_id"], ["findings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "history_findings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("report_id", sa.Integer(), nullable=False),
        sa.Column("source_report_id", sa.Integer(), nullable=True),
        sa.Column("account_id", sa.String(length=32), nullable=False),
        sa.Column("match_key", sa.String(length=2048), nullable=False),
        sa.Column("finding_arn", sa.String(length=2048), nullable=True),
        sa.Column("vulnerability_id", sa.String(length=255), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("fix_available", sa.String(length=10), nullable=False),
        sa.Column("exploit_available", sa.String(length=10), nullable=True),
        sa.Column("inspector_score", sa.Float(), nullable=True),
        sa.Column("epss_score", sa.Float(), nullable=True),
        sa.Column("first_observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("packages", JSON_TYPE, nullable=False),
        sa.Column("references", JSON_TYPE, nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolution", sa.String(length=20), nullable=False),
        sa.Column("fixed_date", sa.Date(), nullable=True),
        sa.Column("days_active", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["report_id"], ["reports.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "history_resources",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("history_finding_id", sa.Integer(), nullable=False),
        sa.Column("resource_id", sa.String(length=2048), nullable=True),
        sa.Column("resource_arn", sa.String(length=2048), nullable=True),
        sa.Column("resource_type", sa.String(length=64), nullable=True),
        sa.Column("platform", sa.String(length=255), nullable=True),
        sa.Column("region", sa.String(length=32), nullable=True),
        sa.ForeignKeyConstraint(["history_finding_id"], ["history_findings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "diff_summaries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("report_id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.String(length=32), nullable=False),
        sa.Column("new_count", sa.Integer(), nullable=False),
        sa.Column("active_count", sa.Integer(), nullable=False),
        sa.Column("fixed_count", sa.Integer(), nullable=False),
        sa.Column("fixed_by_severity", JSON_TYPE, nullable=False),
        sa.Column("fixed_by_fix_available", JSON_TYPE, nullable=False),
        sa.Column("total_days_active", sa.Integer(), nullable=False),
        sa.Column("avg_days_active", sa.Float(), nullable=False),
        sa.Column(
            "computed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["report_id"], ["reports.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("report_id"),
    )
    for table, columns in INDEXES:
        for column in columns:
            op.create_index(op.f(f"ix_{table}_{column}"), table, [column], unique=False)


def downgrade() -> None:
    for table, columns in reversed(INDEXES):
        for column in reversed(columns):
            op.drop_index(op.f(f"ix_{table}_{column}"), table_name=table)
    op.drop_table("diff_summaries")
    op.drop_table("history_resources")
    op.drop_table("history_findings")
    op.drop_table("references")
    op.drop_table("packages")
    op.drop_table("resources")
    op.drop_table("findings")
    op.drop_table("reports")
