"""Shared fixtures for tests that need a database and Inspector-shaped export payloads."""

import json
from datetime import date

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vulntrail.core.config import Settings
from vulntrail.core.locks import AccountLockManager
from vulntrail.models import Base
from vulntrail.services.ingest import IngestionOrchestrator

ACCOUNT = "111122223333"
OTHER_ACCOUNT = "444455556666"
TODAY = date(2024, 6, 1)


def make_session_factory():
    """In-memory SQLite shared by every session of one test (StaticPool keeps one connection)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, autocommit=False)


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "INGEST_PARSE_WORKERS": 2,
        "INGEST_LOCK_TIMEOUT_SEC": 2.0,
    }
    values.update(overrides)
    return Settings(**values)


def make_orchestrator(session_factory, **overrides) -> IngestionOrchestrator:
    settings = make_settings(**overrides)
    return IngestionOrchestrator(
        session_factory,
        settings,
        lock_manager=AccountLockManager(settings.INGEST_LOCK_TIMEOUT_SEC),
    )


def inspector_finding(
    key: str,
    first: str = "2024-01-10T08:00:00Z",
    last: str = "2024-01-10T08:00:00Z",
    severity: str = "HIGH",
    account: str | None = ACCOUNT,
    fix_available: str = "YES",
    resource_type: str = "AWS_EC2_INSTANCE",
    platform: str = "AMAZON_LINUX_2",
    vulnerability_id: str | None = None,
) -> dict:
    """One finding in the native JSON export shape. key is used for the ARN suffix and resource id."""
    finding = {
        "findingArn": f"arn:aws:inspector2:us-east-1:{account or ACCOUNT}:finding/{key}",
        "title": f"{vulnerability_id or 'CVE-2024-0001'} - openssl ({key})",
        "description": f"Vulnerability {key} in openssl.",
        "severity": severity,
        "status": "ACTIVE",
        "fixAvailable": fix_available,
        "firstObservedAt": first,
        "lastObservedAt": last,
        "updatedAt": last,
        "inspectorScore": 7.5,
        "epss": {"score": 0.02},
        "resources": [
            {
                "id": f"i-{key}",
                "type": resource_type,
                "region": "us-east-1",
                "details": {"awsEc2Instance": {"platform": platform}},
                "tags": {"Name": f"host-{key}"},
            }
        ],
        "packageVulnerabilityDetails": {
            "vulnerabilityId": vulnerability_id or f"CVE-2024-{1000 + sum(map(ord, key))}",
            "referenceUrls": [f"https://nvd.nist.gov/vuln/detail/{key}"],
            "vulnerablePackages": [
                {"name": "openssl", "version": "1.0.2k", "fixedInVersion": "1.0.2zk", "packageManager": "OS"}
            ],
        },
    }
    if account is not None:
        finding["awsAccountId"] = account
    return finding


def export_json(*findings: dict, **metadata) -> bytes:
    return json.dumps({"findings": list(findings), **metadata}).encode("utf-8")


def arn(key: str, account: str = ACCOUNT) -> str:
    return f"arn:aws:inspector2:us-east-1:{account}:finding/{key}"
