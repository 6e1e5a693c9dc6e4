"""Normalize raw scanner findings to the canonical finding shape, collecting per-record skips."""

import logging
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from vulntrail.schemas.findings import (
    MAX_ACCOUNT_ID_LENGTH,
    NormalizedFinding,
    NormalizedPackage,
    NormalizedResource,
    SeverityLevel,
    SkipDiagnostic,
)
from vulntrail.services.errors import MixedAccountError

logger = logging.getLogger(__name__)

# Severity aliases (case-insensitive) -> canonical level.
_SEVERITY_ALIASES: dict[str, SeverityLevel] = {
    "critical": "CRITICAL",
    "crit": "CRITICAL",
    "high": "HIGH",
    "medium": "MEDIUM",
    "med": "MEDIUM",
    "moderate": "MEDIUM",
    "low": "LOW",
    "informational": "INFORMATIONAL",
    "info": "INFORMATIONAL",
    "informative": "INFORMATIONAL",
    "untriaged": "UNTRIAGED",
}

_FIX_AVAILABLE_ALIASES: dict[str, str] = {
    "yes": "YES",
    "true": "YES",
    "1": "YES",
    "no": "NO",
    "false": "NO",
    "0": "NO",
    "partial": "PARTIAL",
}

# CVE: CVE-YEAR-NNNNN+ (4+ digits after second hyphen).
_CVE_PATTERN = re.compile(r"CVE-\d{4}-\d{4,}", re.IGNORECASE)
# GHSA: GHSA-xxxx-xxxx-xxxx (4 alphanumeric groups).
_GHSA_PATTERN = re.compile(r"GHSA-[a-z0-9]{4}-[a-z0-9]{4}-[a-z0-9]{4}", re.IGNORECASE)

MAX_VULN_ID_LENGTH = 255

# Resource detail blocks that carry an OS/runtime platform.
_PLATFORM_DETAIL_KEYS = ("awsEc2Instance", "awsEcrContainerImage")


class NormalizationResult(BaseModel):
    """Accepted findings plus one diagnostic per skipped record. Skips never fail the file."""

    findings: list[NormalizedFinding] = Field(default_factory=list)
    diagnostics: list[SkipDiagnostic] = Field(default_factory=list)

    @property
    def accepted(self) -> int:
        return len(self.findings)

    @property
    def skipped(self) -> int:
        return len(self.diagnostics)


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value).strip() or None


def _score_or_none(value: Any, upper: float) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return score if 0 <= score <= upper else None


def normalize_severity(raw_severity: Any) -> SeverityLevel | None:
    """Map a raw severity to the canonical level, or None when it is missing or unknown."""
    text = _str_or_none(raw_severity)
    if text is None:
        return None
    return _SEVERITY_ALIASES.get(text.lower())


def normalize_fix_available(raw: Any) -> str:
    """YES / NO / PARTIAL; booleans and yes/no strings accepted, anything else counts as NO."""
    if isinstance(raw, bool):
        return "YES" if raw else "NO"
    text = _str_or_none(raw)
    if text is None:
        return "NO"
    return _FIX_AVAILABLE_ALIASES.get(text.lower(), "NO")


def extract_cve(text: str | None) -> str | None:
    """Return the first CVE identifier found in text, or None. Bounded to MAX_VULN_ID_LENGTH."""
    if not text or not isinstance(text, str):
        return None
    match = _CVE_PATTERN.search(text)
    if not match:
        return None
    value = match.group(0)
    if len(value) > MAX_VULN_ID_LENGTH:
        return None
    return value.upper()


def extract_ghsa(text: str | None) -> str | None:
    """Return the first GHSA identifier found in text, or None. Bounded to MAX_VULN_ID_LENGTH."""
    if not text or not isinstance(text, str):
        return None
    match = _GHSA_PATTERN.search(text)
    if not match:
        return None
    value = match.group(0)
    if len(value) > MAX_VULN_ID_LENGTH:
        return None
    return value


def _resolve_vulnerability_id(record: dict[str, Any], details: dict[str, Any]) -> str | None:
    """Use the scanner's vulnerability id when present, else the first CVE/GHSA in the title."""
    raw_id = _str_or_none(details.get("vulnerabilityId"))
    if raw_id:
        return raw_id[:MAX_VULN_ID_LENGTH]
    title = _str_or_none(record.get("title"))
    return extract_cve(title) or extract_ghsa(title)


def _platform(details: Any) -> str | None:
    if not isinstance(details, dict):
        return None
    for key in _PLATFORM_DETAIL_KEYS:
        block = details.get(key)
        if isinstance(block, dict) and _str_or_none(block.get("platform")):
            return _str_or_none(block.get("platform"))
    lambda_block = details.get("awsLambdaFunction")
    if isinstance(lambda_block, dict) and _str_or_none(lambda_block.get("runtime")):
        return _str_or_none(lambda_block.get("runtime"))
    return _str_or_none(details.get("platform"))


def normalize_resource(raw: Any) -> NormalizedResource | None:
    """Normalize one resource entry; non-object entries are dropped."""
    if not isinstance(raw, dict):
        return None
    resource_id = _str_or_none(raw.get("id"))
    details = raw.get("details") if isinstance(raw.get("details"), dict) else None
    tags = raw.get("tags") if isinstance(raw.get("tags"), dict) else None
    arn = _str_or_none(raw.get("arn"))
    if arn is None and resource_id and resource_id.startswith("arn:"):
        arn = resource_id
    return NormalizedResource(
        resource_id=resource_id,
        resource_arn=arn,
        resource_type=_str_or_none(raw.get("type")),
        platform=_platform(details),
        region=_str_or_none(raw.get("region")),
        details=details,
        tags=tags,
    )


def normalize_package(raw: Any) -> NormalizedPackage | None:
    """Normalize one vulnerable package; entries without a name are dropped."""
    if not isinstance(raw, dict):
        return None
    name = _str_or_none(raw.get("name"))
    if name is None:
        return None
    return NormalizedPackage(
        name=name,
        version=_str_or_none(raw.get("version")),
        fixed_in_version=_str_or_none(raw.get("fixedInVersion")),
        ecosystem=_str_or_none(raw.get("packageManager")),
        file_path=_str_or_none(raw.get("filePath")),
    )


def _as_list(raw: Any) -> list:
    return raw if isinstance(raw, list) else []


def _normalize_references(raw: Any) -> list[str]:
    seen: set[str] = set()
    urls: list[str] = []
    for item in _as_list(raw):
        url = _str_or_none(item)
        if url and url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


def build_match_key(
    finding_arn: str | None,
    vulnerability_id: str | None,
    resources: list[NormalizedResource],
) -> str | None:
    """Finding ARN when present; otherwise vulnerability id + first resource id; else None."""
    if finding_arn:
        return finding_arn
    resource_id = next((r.resource_id for r in resources if r.resource_id), None)
    if vulnerability_id and resource_id:
        return f"{vulnerability_id}::{resource_id}"
    return None


def _validation_reason(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "invalid field values: " + "; ".join(parts)


def normalize_record(record: dict[str, Any], index: int) -> NormalizedFinding | SkipDiagnostic:
    """
    Convert one raw record into a NormalizedFinding, or a SkipDiagnostic explaining
    why it cannot be used. index is the 1-based position in the file.
    """
    details = record.get("packageVulnerabilityDetails")
    if not isinstance(details, dict):
        details = {}
    finding_arn = _str_or_none(record.get("findingArn"))
    vulnerability_id = _resolve_vulnerability_id(record, details)

    try:
        resources = [r for r in (normalize_resource(x) for x in _as_list(record.get("resources"))) if r]
        packages = [p for p in (normalize_package(x) for x in _as_list(details.get("vulnerablePackages"))) if p]
    except ValidationError as e:
        return SkipDiagnostic(index=index, finding_key=finding_arn, reason=_validation_reason(e))
    references = _normalize_references(details.get("referenceUrls"))

    match_key = build_match_key(finding_arn, vulnerability_id, resources)
    label = finding_arn or match_key

    missing = []
    if match_key is None:
        missing.append("findingArn (or vulnerability id and resource id)")
    for field in ("title", "severity", "status", "firstObservedAt", "lastObservedAt"):
        if _str_or_none(record.get(field)) is None:
            missing.append(field)
    if missing:
        return SkipDiagnostic(
            index=index,
            finding_key=label,
            reason=f"missing required field(s): {', '.join(missing)}",
        )

    severity = normalize_severity(record.get("severity"))
    if severity is None:
        return SkipDiagnostic(
            index=index,
            finding_key=label,
            reason=f"unrecognized severity {record.get('severity')!r}",
        )

    epss = record.get("epss")
    try:
        return NormalizedFinding(
            match_key=match_key,
            finding_arn=finding_arn,
            account_id=_str_or_none(record.get("awsAccountId")),
            vulnerability_id=vulnerability_id,
            title=_str_or_none(record.get("title")),
            description=_str_or_none(record.get("description")) or "",
            severity=severity,
            status=_str_or_none(record.get("status")).upper(),
            fix_available=normalize_fix_available(record.get("fixAvailable")),
            exploit_available=(_str_or_none(record.get("exploitAvailable")) or "").upper() or None,
            inspector_score=_score_or_none(record.get("inspectorScore"), 10),
            epss_score=_score_or_none(epss.get("score"), 1) if isinstance(epss, dict) else None,
            first_observed_at=record.get("firstObservedAt"),
            last_observed_at=record.get("lastObservedAt"),
            updated_at=record.get("updatedAt") or None,
            resources=resources,
            packages=packages,
            references=references,
        )
    except ValidationError as e:
        return SkipDiagnostic(index=index, finding_key=label, reason=_validation_reason(e))


def normalize_findings(records: list[dict[str, Any]], filename: str = "") -> NormalizationResult:
    """
    Normalize every record of one file. Malformed records and repeated match keys
    (first occurrence wins) become diagnostics; they are logged and counted, not raised.
    """
    result = NormalizationResult()
    first_index: dict[str, int] = {}
    for index, record in enumerate(records, start=1):
        outcome = normalize_record(record, index)
        if isinstance(outcome, NormalizedFinding) and outcome.match_key in first_index:
            outcome = SkipDiagnostic(
                index=index,
                finding_key=outcome.match_key,
                reason=f"duplicate of record {first_index[outcome.match_key]}",
            )
        if isinstance(outcome, SkipDiagnostic):
            logger.warning(
                "Skipped finding",
                extra={"report_file": filename, "record_index": index, "reason": outcome.reason},
            )
            result.diagnostics.append(outcome)
            continue
        first_index[outcome.match_key] = index
        result.findings.append(outcome)
    return result


def resolve_account(
    result: NormalizationResult,
    requested_account_id: str | None,
    filename: str,
) -> str:
    """
    The single account a file belongs to. Findings without an account inherit it.
    Raises MixedAccountError when findings disagree with each other or with the request.
    """
    accounts = sorted({f.account_id for f in result.findings if f.account_id})
    if len(accounts) > 1:
        raise MixedAccountError(
            f"{filename}: findings belong to more than one account ({', '.join(accounts)}); upload one file per account.",
            filename=filename,
        )
    if accounts and requested_account_id and accounts[0] != requested_account_id:
        raise MixedAccountError(
            f"{filename}: findings belong to account {accounts[0]}, not the requested account {requested_account_id}.",
            filename=filename,
        )
    account_id = accounts[0] if accounts else requested_account_id
    if not account_id:
        raise MixedAccountError(
            f"{filename}: cannot determine the account; the file has no findings with an account id and none was given.",
            filename=filename,
        )
    if len(account_id) > MAX_ACCOUNT_ID_LENGTH:
        raise MixedAccountError(
            f"{filename}: account id must not exceed {MAX_ACCOUNT_ID_LENGTH} characters.",
            filename=filename,
        )
    return account_id
