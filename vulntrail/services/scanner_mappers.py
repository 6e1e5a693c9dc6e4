"""Map export-specific record shapes to the scanner's native structured finding shape."""

from typing import Any

# Required CSV header columns; a file missing any of them is rejected as a whole.
CSV_REQUIRED_COLUMNS: tuple[str, ...] = (
    "AWS Account Id",
    "Finding ARN",
    "Title",
    "Description",
    "Severity",
    "Status",
    "First Seen",
    "Last Seen",
)

# Scalar CSV column -> top-level structured key.
CSV_SCALAR_COLUMNS: dict[str, str] = {
    "AWS Account Id": "awsAccountId",
    "Finding ARN": "findingArn",
    "Title": "title",
    "Description": "description",
    "Severity": "severity",
    "Status": "status",
    "Fix Available": "fixAvailable",
    "Exploit Available": "exploitAvailable",
    "First Seen": "firstObservedAt",
    "Last Seen": "lastObservedAt",
    "Last Updated": "updatedAt",
}

# Positional package columns (comma-separated, one entry per affected package).
CSV_PACKAGE_COLUMNS: dict[str, str] = {
    "Package Installed Version": "version",
    "Fixed in Version": "fixedInVersion",
    "Package Manager": "packageManager",
    "File Path": "filePath",
}

# Generic alias: alternate top-level key -> native key. Applied to structured records
# produced by other tooling (CLI dumps, re-exports) that rename the usual fields.
GENERIC_ALIASES: dict[str, str] = {
    "arn": "findingArn",
    "finding_arn": "findingArn",
    "accountId": "awsAccountId",
    "account_id": "awsAccountId",
    "firstSeen": "firstObservedAt",
    "first_observed_at": "firstObservedAt",
    "lastSeen": "lastObservedAt",
    "last_observed_at": "lastObservedAt",
    "fix_available": "fixAvailable",
    "exploit_available": "exploitAvailable",
    "inspector_score": "inspectorScore",
}


def _str_or_none(value: Any) -> str | None:
    """Return string or None; coerce non-str to str if sensible."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value).strip() or None


def _float_or_none(value: Any) -> float | None:
    text = _str_or_none(value)
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def split_list(value: Any) -> list[str]:
    """Split a comma-separated cell into trimmed, non-empty parts."""
    text = _str_or_none(value)
    if text is None:
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


def map_csv_row(row: dict[str, Any]) -> dict[str, Any]:
    """
    Convert one CSV row (header -> cell) into the structured finding shape.

    Package columns are zipped positionally: the n-th installed version belongs to
    the n-th affected package. Missing trailing entries simply stay unset.
    """
    out: dict[str, Any] = {}
    for column, key in CSV_SCALAR_COLUMNS.items():
        value = _str_or_none(row.get(column))
        if value is not None:
            out[key] = value

    score = _float_or_none(row.get("Inspector Score"))
    if score is not None:
        out["inspectorScore"] = score
    epss = _float_or_none(row.get("Epss Score"))
    if epss is not None:
        out["epss"] = {"score": epss}

    resources: list[dict[str, Any]] = []
    resource_id = _str_or_none(row.get("Resource ID"))
    if resource_id:
        resource: dict[str, Any] = {
            "id": resource_id,
            "type": _str_or_none(row.get("Resource Type")),
            "region": _str_or_none(row.get("Region")),
        }
        platform = _str_or_none(row.get("Platform"))
        if platform:
            resource["details"] = {"platform": platform}
        resources.append(resource)
    out["resources"] = resources

    details: dict[str, Any] = {}
    vulnerability_id = _str_or_none(row.get("Vulnerability Id"))
    if vulnerability_id:
        details["vulnerabilityId"] = vulnerability_id
    references = split_list(row.get("Reference Urls"))
    if references:
        details["referenceUrls"] = references

    names = split_list(row.get("Affected Packages"))
    columns = {key: split_list(row.get(column)) for column, key in CSV_PACKAGE_COLUMNS.items()}
    packages: list[dict[str, Any]] = []
    for i, name in enumerate(names):
        pkg: dict[str, Any] = {"name": name}
        for key, values in columns.items():
            if i < len(values):
                pkg[key] = values[i]
        packages.append(pkg)
    details["vulnerablePackages"] = packages
    out["packageVulnerabilityDetails"] = details
    return out


def apply_generic_aliases(obj: dict[str, Any]) -> dict[str, Any]:
    """
    Copy a structured record, renaming known alias keys to native keys.
    Native keys win when both forms are present.
    """
    result = dict(obj)
    for alias, target in GENERIC_ALIASES.items():
        if alias in obj and target not in obj:
            result[target] = result.pop(alias)
    return result
