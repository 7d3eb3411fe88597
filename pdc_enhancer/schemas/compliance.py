"""Pydantic schema for per-node CIS compliance scores parsed from the SCM export."""

from pydantic import BaseModel, Field

# CSV header -> record field. Lookups are case-sensitive against these names.
CSV_NODE_COLUMN = "Node"
CSV_TIMESTAMP_COLUMN = "Scan timestamp"
CSV_COLUMNS: dict[str, str] = {
    CSV_TIMESTAMP_COLUMN: "scan_timestamp",
    "Scan type": "scan_type",
    "Scanned benchmark": "scanned_benchmark",
    "Scanned profile": "scanned_profile",
    "Adjusted compliance score": "adjusted_compliance_score",
    "Exception score": "exception_score",
}


class NodeComplianceRecord(BaseModel):
    """
    One node's most recent CIS scan as exported by SCM.

    Every field is always present; values missing from the CSV are empty strings.
    Scores are kept as the CSV text rather than parsed into numbers.
    """

    model_config = {"frozen": True}

    scan_timestamp: str = Field(
        ...,
        min_length=1,
        description="ISO-8601 scan time as written by SCM (opaque).",
    )
    scan_type: str = Field(default="", description="e.g. 'ad hoc' or 'scheduled'.")
    scanned_benchmark: str = Field(default="", description="CIS benchmark name and version.")
    scanned_profile: str = Field(default="", description="Benchmark profile, e.g. 'Level 1 - Server'.")
    adjusted_compliance_score: str = Field(default="", description="Adjusted compliance score text.")
    exception_score: str = Field(default="", description="Exception score text.")
