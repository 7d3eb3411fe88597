"""Parse the SCM CIS summary CSV into per-node compliance records keyed by certname."""

import csv
import logging

from pdc_enhancer.schemas.compliance import (
    CSV_COLUMNS,
    CSV_NODE_COLUMN,
    CSV_TIMESTAMP_COLUMN,
    NodeComplianceRecord,
)

logger = logging.getLogger(__name__)


class CsvIngestionError(Exception):
    """Raised when the export exists but cannot be parsed; no partial result is returned."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(message)


def _cell(row: dict[str, str | None], column: str) -> str:
    value = row.get(column)
    if value is None:
        return ""
    return value.strip()


def _record_from_row(row: dict[str, str | None]) -> tuple[str, NodeComplianceRecord] | None:
    """Return (certname, record) or None when the node or timestamp is blank."""
    certname = _cell(row, CSV_NODE_COLUMN).lower()
    scan_timestamp = _cell(row, CSV_TIMESTAMP_COLUMN)
    if not certname or not scan_timestamp:
        return None
    fields = {field: _cell(row, column) for column, field in CSV_COLUMNS.items()}
    return certname, NodeComplianceRecord(**fields)


def parse_compliance_csv(
    csv_path: str,
    logger: logging.Logger = logger,
) -> dict[str, NodeComplianceRecord]:
    """
    Read the CIS summary export at csv_path.

    Columns are looked up by header name, so order and extra columns do not matter.
    Certnames are lower-cased; when a node appears more than once the last row wins.
    A missing file is expected before the first export and yields {} with a warning;
    an existing file without usable rows yields {} with a different warning.
    Raises CsvIngestionError on malformed CSV or any I/O error other than not-found.
    """
    result: dict[str, NodeComplianceRecord] = {}
    skipped = 0
    try:
        with open(csv_path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f, restval="", strict=True)
            header = reader.fieldnames or []
            missing = [c for c in (CSV_NODE_COLUMN, CSV_TIMESTAMP_COLUMN) if c not in header]
            if header and missing:
                logger.warning(
                    "CIS score CSV %s is missing required columns: %s",
                    csv_path,
                    ", ".join(missing),
                )
            for row in reader:
                if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
                    continue
                parsed = _record_from_row(row)
                if parsed is None:
                    skipped += 1
                    continue
                certname, record = parsed
                result[certname] = record
    except FileNotFoundError:
        logger.warning(
            "CIS score CSV not found: %s. Skipping CIS scores until the SCM export runs. "
            "This is expected on first run.",
            csv_path,
        )
        return {}
    except (csv.Error, UnicodeDecodeError, OSError) as e:
        raise CsvIngestionError(f"Error parsing CIS CSV {csv_path}: {e}", path=csv_path) from e

    if skipped:
        logger.debug("Skipped %s CSV rows without a node name or scan timestamp", skipped)
    if not result:
        logger.warning(
            "CIS score CSV %s exists but contains no valid node data. "
            "Check CSV format and contents.",
            csv_path,
        )
    return result
