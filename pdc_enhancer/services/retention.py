"""Export retention: keep only the newest SCM_EXPORT_RETENTION downloaded exports."""

import logging
import os
import re
from datetime import datetime, timezone

from pdc_enhancer.core.config import CURRENT_EXPORT_FILENAME
from pdc_enhancer.schemas.export import RetainedExport

logger = logging.getLogger(__name__)

STAMP_FORMAT = "%Y%m%dT%H%M%SZ"

_STEM, _EXT = os.path.splitext(CURRENT_EXPORT_FILENAME)
# Summary_Report_API_20250909T001743Z.csv, optionally with a -N collision suffix.
_RETAINED_PATTERN = re.compile(
    rf"^{re.escape(_STEM)}_(?P<stamp>\d{{8}}T\d{{6}}Z)(?:-(?P<seq>\d+))?{re.escape(_EXT)}$"
)


def retained_export_name(retrieved_at: datetime, seq: int = 0) -> str:
    stamp = retrieved_at.astimezone(timezone.utc).strftime(STAMP_FORMAT)
    suffix = f"-{seq}" if seq else ""
    return f"{_STEM}_{stamp}{suffix}{_EXT}"


def list_retained_exports(directory: str) -> list[RetainedExport]:
    """Return retained exports in directory, oldest first. Missing directory -> []."""
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return []
    entries: list[tuple[str, int, RetainedExport]] = []
    for name in names:
        match = _RETAINED_PATTERN.match(name)
        if not match:
            continue
        seq = int(match.group("seq") or 0)
        entries.append(
            (
                match.group("stamp"),
                seq,
                RetainedExport(path=os.path.join(directory, name), retrieved_at=match.group("stamp")),
            )
        )
    entries.sort(key=lambda e: (e[0], e[1]))
    return [e[2] for e in entries]


def prune_retained_exports(
    directory: str,
    keep: int,
    logger: logging.Logger = logger,
) -> list[str]:
    """
    Delete the oldest retained exports until at most keep remain.

    Returns the deleted paths. Idempotent: safe to run repeatedly. The current
    export file is never part of the ledger and is never deleted here.
    """
    if keep < 1:
        raise ValueError("keep must be at least 1")
    retained = list_retained_exports(directory)
    excess = len(retained) - keep
    if excess <= 0:
        return []

    deleted: list[str] = []
    for export in retained[:excess]:
        try:
            os.remove(export.path)
        except FileNotFoundError:
            # Already gone (e.g. an overlapping run pruned it).
            continue
        deleted.append(export.path)

    if deleted:
        logger.info(
            "Retention run: keep=%s, exports_deleted=%s",
            keep,
            len(deleted),
        )
    return deleted
