"""Write each node's CIS score as a YAML external fact file."""

import logging
import os
import re
import tempfile

import yaml

from pdc_enhancer.schemas.compliance import NodeComplianceRecord

logger = logging.getLogger(__name__)

FACT_FILE_PREFIX = "cis_score_"
FACT_FILE_SUFFIX = ".yaml"
FACT_KEY = "cis_score"

# Certnames become file names; anything outside this set could escape the directory.
_SAFE_CERTNAME = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


def fact_file_name(certname: str) -> str:
    return f"{FACT_FILE_PREFIX}{certname}{FACT_FILE_SUFFIX}"


def render_fact(record: NodeComplianceRecord) -> str:
    return yaml.safe_dump({FACT_KEY: record.model_dump()}, default_flow_style=False, sort_keys=True)


def _write_atomic(path: str, content: str) -> None:
    directory = os.path.dirname(path)
    fd, tmp_path = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except OSError:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def write_fact_files(
    records: dict[str, NodeComplianceRecord],
    facts_dir: str,
    logger: logging.Logger = logger,
) -> list[str]:
    """
    Write cis_score_<certname>.yaml for every record and remove fact files for
    nodes no longer in the export. Returns the written paths, sorted.
    """
    os.makedirs(facts_dir, exist_ok=True)
    written: list[str] = []
    for certname in sorted(records):
        if not _SAFE_CERTNAME.match(certname):
            logger.warning("Skipping CIS score fact for unsafe certname %r", certname)
            continue
        path = os.path.join(facts_dir, fact_file_name(certname))
        _write_atomic(path, render_fact(records[certname]))
        written.append(path)

    keep = {os.path.basename(p) for p in written}
    removed = 0
    for name in sorted(os.listdir(facts_dir)):
        if name.startswith(FACT_FILE_PREFIX) and name.endswith(FACT_FILE_SUFFIX) and name not in keep:
            try:
                os.remove(os.path.join(facts_dir, name))
                removed += 1
            except FileNotFoundError:
                continue
    logger.info("CIS score facts: written=%s removed=%s dir=%s", len(written), removed, facts_dir)
    return written
