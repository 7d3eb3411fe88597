"""Render inventory and CIS scores as textfile-collector metrics and publish them atomically."""

import logging
import math
import os
import re
import tempfile

from pdc_enhancer.schemas.compliance import NodeComplianceRecord
from pdc_enhancer.schemas.inventory import Annotations, NodeInventoryRecord

logger = logging.getLogger(__name__)

OUTPUT_FILE_MODE = 0o644

_LABEL_NAME_INVALID = re.compile(r"[^a-zA-Z0-9_]")
_RESERVED_LABELS = frozenset({"certname", "environment", "key", "value"})

# (metric name, help text); output follows this order.
METRIC_FAMILIES: list[tuple[str, str]] = [
    ("puppet_enhancer_info", "Installation-wide annotations from the Infra Assistant."),
    ("puppet_enhancer_nodes", "Number of nodes returned by PuppetDB."),
    ("puppet_enhancer_compliance_records", "Number of CIS score records matched to a PuppetDB node."),
    ("puppet_node_info", "Inventory facts for a managed node."),
    ("puppet_node_annotation_info", "Per-node annotations from the Infra Assistant."),
    ("puppet_node_cis_scanned", "1 if the node has a CIS score in the current SCM export, else 0."),
    ("puppet_node_cis_scan_info", "Details of the node's most recent CIS scan."),
    ("puppet_node_cis_adjusted_compliance_score", "Adjusted CIS compliance score of the node."),
    ("puppet_node_cis_exception_score", "CIS exception score of the node."),
]


class MetricsPublishError(Exception):
    """Raised when the metrics file cannot be written into the dropzone."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(message)


def escape_label_value(value: str) -> str:
    """Escape a label value for the text exposition format."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def fact_label_name(path: str) -> str:
    """Turn a dotted fact path into a label name: 'os.release.full' -> 'os_release_full'."""
    name = _LABEL_NAME_INVALID.sub("_", path)
    if not name or name[0].isdigit() or name in _RESERVED_LABELS or name.startswith("__"):
        name = f"fact_{name}"
    return name


def parse_score(text: str) -> float | None:
    """Return the score as a finite float, or None for empty or non-numeric text."""
    try:
        value = float(text.strip())
    except (AttributeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def _format_value(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def fact_labels(fact_paths: list[str]) -> list[tuple[str, str]]:
    """
    Map fact paths to (label name, path), sorted by path. When two paths map to
    the same label, or to one of the fixed labels, the later path is dropped.
    """
    labels: list[tuple[str, str]] = []
    seen = {"certname", "environment"}
    for path in sorted(fact_paths):
        name = fact_label_name(path)
        if name in seen:
            continue
        seen.add(name)
        labels.append((name, path))
    return labels


def _sample(name: str, labels: list[tuple[str, str]], value: float) -> str:
    if labels:
        rendered = ",".join(f'{k}="{escape_label_value(v)}"' for k, v in labels)
        return f"{name}{{{rendered}}} {_format_value(value)}"
    return f"{name} {_format_value(value)}"


def render_metrics(
    inventory: list[NodeInventoryRecord],
    compliance: dict[str, NodeComplianceRecord],
    annotations: Annotations | None = None,
) -> str:
    """
    Join inventory (left side) with compliance records by lower-cased certname
    and render the metrics body.

    Every inventory node appears; nodes without a score only get identity samples.
    Scores for nodes unknown to PuppetDB are dropped. Output is sorted and
    byte-identical for identical input.
    """
    annotations = annotations or Annotations()
    nodes: dict[str, NodeInventoryRecord] = {}
    for record in sorted(inventory, key=lambda r: (r.certname.lower(), r.certname)):
        nodes.setdefault(record.certname.lower(), record)

    samples: dict[str, list[str]] = {name: [] for name, _ in METRIC_FAMILIES}

    for key, value in sorted(annotations.global_.items()):
        samples["puppet_enhancer_info"].append(
            _sample("puppet_enhancer_info", [("key", key), ("value", value)], 1)
        )

    matched = 0
    for key in sorted(nodes):
        node = nodes[key]
        identity = [("certname", node.certname)]
        info_labels = identity + [("environment", node.environment)]
        info_labels += [(name, node.facts[path]) for name, path in fact_labels(list(node.facts))]
        samples["puppet_node_info"].append(_sample("puppet_node_info", info_labels, 1))

        for ann_key, ann_value in sorted(annotations.nodes.get(key, {}).items()):
            samples["puppet_node_annotation_info"].append(
                _sample(
                    "puppet_node_annotation_info",
                    identity + [("key", ann_key), ("value", ann_value)],
                    1,
                )
            )

        score = compliance.get(key)
        samples["puppet_node_cis_scanned"].append(
            _sample("puppet_node_cis_scanned", identity, 1 if score else 0)
        )
        if score is None:
            continue
        matched += 1
        samples["puppet_node_cis_scan_info"].append(
            _sample(
                "puppet_node_cis_scan_info",
                identity
                + [
                    ("scan_timestamp", score.scan_timestamp),
                    ("scan_type", score.scan_type),
                    ("benchmark", score.scanned_benchmark),
                    ("profile", score.scanned_profile),
                ],
                1,
            )
        )
        for name, text in (
            ("puppet_node_cis_adjusted_compliance_score", score.adjusted_compliance_score),
            ("puppet_node_cis_exception_score", score.exception_score),
        ):
            value = parse_score(text)
            if value is not None:
                samples[name].append(_sample(name, identity, value))

    samples["puppet_enhancer_nodes"].append(_sample("puppet_enhancer_nodes", [], len(nodes)))
    samples["puppet_enhancer_compliance_records"].append(
        _sample("puppet_enhancer_compliance_records", [], matched)
    )

    lines: list[str] = []
    for name, help_text in METRIC_FAMILIES:
        if not samples[name]:
            continue
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} gauge")
        lines.extend(samples[name])
    return "\n".join(lines) + "\n"


def publish_metrics(
    body: str,
    output_path: str,
    logger: logging.Logger = logger,
) -> str:
    """
    Atomically replace output_path with body: write a temporary file in the same
    directory, fsync, then rename over the target. Readers never see a partial file.

    Raises MetricsPublishError if the directory is missing or not writable, or the
    write fails; the existing target is left untouched in every failure case.
    """
    directory = os.path.dirname(os.path.abspath(output_path))
    if not os.path.isdir(directory):
        raise MetricsPublishError(f"Dropzone directory does not exist: {directory}", path=output_path)
    if not os.access(directory, os.W_OK | os.X_OK):
        raise MetricsPublishError(f"Dropzone directory is not writable: {directory}", path=output_path)

    base = os.path.basename(output_path)
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=directory)
    except OSError as e:
        raise MetricsPublishError(f"Cannot create temporary file in {directory}: {e}", path=output_path) from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(body)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, OUTPUT_FILE_MODE)
        os.replace(tmp_path, output_path)
    except OSError as e:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise MetricsPublishError(f"Failed to write metrics to {output_path}: {e}", path=output_path) from e

    logger.info("Published metrics: path=%s bytes=%s", output_path, len(body.encode("utf-8")))
    return output_path
