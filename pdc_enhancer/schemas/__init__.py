"""Pydantic data schemas."""

from pdc_enhancer.schemas.compliance import NodeComplianceRecord
from pdc_enhancer.schemas.export import (
    ExportJob,
    ExportJobStatus,
    ExportRunResult,
    RetainedExport,
)
from pdc_enhancer.schemas.inventory import Annotations, NodeInventoryRecord

__all__ = [
    "Annotations",
    "ExportJob",
    "ExportJobStatus",
    "ExportRunResult",
    "NodeComplianceRecord",
    "NodeInventoryRecord",
    "RetainedExport",
]
