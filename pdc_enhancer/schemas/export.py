"""Pydantic schemas for the SCM export job lifecycle and its run result."""

from enum import Enum

from pydantic import BaseModel, Field


class ExportJobStatus(str, Enum):
    """States of one export job within a single exporter run."""

    REQUESTED = "requested"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportJobStatus.READY, ExportJobStatus.FAILED, ExportJobStatus.TIMED_OUT)


class ExportJob(BaseModel):
    """One export request to SCM. Times are monotonic clock readings in seconds."""

    id: str = Field(..., min_length=1, description="Opaque job id assigned by SCM.")
    status: ExportJobStatus = ExportJobStatus.REQUESTED
    created_at: float = Field(..., description="Monotonic time the job was created.")
    deadline: float = Field(..., description="created_at + SCM_MAX_WAIT_TIME.")


class RetainedExport(BaseModel):
    """A downloaded export kept on disk, stamped with its retrieval time."""

    path: str
    retrieved_at: str = Field(..., description="UTC retrieval stamp, YYYYmmddTHHMMSSZ.")


class ExportRunResult(BaseModel):
    """Outcome of one exporter run."""

    job_id: str | None = Field(default=None, description="SCM job id, if one was created.")
    status: ExportJobStatus = Field(..., description="Final job state for this run.")
    export_path: str | None = Field(
        default=None,
        description="Current export file written by this run (Ready only).",
    )
    retained: RetainedExport | None = None
    deleted: list[str] = Field(
        default_factory=list,
        description="Retained exports removed to stay within SCM_EXPORT_RETENTION.",
    )
    fact_files: list[str] = Field(default_factory=list)
