"""Drive an SCM CIS summary export: request a job, poll it, download and retain the CSV."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import httpx

from pdc_enhancer.schemas.export import (
    ExportJob,
    ExportJobStatus,
    ExportRunResult,
    RetainedExport,
)
from pdc_enhancer.services.csv_ingest import CsvIngestionError, parse_compliance_csv
from pdc_enhancer.services.fact_export import write_fact_files
from pdc_enhancer.services.http_retry import (
    RetryDeadlineExceeded,
    ServiceRequestError,
    request_with_retry,
)
from pdc_enhancer.services.retention import (
    STAMP_FORMAT,
    prune_retained_exports,
    retained_export_name,
)

if TYPE_CHECKING:
    from pdc_enhancer.core.config import Settings

logger = logging.getLogger(__name__)

EXPORTS_PATH = "/api/v1/reports/exports"
EXPORT_REQUEST_BODY = {"report": "cis_summary", "format": "csv"}

# Logged in place of the bearer token.
REDACTED_AUTH = "Bearer ****"

# SCM status vocabulary -> job state. Unknown values are treated as still pending.
SCM_STATUS_MAP: dict[str, ExportJobStatus] = {
    "pending": ExportJobStatus.PENDING,
    "queued": ExportJobStatus.PENDING,
    "running": ExportJobStatus.PENDING,
    "in_progress": ExportJobStatus.PENDING,
    "ready": ExportJobStatus.READY,
    "complete": ExportJobStatus.READY,
    "completed": ExportJobStatus.READY,
    "succeeded": ExportJobStatus.READY,
    "failed": ExportJobStatus.FAILED,
    "error": ExportJobStatus.FAILED,
    "cancelled": ExportJobStatus.FAILED,
}

EXPORT_FILE_MODE = 0o644


class ScmNotConfiguredError(Exception):
    """Raised when the exporter is invoked but SCM_HOST or SCM_API_TOKEN is missing."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ScmApiError(Exception):
    """Raised when SCM cannot be reached or answers with an error (auth, protocol, retries exhausted)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _is_scm_configured(settings: Settings) -> bool:
    if not settings.SCM_HOST or not settings.SCM_HOST.strip():
        return False
    if settings.SCM_API_TOKEN is None:
        return False
    token_val = settings.SCM_API_TOKEN.get_secret_value()
    if not token_val or not token_val.strip():
        return False
    return True


def _get_token(settings: Settings) -> str:
    if settings.SCM_API_TOKEN is None:
        raise ScmNotConfiguredError("SCM_API_TOKEN is not set.")
    return settings.SCM_API_TOKEN.get_secret_value().strip()


def map_scm_status(raw: Any) -> ExportJobStatus | None:
    """Map an SCM status string to a job state; None if unrecognised."""
    if not isinstance(raw, str):
        return None
    return SCM_STATUS_MAP.get(raw.strip().lower())


def _raise_for_scm_response(resp: httpx.Response, action: str) -> None:
    if resp.status_code in (401, 403):
        raise ScmApiError(
            f"SCM authentication failed while trying to {action} (check SCM_API_TOKEN).",
            resp.status_code,
        )
    if resp.status_code >= 400:
        detail = resp.text[:500] if resp.text else "Unknown error"
        raise ScmApiError(f"SCM returned {resp.status_code} while trying to {action}: {detail}", resp.status_code)


def _write_atomic(path: str, content: bytes) -> None:
    """Write content to path via a temporary file and rename in the same directory."""
    directory = os.path.dirname(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, EXPORT_FILE_MODE)
        os.replace(tmp_path, path)
    except OSError:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


class ExportJobDriver:
    """
    One exporter run against SCM.

    States: Requested -> Pending -> Ready | Failed | TimedOut. The deadline is
    checked with the monotonic clock before every wait in Pending; nothing is
    persisted between runs.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.Client,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: logging.Logger = logger,
    ) -> None:
        self.settings = settings
        self.client = client
        self.clock = clock
        self.sleep = sleep
        self.now = now
        self.logger = logger

    def _get_with_retry(
        self,
        url: str,
        action: str,
        accept: str = "application/json",
        deadline: float | None = None,
    ) -> httpx.Response:
        """GET with the retry policy. RetryDeadlineExceeded propagates to the caller."""
        try:
            return request_with_retry(
                self.client,
                "GET",
                url,
                headers={"Accept": accept},
                timeout=self.settings.HTTP_TIMEOUT,
                retries=self.settings.HTTP_RETRIES,
                retry_delay=self.settings.RETRY_DELAY,
                service="SCM",
                sleep=self.sleep,
                logger=self.logger,
                deadline=deadline,
                clock=self.clock,
            )
        except RetryDeadlineExceeded:
            raise
        except ServiceRequestError as e:
            if e.status_code in (401, 403):
                raise ScmApiError(
                    f"SCM authentication failed while trying to {action} (check SCM_API_TOKEN).",
                    e.status_code,
                ) from e
            raise ScmApiError(f"Could not {action}: {e.message}", e.status_code) from e

    def create_job(self) -> ExportJob:
        """POST the export request once; any failure ends the run."""
        url = f"{self.settings.SCM_HOST}{EXPORTS_PATH}"
        self.logger.info("Requesting CIS summary export from %s (auth: %s)", self.settings.SCM_HOST, REDACTED_AUTH)
        try:
            resp = self.client.post(url, json=EXPORT_REQUEST_BODY)
        except httpx.HTTPError as e:
            raise ScmApiError(f"SCM export request failed: {type(e).__name__}: {e}") from e
        _raise_for_scm_response(resp, "request an export")
        try:
            body = resp.json()
        except json.JSONDecodeError as e:
            raise ScmApiError("SCM export response is not valid JSON.") from e
        job_id = body.get("id") if isinstance(body, dict) else None
        if job_id is None or not str(job_id).strip():
            raise ScmApiError("SCM export response missing job id.")
        created_at = self.clock()
        job = ExportJob(
            id=str(job_id).strip(),
            status=ExportJobStatus.REQUESTED,
            created_at=created_at,
            deadline=created_at + self.settings.SCM_MAX_WAIT_TIME,
        )
        self.logger.info("SCM export job created: id=%s max_wait=%ss", job.id, self.settings.SCM_MAX_WAIT_TIME)
        return job

    def poll_status(self, job: ExportJob) -> ExportJobStatus:
        url = f"{self.settings.SCM_HOST}{EXPORTS_PATH}/{job.id}"
        resp = self._get_with_retry(url, f"get status of export job {job.id}", deadline=job.deadline)
        try:
            body = resp.json()
        except json.JSONDecodeError as e:
            raise ScmApiError(f"SCM status response for job {job.id} is not valid JSON.") from e
        raw = body.get("status") if isinstance(body, dict) else None
        status = map_scm_status(raw)
        if status is None:
            self.logger.warning("SCM export job %s reported unknown status %r; still waiting", job.id, raw)
            return ExportJobStatus.PENDING
        self.logger.debug("SCM export job %s status=%s", job.id, raw)
        return status

    def wait_for_job(self, job: ExportJob) -> ExportJob:
        """Poll until the job is Ready or Failed, or mark it TimedOut at the deadline."""
        job.status = ExportJobStatus.PENDING
        poll_interval = self.settings.SCM_POLL_INTERVAL
        while True:
            remaining = job.deadline - self.clock()
            if remaining <= 0:
                job.status = ExportJobStatus.TIMED_OUT
                return job
            self.sleep(min(poll_interval, remaining))
            try:
                status = self.poll_status(job)
            except RetryDeadlineExceeded as e:
                self.logger.warning("SCM export job %s: %s", job.id, e.message)
                job.status = ExportJobStatus.TIMED_OUT
                return job
            if status.is_terminal:
                job.status = status
                return job

    def download(self, job: ExportJob) -> bytes:
        url = f"{self.settings.SCM_HOST}{EXPORTS_PATH}/{job.id}/download"
        resp = self._get_with_retry(url, f"download export job {job.id}", accept="text/csv")
        content = resp.content
        if not content or not content.strip():
            raise ScmApiError(f"SCM export job {job.id} download is empty.")
        return content

    def store_export(self, content: bytes) -> tuple[str, RetainedExport]:
        """Replace the current export, then add a stamped copy to the retained ledger."""
        directory = self.settings.score_data_dir
        os.makedirs(directory, exist_ok=True)
        current = self.settings.current_export_path
        _write_atomic(current, content)

        retrieved_at = self.now()
        seq = 0
        while True:
            retained_path = os.path.join(directory, retained_export_name(retrieved_at, seq))
            if not os.path.exists(retained_path):
                break
            seq += 1
        _write_atomic(retained_path, content)
        retained = RetainedExport(
            path=retained_path,
            retrieved_at=retrieved_at.astimezone(timezone.utc).strftime(STAMP_FORMAT),
        )
        return current, retained

    def _export_facts(self, current: str) -> list[str]:
        facts_dir = self.settings.SCM_FACTS_DIR
        if not facts_dir:
            return []
        try:
            records = parse_compliance_csv(current, logger=self.logger)
        except CsvIngestionError as e:
            self.logger.error("Not updating CIS score facts: %s", e.message)
            return []
        try:
            return write_fact_files(records, facts_dir, logger=self.logger)
        except OSError as e:
            self.logger.error("Could not write CIS score facts to %s: %s", facts_dir, e)
            return []

    def run(self) -> ExportRunResult:
        """
        Execute one export. Returns the final state; raises ScmApiError on
        request/poll/download failure. Only Ready modifies files on disk.
        """
        job = self.create_job()
        job = self.wait_for_job(job)

        if job.status == ExportJobStatus.FAILED:
            self.logger.error("SCM export job %s failed; keeping the previous export", job.id)
            return ExportRunResult(job_id=job.id, status=job.status)
        if job.status == ExportJobStatus.TIMED_OUT:
            self.logger.error(
                "SCM export job %s not ready within %ss; keeping the previous export",
                job.id,
                self.settings.SCM_MAX_WAIT_TIME,
            )
            return ExportRunResult(job_id=job.id, status=job.status)

        content = self.download(job)
        current, retained = self.store_export(content)
        deleted = prune_retained_exports(
            self.settings.score_data_dir,
            self.settings.SCM_EXPORT_RETENTION,
            logger=self.logger,
        )
        self.logger.info(
            "SCM export job %s downloaded: bytes=%s current=%s retained=%s",
            job.id,
            len(content),
            current,
            retained.path,
        )
        fact_files = self._export_facts(current)
        return ExportRunResult(
            job_id=job.id,
            status=job.status,
            export_path=current,
            retained=retained,
            deleted=deleted,
            fact_files=fact_files,
        )


def run_export(
    settings: Settings,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger = logger,
) -> ExportRunResult:
    """
    Run one SCM export with bearer-token auth.

    Raises ScmNotConfiguredError if SCM_HOST or SCM_API_TOKEN is missing.
    """
    if not _is_scm_configured(settings):
        raise ScmNotConfiguredError("SCM is not configured; set SCM_HOST and SCM_API_TOKEN.")
    headers = {
        "Authorization": f"Bearer {_get_token(settings)}",
        "Accept": "application/json",
    }
    with httpx.Client(headers=headers, timeout=httpx.Timeout(settings.HTTP_TIMEOUT)) as client:
        driver = ExportJobDriver(settings, client, clock=clock, sleep=sleep, logger=logger)
        return driver.run()
