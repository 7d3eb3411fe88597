"""
CLI entrypoint for the SCM export job. Run from a systemd timer or cron, e.g.:

  python -m pdc_enhancer.exporter

Requests a CIS summary export from SCM, waits for it, and replaces the current
export read by the enhancer. Failed or timed-out jobs keep the last good export.
"""

import logging
import sys

from dotenv import load_dotenv
from pydantic import ValidationError

from pdc_enhancer.core.config import get_settings
from pdc_enhancer.core.logging import setup_logging
from pdc_enhancer.schemas.export import ExportJobStatus
from pdc_enhancer.services.scm_export import ScmApiError, ScmNotConfiguredError, run_export

logger = logging.getLogger(__name__)


def main() -> int:
    """Run one export. Returns 0 when a new export was downloaded, 1 otherwise."""
    load_dotenv()
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging("INFO")
        logger.error("Invalid configuration: %s", e)
        return 1
    setup_logging(settings.LOG_LEVEL)

    try:
        result = run_export(settings)
    except ScmNotConfiguredError as e:
        logger.error("%s", e.message)
        return 1
    except ScmApiError as e:
        logger.error("SCM export run failed: %s", e.message)
        return 1
    except Exception as e:
        logger.exception("SCM export run failed: %s", e)
        return 1

    logger.info(
        "SCM export run completed: job_id=%s status=%s retained_deleted=%s",
        result.job_id,
        result.status.value,
        len(result.deleted),
    )
    return 0 if result.status == ExportJobStatus.READY else 1


if __name__ == "__main__":
    sys.exit(main())
