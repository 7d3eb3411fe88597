"""
CLI entrypoint for the metrics enhancer. Run from a timer or cron, e.g.:

  python -m pdc_enhancer.enhancer -q -o /opt/puppetlabs/puppet/cache/state/dropzone/puppet_enhanced_metrics.prom

Merges PuppetDB inventory with the latest SCM CIS scores and publishes the
result for a textfile collector. A failed run leaves the previous file in place.
"""

import argparse
import logging
import sys
import time
from collections.abc import Callable

from dotenv import load_dotenv
from pydantic import ValidationError

from pdc_enhancer.core.config import Settings, get_settings
from pdc_enhancer.core.logging import setup_logging
from pdc_enhancer.services.auxiliary import AuxiliaryServiceError, fetch_annotations
from pdc_enhancer.services.csv_ingest import CsvIngestionError, parse_compliance_csv
from pdc_enhancer.services.inventory import InventoryClientError, fetch_inventory
from pdc_enhancer.services.metrics import MetricsPublishError, publish_metrics, render_metrics

logger = logging.getLogger(__name__)


def run_enhancer(
    settings: Settings,
    output_path: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger = logger,
) -> str:
    """
    One enhancer run: ingest scores, fetch inventory and annotations, render, publish.

    Every collaborator failure propagates before publication so the metrics file
    is only ever replaced by a complete body. Returns the published path.
    """
    target = output_path or settings.output_path
    compliance = parse_compliance_csv(settings.current_export_path, logger=logger)
    inventory = fetch_inventory(settings, sleep=sleep, logger=logger)
    annotations = fetch_annotations(settings, sleep=sleep, logger=logger)
    body = render_metrics(inventory, compliance, annotations)
    return publish_metrics(body, target, logger=logger)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Merge PuppetDB inventory with SCM CIS scores into textfile-collector metrics.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Metrics file to write (default: DROPZONE_PATH/OUTPUT_FILENAME)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only log warnings and errors",
    )
    parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL (DEBUG, INFO, WARN, ERROR)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the enhancer once. Returns 0 on success, 1 on any failure."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging(args.log_level or "INFO", quiet=args.quiet)
        logger.error("Invalid configuration: %s", e)
        return 1
    setup_logging(args.log_level or settings.LOG_LEVEL, quiet=args.quiet)

    try:
        path = run_enhancer(settings, output_path=args.output)
    except CsvIngestionError as e:
        logger.error("CIS score ingestion failed: %s", e.message)
        return 1
    except (InventoryClientError, AuxiliaryServiceError) as e:
        logger.error("Enhancer run aborted, metrics not updated: %s", e.message)
        return 1
    except MetricsPublishError as e:
        logger.error("Could not publish metrics: %s", e.message)
        return 1
    except Exception as e:
        logger.exception("Enhancer run failed: %s", e)
        return 1
    logger.info("Enhancer run completed: output=%s", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
