"""Fetch managed nodes and selected facts from PuppetDB's inventory endpoint."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from pdc_enhancer.schemas.inventory import NodeInventoryRecord
from pdc_enhancer.services.http_retry import ServiceRequestError, request_with_retry

if TYPE_CHECKING:
    from pdc_enhancer.core.config import Settings

logger = logging.getLogger(__name__)

INVENTORY_PATH = "/pdb/query/v4/inventory"


class InventoryClientError(ServiceRequestError):
    """Raised when PuppetDB cannot supply the inventory for this run."""


def _fact_value(facts: dict[str, Any], path: str) -> str:
    """Resolve a dotted fact path ('os.release.full') to a string; '' when absent."""
    value: Any = facts
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return ""
        value = value[part]
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def parse_inventory(body: Any, fact_paths: list[str]) -> list[NodeInventoryRecord]:
    """Convert a PuppetDB inventory response into records; entries without certname are skipped."""
    if not isinstance(body, list):
        raise InventoryClientError("PuppetDB inventory response is not a JSON array.")
    records: list[NodeInventoryRecord] = []
    for entry in body:
        if not isinstance(entry, dict):
            continue
        certname = entry.get("certname")
        if not isinstance(certname, str) or not certname.strip():
            continue
        facts = entry.get("facts") if isinstance(entry.get("facts"), dict) else {}
        records.append(
            NodeInventoryRecord(
                certname=certname.strip(),
                environment=str(entry.get("environment") or ""),
                facts={path: _fact_value(facts, path) for path in fact_paths},
            )
        )
    return records


def _client_kwargs(settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"timeout": httpx.Timeout(settings.HTTP_TIMEOUT)}
    if settings.PUPPETDB_PROTOCOL == "https":
        if settings.PUPPETDB_SSL_CERT and settings.PUPPETDB_SSL_KEY:
            kwargs["cert"] = (settings.PUPPETDB_SSL_CERT, settings.PUPPETDB_SSL_KEY)
        if settings.PUPPETDB_SSL_CA:
            kwargs["verify"] = settings.PUPPETDB_SSL_CA
    return kwargs


def fetch_inventory(
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger = logger,
) -> list[NodeInventoryRecord]:
    """
    Query PuppetDB for active nodes with the facts named in PUPPETDB_FACTS.

    Retries transient failures per HTTP_RETRIES/RETRY_DELAY.
    Raises InventoryClientError on 4xx, retry exhaustion or an unexpected body.
    """
    url = f"{settings.puppetdb_base_url}{INVENTORY_PATH}"
    start = time.perf_counter()
    try:
        with httpx.Client(**_client_kwargs(settings)) as client:
            response = request_with_retry(
                client,
                "GET",
                url,
                retries=settings.HTTP_RETRIES,
                retry_delay=settings.RETRY_DELAY,
                service="PuppetDB",
                sleep=sleep,
                logger=logger,
                headers={"Accept": "application/json"},
            )
    except ServiceRequestError as e:
        raise InventoryClientError(e.message, status_code=e.status_code, attempts=e.attempts) from e

    try:
        body = response.json()
    except json.JSONDecodeError as e:
        raise InventoryClientError("PuppetDB inventory response is not valid JSON.") from e

    records = parse_inventory(body, list(settings.PUPPETDB_FACTS))
    logger.info(
        "Fetched PuppetDB inventory: nodes=%s elapsed=%.2fs",
        len(records),
        time.perf_counter() - start,
    )
    return records
