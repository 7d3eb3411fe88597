"""Fetch supplementary annotations from the Infra Assistant service."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from pdc_enhancer.schemas.inventory import Annotations
from pdc_enhancer.services.http_retry import ServiceRequestError, request_with_retry

if TYPE_CHECKING:
    from pdc_enhancer.core.config import Settings

logger = logging.getLogger(__name__)

ANNOTATIONS_PATH = "/infra-assistant/v1/annotations"


class AuxiliaryServiceError(ServiceRequestError):
    """Raised when the Infra Assistant cannot supply annotations for this run."""


def fetch_annotations(
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger = logger,
) -> Annotations:
    """
    Return global and per-node annotations. When INFRA_ASSISTANT_ENABLED is false,
    returns empty annotations without contacting the service.

    Node keys are lower-cased to match certname folding elsewhere.
    Raises AuxiliaryServiceError on 4xx, retry exhaustion or an unexpected body.
    """
    if not settings.INFRA_ASSISTANT_ENABLED:
        logger.debug("Infra Assistant disabled (INFRA_ASSISTANT_ENABLED=false); skipping.")
        return Annotations()

    url = f"{settings.infra_assistant_base_url}{ANNOTATIONS_PATH}"
    try:
        with httpx.Client(timeout=httpx.Timeout(settings.HTTP_TIMEOUT)) as client:
            response = request_with_retry(
                client,
                "GET",
                url,
                retries=settings.HTTP_RETRIES,
                retry_delay=settings.RETRY_DELAY,
                service="Infra Assistant",
                sleep=sleep,
                logger=logger,
                headers={"Accept": "application/json"},
            )
    except ServiceRequestError as e:
        raise AuxiliaryServiceError(e.message, status_code=e.status_code, attempts=e.attempts) from e

    try:
        body = response.json()
    except json.JSONDecodeError as e:
        raise AuxiliaryServiceError("Infra Assistant response is not valid JSON.") from e
    if not isinstance(body, dict):
        raise AuxiliaryServiceError("Infra Assistant response is not a JSON object.")

    try:
        annotations = Annotations.model_validate(body)
    except ValidationError as e:
        raise AuxiliaryServiceError(
            "Infra Assistant response does not match expected schema (global, nodes)."
        ) from e

    nodes = {name.strip().lower(): values for name, values in annotations.nodes.items() if name.strip()}
    logger.info(
        "Fetched Infra Assistant annotations: global=%s nodes=%s",
        len(annotations.global_),
        len(nodes),
    )
    return Annotations(global_=annotations.global_, nodes=nodes)
