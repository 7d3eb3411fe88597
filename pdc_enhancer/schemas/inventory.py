"""Pydantic schemas for PuppetDB inventory and Infra Assistant annotations."""

import json
from typing import Any

from pydantic import BaseModel, Field, field_validator


def annotation_value(value: Any) -> Any:
    """Render JSON scalars and structures as label text; other values pass through to validation."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return value


class NodeInventoryRecord(BaseModel):
    """A managed node and the facts used to label its metrics. Fetched fresh every run."""

    certname: str = Field(..., min_length=1, description="Node certname as reported by PuppetDB.")
    environment: str = Field(default="", description="Catalog environment of the node.")
    facts: dict[str, str] = Field(
        default_factory=dict,
        description="Selected facts keyed by dotted fact path, rendered to strings.",
    )


class Annotations(BaseModel):
    """Supplementary annotations from the Infra Assistant."""

    model_config = {"extra": "ignore", "populate_by_name": True, "coerce_numbers_to_str": True}

    global_: dict[str, str] = Field(
        default_factory=dict,
        alias="global",
        description="Annotations that apply to the whole installation.",
    )
    nodes: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="Per-node annotations keyed by certname.",
    )

    @field_validator("global_", mode="before")
    @classmethod
    def stringify_global(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: annotation_value(val) for k, val in v.items()}
        return v

    @field_validator("nodes", mode="before")
    @classmethod
    def stringify_nodes(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        return {
            name: {k: annotation_value(val) for k, val in values.items()} if isinstance(values, dict) else values
            for name, values in v.items()
        }
