"""Recycle bin settings model."""

from pydantic import Field

from taskview.models.task import WireModel


class BinSettings(WireModel):
    """Per-company recycle bin settings."""
    enabled: bool = True
    retention_days: int = Field(default=15, ge=0, description="Days a deleted task stays in the bin")
