"""Configuration for the attribution engine."""

from __future__ import annotations

import os
from datetime import timedelta

from pydantic import BaseModel, Field, field_validator

from adtrack.attribution.schema import AttributionModel
from adtrack.attribution.scoring import ScoringConfig


class AttributionConfig(BaseModel):
    """Engine configuration.

    Example:
        config = AttributionConfig.from_env()
        engine = AttributionEngine(store, config=config)
    """

    project_id: str | None = None
    dataset: str = "ad_tracking"
    location: str = "US"

    lookback_days: int = Field(30, gt=0)
    default_model: AttributionModel = AttributionModel.LAST_CLICK
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)

    @field_validator("default_model", mode="before")
    @classmethod
    def _parse_model(cls, value: object) -> AttributionModel:
        return AttributionModel.parse(value)  # type: ignore[arg-type]

    @property
    def lookback(self) -> timedelta:
        return timedelta(days=self.lookback_days)

    @classmethod
    def from_env(cls) -> AttributionConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("ADTRACK_PROJECT_ID") or os.getenv("GCP_PROJECT_ID"),
            dataset=os.getenv("ADTRACK_BQ_DATASET", "ad_tracking"),
            location=os.getenv("ADTRACK_BQ_LOCATION", "US"),
            lookback_days=int(os.getenv("ADTRACK_LOOKBACK_DAYS", "30")),
            default_model=os.getenv("ADTRACK_DEFAULT_MODEL", "last_click"),
        )
