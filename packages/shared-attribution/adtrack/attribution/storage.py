"""Storage interface used by the attribution engine.

The engine reads conversions, journeys and performance stats through an
AttributionStore and writes its results back through the same object.
All methods are coroutines; implementations backed by blocking clients
should hand the work to a thread.

Two implementations ship with the package:
- InMemoryAttributionStore: dict-backed, for local runs and tests
- BigQueryAttributionStore: see adtrack.attribution.bigquery_store
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from adtrack.attribution.analysis import attribution_rows, model_comparison, rows_to_frame
from adtrack.attribution.schema import (
    AttributedTouchpoint,
    AttributionModel,
    AttributionResult,
    CampaignCredit,
    Conversion,
    Touchpoint,
)

logger = logging.getLogger(__name__)


class AttributionStore(ABC):
    """Abstract base class for attribution storage backends.

    Reads:
    - fetch_conversion(): a conversion with the identity keys of its click
    - fetch_journey(): candidate touchpoints inside a time window
    - fetch_campaign_performance() / fetch_channel_performance(): 30-day stats

    Writes:
    - replace_attribution_touchpoints(): full replace per conversion
    - set_conversion_attribution_model(): record which model was applied
    - accumulate_campaign_credit(): additive upsert per campaign and day
    - save_attribution(): all three writes for one result, applied together
    """

    @abstractmethod
    async def fetch_conversion(self, conversion_id: str) -> Conversion | None:
        """Return the conversion, or None if it does not exist."""
        pass  # pragma: no cover

    @abstractmethod
    async def fetch_journey(
        self,
        conversion: Conversion,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Touchpoint]:
        """Return candidate touchpoints for the conversion within the window.

        Implementations may return extra candidates; the journey resolver
        applies the matching policy to whatever is returned.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def fetch_campaign_performance(self, campaign_id: str) -> dict[str, Any] | None:
        """Return ``{"conversion_rate", "roas"}`` for the last 30 days, or None."""
        pass  # pragma: no cover

    @abstractmethod
    async def fetch_channel_performance(self, channel: str) -> dict[str, Any] | None:
        """Return ``{"conversion_rate"}`` for the last 30 days, or None."""
        pass  # pragma: no cover

    @abstractmethod
    async def replace_attribution_touchpoints(
        self,
        conversion_id: str,
        touchpoints: list[AttributedTouchpoint],
    ) -> None:
        """Replace all attribution records for a conversion in one step."""
        pass  # pragma: no cover

    @abstractmethod
    async def set_conversion_attribution_model(
        self,
        conversion_id: str,
        model: AttributionModel,
    ) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def accumulate_campaign_credit(
        self,
        campaign_id: str,
        day: date,
        fractional_conversions: float,
        attributed_value: float,
    ) -> None:
        """Add credit to a campaign's daily totals, creating the row if needed."""
        pass  # pragma: no cover

    @abstractmethod
    async def save_attribution(
        self,
        result: AttributionResult,
        credits: list[CampaignCredit],
    ) -> None:
        """Persist a result atomically.

        Replaces the conversion's touchpoint rows, records the model and adds
        every credit. Either all of it is applied or none of it is.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def fetch_attribution_analysis(
        self,
        campaign_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Summarize a campaign's attributed conversions per model."""
        pass  # pragma: no cover


class InMemoryAttributionStore(AttributionStore):
    """Dict-backed attribution store.

    Example:
        >>> store = InMemoryAttributionStore()
        >>> store.add_conversion(conversion)
        >>> store.add_touchpoints([tp1, tp2, tp3])
        >>> store.set_campaign_performance("camp_a", conversion_rate=0.05, roas=2.5)
    """

    def __init__(self) -> None:
        self._conversions: dict[str, Conversion] = {}
        self._touchpoints: list[Touchpoint] = []
        self._campaign_performance: dict[str, dict[str, Any]] = {}
        self._channel_performance: dict[str, dict[str, Any]] = {}

        self.attributions: dict[str, list[AttributedTouchpoint]] = {}
        self.conversion_models: dict[str, AttributionModel] = {}
        self.campaign_credits: dict[tuple[str, date], CampaignCredit] = {}

    # Seeding

    def add_conversion(self, conversion: Conversion) -> None:
        self._conversions[conversion.conversion_id] = conversion

    def add_touchpoints(self, touchpoints: list[Touchpoint]) -> None:
        self._touchpoints.extend(touchpoints)

    def set_campaign_performance(
        self,
        campaign_id: str,
        conversion_rate: float = 0.0,
        roas: float = 0.0,
    ) -> None:
        self._campaign_performance[campaign_id] = {
            "conversion_rate": conversion_rate,
            "roas": roas,
        }

    def set_channel_performance(self, channel: str, conversion_rate: float = 0.0) -> None:
        self._channel_performance[channel] = {"conversion_rate": conversion_rate}

    def get_campaign_credit(self, campaign_id: str, day: date) -> CampaignCredit | None:
        return self.campaign_credits.get((campaign_id, day))

    # Reads

    async def fetch_conversion(self, conversion_id: str) -> Conversion | None:
        return self._conversions.get(conversion_id)

    async def fetch_journey(
        self,
        conversion: Conversion,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Touchpoint]:
        return [
            tp for tp in self._touchpoints
            if window_start <= tp.timestamp <= window_end
        ]

    async def fetch_campaign_performance(self, campaign_id: str) -> dict[str, Any] | None:
        return self._campaign_performance.get(campaign_id)

    async def fetch_channel_performance(self, channel: str) -> dict[str, Any] | None:
        return self._channel_performance.get(channel)

    # Writes

    async def replace_attribution_touchpoints(
        self,
        conversion_id: str,
        touchpoints: list[AttributedTouchpoint],
    ) -> None:
        self.attributions[conversion_id] = list(touchpoints)

    async def set_conversion_attribution_model(
        self,
        conversion_id: str,
        model: AttributionModel,
    ) -> None:
        self.conversion_models[conversion_id] = model

    async def accumulate_campaign_credit(
        self,
        campaign_id: str,
        day: date,
        fractional_conversions: float,
        attributed_value: float,
    ) -> None:
        credit = CampaignCredit(campaign_id, day, fractional_conversions, attributed_value)
        self._merge_credit(self.campaign_credits, credit)

    async def save_attribution(
        self,
        result: AttributionResult,
        credits: list[CampaignCredit],
    ) -> None:
        # Stage credits on a copy; nothing is visible until every merge succeeds
        staged = dict(self.campaign_credits)
        for credit in credits:
            self._merge_credit(staged, credit)

        self.attributions[result.conversion_id] = list(result.touchpoints)
        self.conversion_models[result.conversion_id] = result.model
        self.campaign_credits = staged

    @staticmethod
    def _merge_credit(
        credits: dict[tuple[str, date], CampaignCredit],
        credit: CampaignCredit,
    ) -> None:
        key = (credit.campaign_id, credit.date)
        existing = credits.get(key)
        credits[key] = existing + credit if existing else credit

    async def fetch_attribution_analysis(
        self,
        campaign_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        rows = []
        for conversion_id, touchpoints in self.attributions.items():
            conversion = self._conversions.get(conversion_id)
            model = self.conversion_models.get(conversion_id)
            if conversion is None or model is None:
                continue
            if not start <= conversion.timestamp <= end:
                continue
            rows.extend(
                row for row in attribution_rows(conversion, model, touchpoints)
                if row["campaign_id"] == campaign_id
            )

        if not rows:
            return []
        return model_comparison(rows_to_frame(rows)).to_dict("records")
