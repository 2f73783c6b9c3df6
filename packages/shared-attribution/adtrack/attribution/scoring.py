"""
Composite scoring for the algorithmic attribution model.

Each touchpoint gets a set of factor scores, roughly scaled to [0, 1]:
- recency: exponential decay on hours before the conversion
- campaign conversion rate and ROAS over the trailing 30 days
- channel conversion rate over the trailing 30 days
- position bonus for the first and last touch
- device score from a fixed heuristic table
- frequency score from the journey's average gap between touches

The composite score is a weighted sum of the factors. The weights are
policy, not derived constants, and live in ScoringConfig.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from adtrack.attribution.schema import Conversion, Touchpoint

if TYPE_CHECKING:
    from adtrack.attribution.storage import AttributionStore

logger = logging.getLogger(__name__)


class CompositeWeights(BaseModel):
    """Weight of each factor in the composite score."""

    model_config = ConfigDict(frozen=True)

    recency: float = Field(0.30, ge=0)
    campaign_cvr: float = Field(0.20, ge=0)
    campaign_roas: float = Field(0.15, ge=0)
    channel_cvr: float = Field(0.15, ge=0)
    position_bonus: float = Field(0.10, ge=0)
    device: float = Field(0.05, ge=0)
    frequency: float = Field(0.05, ge=0)

    @property
    def total(self) -> float:
        return (
            self.recency
            + self.campaign_cvr
            + self.campaign_roas
            + self.channel_cvr
            + self.position_bonus
            + self.device
            + self.frequency
        )

    @model_validator(mode="after")
    def _warn_on_total(self) -> CompositeWeights:
        if not math.isclose(self.total, 1.0, abs_tol=1e-9):
            logger.warning(f"Composite weights sum to {self.total:.4f}, not 1.0")
        return self


class ScoringConfig(BaseModel):
    """Configuration for the composite scorer."""

    weights: CompositeWeights = Field(default_factory=CompositeWeights)
    recency_scale_hours: float = Field(168.0, gt=0)  # One week
    optimal_gap: timedelta = timedelta(hours=24)
    position_bonus: float = 0.2

    # Placeholder until calibrated from historical performance
    device_scores: dict[str, float] = Field(default_factory=lambda: {"mobile": 0.6})
    default_device_score: float = 0.8

    @field_validator("optimal_gap")
    @classmethod
    def _positive_gap(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("optimal_gap must be positive")
        return value


@dataclass(frozen=True)
class CampaignPerformance:
    """Trailing 30-day campaign performance."""

    conversion_rate: float = 0.0
    roas: float = 0.0

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> CampaignPerformance:
        if not row:
            return cls()
        return cls(
            conversion_rate=float(row.get("conversion_rate") or 0),
            roas=float(row.get("roas") or 0),
        )


@dataclass(frozen=True)
class ChannelPerformance:
    """Trailing 30-day channel performance."""

    conversion_rate: float = 0.0

    @classmethod
    def from_row(cls, row: dict[str, Any] | None) -> ChannelPerformance:
        if not row:
            return cls()
        return cls(conversion_rate=float(row.get("conversion_rate") or 0))


@dataclass
class ScoringSignals:
    """Performance lookups gathered for one journey."""

    campaigns: dict[str, CampaignPerformance] = field(default_factory=dict)
    channels: dict[str, ChannelPerformance] = field(default_factory=dict)

    def campaign(self, campaign_id: str | None) -> CampaignPerformance:
        if campaign_id is None:
            return CampaignPerformance()
        return self.campaigns.get(campaign_id, CampaignPerformance())

    def channel(self, channel: str | None) -> ChannelPerformance:
        if channel is None:
            return ChannelPerformance()
        return self.channels.get(channel, ChannelPerformance())


@dataclass(frozen=True)
class ScoreFactors:
    """Factor scores for one touchpoint."""

    recency: float
    campaign_cvr: float
    campaign_roas: float
    channel_cvr: float
    position_bonus: float
    device_score: float
    frequency_score: float

    def composite(self, weights: CompositeWeights) -> float:
        """Weighted linear combination of the factors."""
        return (
            self.recency * weights.recency
            + self.campaign_cvr * weights.campaign_cvr
            + self.campaign_roas * weights.campaign_roas
            + self.channel_cvr * weights.channel_cvr
            + self.position_bonus * weights.position_bonus
            + self.device_score * weights.device
            + self.frequency_score * weights.frequency
        )

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def recency_score(
    touchpoint_time: datetime,
    conversion_time: datetime,
    scale_hours: float = 168.0,
) -> float:
    """Exponential decay on the hours between touch and conversion."""
    hours = (conversion_time - touchpoint_time).total_seconds() / 3600
    return math.exp(-hours / scale_hours)


def frequency_score(
    journey: list[Touchpoint],
    optimal_gap: timedelta = timedelta(hours=24),
) -> float:
    """Score how close the journey's average gap is to the optimal gap.

    Returns 0.5 for journeys with fewer than two touchpoints. The score is
    not clamped and goes negative once the average gap exceeds twice the
    optimal gap.
    """
    if len(journey) <= 1:
        return 0.5

    gaps = [
        (journey[i].timestamp - journey[i - 1].timestamp).total_seconds()
        for i in range(1, len(journey))
    ]
    avg_gap = sum(gaps) / len(gaps)
    optimal = optimal_gap.total_seconds()
    return 1 - abs(avg_gap - optimal) / optimal


def position_bonus(index: int, total: int, bonus: float = 0.2) -> float:
    """Flat bonus for the first and last touchpoint."""
    return bonus if index in (0, total - 1) else 0.0


def device_score(
    device_type: str | None,
    table: dict[str, float],
    default: float = 0.8,
) -> float:
    return table.get(device_type or "", default)


class CompositeScorer:
    """Compute composite factor scores for the algorithmic model.

    Example:
        scorer = CompositeScorer()
        signals = await scorer.gather_signals(store, journey)
        factors = scorer.score(journey, conversion, signals)
        scores = [f.composite(scorer.config.weights) for f in factors]
    """

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()

    @property
    def weights(self) -> CompositeWeights:
        return self.config.weights

    async def gather_signals(
        self,
        store: AttributionStore,
        journey: list[Touchpoint],
    ) -> ScoringSignals:
        """Look up performance for each distinct campaign and channel.

        Failed or empty lookups fall back to zero-valued performance.
        """
        signals = ScoringSignals()

        campaign_ids = dict.fromkeys(tp.campaign_id for tp in journey if tp.campaign_id)
        for campaign_id in campaign_ids:
            try:
                row = await store.fetch_campaign_performance(campaign_id)
            except Exception as e:
                logger.warning(f"Campaign performance lookup failed for {campaign_id}: {e}")
                row = None
            signals.campaigns[campaign_id] = CampaignPerformance.from_row(row)

        channels = dict.fromkeys(tp.channel for tp in journey if tp.channel)
        for channel in channels:
            try:
                row = await store.fetch_channel_performance(channel)
            except Exception as e:
                logger.warning(f"Channel performance lookup failed for {channel}: {e}")
                row = None
            signals.channels[channel] = ChannelPerformance.from_row(row)

        return signals

    def score(
        self,
        journey: list[Touchpoint],
        conversion: Conversion,
        signals: ScoringSignals | None = None,
    ) -> list[ScoreFactors]:
        """Compute factor scores for every touchpoint in the journey."""
        signals = signals or ScoringSignals()
        total = len(journey)
        frequency = frequency_score(journey, self.config.optimal_gap)

        factors = []
        for index, touchpoint in enumerate(journey):
            campaign = signals.campaign(touchpoint.campaign_id)
            channel = signals.channel(touchpoint.channel)
            factors.append(ScoreFactors(
                recency=recency_score(
                    touchpoint.timestamp,
                    conversion.timestamp,
                    self.config.recency_scale_hours,
                ),
                campaign_cvr=campaign.conversion_rate,
                campaign_roas=campaign.roas,
                channel_cvr=channel.conversion_rate,
                position_bonus=position_bonus(index, total, self.config.position_bonus),
                device_score=device_score(
                    touchpoint.device_type,
                    self.config.device_scores,
                    self.config.default_device_score,
                ),
                frequency_score=frequency,
            ))

        return factors
