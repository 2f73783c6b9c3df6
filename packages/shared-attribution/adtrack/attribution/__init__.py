"""
AdTrack Attribution - multi-touch attribution for ad conversions.

Provides:
- Journey resolution across identity keys (IP, session, click ID, browser ID)
- Seven attribution models: first_click, last_click, linear, time_decay,
  position_based, algorithmic and custom
- Composite scoring for the algorithmic model
- Persistence of touchpoint weights and additive campaign credit

Usage:
    from adtrack.attribution import (
        AttributionEngine,
        InMemoryAttributionStore,
    )

    engine = AttributionEngine(store)
    result = await engine.process_attribution("conv_12345", "position_based")

    # Many conversions, failures isolated per conversion
    outcomes = await engine.batch_process_attributions(
        ["conv_001", "conv_002"],
        "time_decay",
        {"halfLife": 5 * 24 * 60 * 60 * 1000},
    )
"""

from adtrack.attribution.config import AttributionConfig
from adtrack.attribution.engine import AttributionEngine
from adtrack.attribution.exceptions import (
    AttributionError,
    ConversionNotFoundError,
    EmptyJourneyError,
    PerformanceLookupError,
    UnknownModelError,
)
from adtrack.attribution.journey import JourneyResolver, match_touchpoints
from adtrack.attribution.models import CustomRule, ModelOptions, apply_model
from adtrack.attribution.schema import (
    AttributedTouchpoint,
    AttributionModel,
    AttributionOutcome,
    AttributionResult,
    CampaignCredit,
    Conversion,
    Touchpoint,
)
from adtrack.attribution.scoring import CompositeScorer, CompositeWeights, ScoringConfig
from adtrack.attribution.storage import AttributionStore, InMemoryAttributionStore

__all__ = [
    # Schema
    "Touchpoint",
    "Conversion",
    "AttributedTouchpoint",
    "AttributionModel",
    "AttributionResult",
    "AttributionOutcome",
    "CampaignCredit",
    # Engine
    "AttributionEngine",
    "AttributionConfig",
    "JourneyResolver",
    "match_touchpoints",
    # Models
    "apply_model",
    "ModelOptions",
    "CustomRule",
    # Scoring
    "CompositeScorer",
    "CompositeWeights",
    "ScoringConfig",
    # Storage
    "AttributionStore",
    "InMemoryAttributionStore",
    # Exceptions
    "AttributionError",
    "ConversionNotFoundError",
    "EmptyJourneyError",
    "UnknownModelError",
    "PerformanceLookupError",
]
