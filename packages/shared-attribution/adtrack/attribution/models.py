"""
Attribution models - split credit for a conversion across its journey.

Supports:
- first_click: 100% to the first touchpoint
- last_click: 100% to the last touchpoint
- linear: equal credit to all touchpoints
- time_decay: credit halves every half-life before the conversion
- position_based: 40% first, 40% last, 20% shared by the middle
- algorithmic: normalized composite score per touchpoint
- custom: sum of user-defined rule weights, NOT normalized

Every model takes a journey ordered by timestamp and returns attributed
touchpoints in journey order. An empty journey yields an empty list.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from adtrack.attribution.exceptions import UnknownModelError
from adtrack.attribution.schema import (
    AttributedTouchpoint,
    AttributionModel,
    Conversion,
    Touchpoint,
)
from adtrack.attribution.scoring import CompositeScorer, ScoreFactors, ScoringSignals

logger = logging.getLogger(__name__)

DEFAULT_HALF_LIFE = timedelta(days=7)

# Position-based split
FIRST_TOUCH_SHARE = 0.4
LAST_TOUCH_SHARE = 0.4
MIDDLE_SHARE = 0.2


class CustomRule(BaseModel):
    """A credit rule for the custom model.

    Every condition that is set must match for the rule's weight to apply.

    Example:
        CustomRule(position="first", weight=0.4)
        CustomRule.model_validate({"utm_source": "facebook", "weight": 0.3})
    """

    model_config = ConfigDict(frozen=True)

    position: Literal["first", "last"] | None = None
    campaign_id: str | None = Field(
        None, validation_alias=AliasChoices("campaign_id", "campaignId")
    )
    channel: str | None = Field(
        None, validation_alias=AliasChoices("channel", "utm_source")
    )
    device_type: str | None = Field(
        None, validation_alias=AliasChoices("device_type", "deviceType")
    )
    weight: float

    def matches(self, touchpoint: Touchpoint, index: int, total: int) -> bool:
        if self.position == "first" and index != 0:
            return False
        if self.position == "last" and index != total - 1:
            return False
        if self.campaign_id and touchpoint.campaign_id != self.campaign_id:
            return False
        if self.channel and touchpoint.channel != self.channel:
            return False
        if self.device_type and touchpoint.device_type != self.device_type:
            return False
        return True


class ModelOptions(BaseModel):
    """Per-model options.

    Numeric half-life values are milliseconds, so both
    ``{"halfLife": 432000000}`` and ``{"half_life": timedelta(days=5)}``
    configure a five day half-life.
    """

    model_config = ConfigDict(frozen=True)

    half_life: timedelta = Field(
        DEFAULT_HALF_LIFE,
        validation_alias=AliasChoices("half_life", "halfLife", "half_life_ms"),
    )
    rules: list[CustomRule] = Field(default_factory=list)

    @field_validator("half_life", mode="before")
    @classmethod
    def _milliseconds(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return timedelta(milliseconds=value)
        return value

    @field_validator("half_life")
    @classmethod
    def _positive_half_life(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("half_life must be positive")
        return value

    @classmethod
    def coerce(cls, options: ModelOptions | dict[str, Any] | None) -> ModelOptions:
        """Accept options as a model, a plain dict, or None."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(options)


def _attributed(
    touchpoint: Touchpoint,
    weight: float,
    index: int,
    total: int,
    conversion: Conversion,
    factors: ScoreFactors | None = None,
) -> AttributedTouchpoint:
    return AttributedTouchpoint(
        touchpoint=touchpoint,
        attribution_weight=weight,
        position=index + 1,
        total_positions=total,
        time_to_conversion=conversion.timestamp - touchpoint.timestamp,
        factors=factors,
    )


def _uniform_weights(count: int) -> list[float]:
    return [1.0 / count] * count


def first_click(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
) -> list[AttributedTouchpoint]:
    """Attribute everything to the first touchpoint."""
    if not journey:
        return []
    return [_attributed(journey[0], 1.0, 0, len(journey), conversion)]


def last_click(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
) -> list[AttributedTouchpoint]:
    """Attribute everything to the last touchpoint before conversion."""
    if not journey:
        return []
    last = len(journey) - 1
    return [_attributed(journey[last], 1.0, last, len(journey), conversion)]


def linear(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
) -> list[AttributedTouchpoint]:
    """Distribute credit equally across all touchpoints."""
    if not journey:
        return []
    total = len(journey)
    weight = 1.0 / total
    return [
        _attributed(touchpoint, weight, index, total, conversion)
        for index, touchpoint in enumerate(journey)
    ]


def time_decay_raw_weight(age: timedelta, half_life: timedelta = DEFAULT_HALF_LIFE) -> float:
    """Pre-normalization weight: halves with every half-life of age."""
    return 0.5 ** (age / half_life)


def time_decay(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
) -> list[AttributedTouchpoint]:
    """
    More credit to recent touchpoints.

    Raw weights decay exponentially with the configured half-life and are
    then normalized to sum to 1.0.
    """
    if not journey:
        return []

    half_life = (options or ModelOptions()).half_life
    total = len(journey)
    raw = [
        time_decay_raw_weight(conversion.timestamp - touchpoint.timestamp, half_life)
        for touchpoint in journey
    ]

    raw_total = sum(raw)
    if raw_total > 0:
        weights = [w / raw_total for w in raw]
    else:
        logger.warning(
            f"Time-decay weights underflowed for conversion {conversion.conversion_id}, "
            "using uniform weights"
        )
        weights = _uniform_weights(total)

    return [
        _attributed(touchpoint, weight, index, total, conversion)
        for index, (touchpoint, weight) in enumerate(zip(journey, weights, strict=True))
    ]


def position_based(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
) -> list[AttributedTouchpoint]:
    """
    40% to first, 40% to last, 20% distributed to middle.

    One touchpoint gets everything and two split 50/50; the U-shape only
    applies from three touchpoints up.
    """
    total = len(journey)
    if total == 0:
        return []

    if total == 1:
        weights = [1.0]
    elif total == 2:
        weights = [0.5, 0.5]
    else:
        middle = MIDDLE_SHARE / (total - 2)
        weights = [FIRST_TOUCH_SHARE] + [middle] * (total - 2) + [LAST_TOUCH_SHARE]

    return [
        _attributed(touchpoint, weight, index, total, conversion)
        for index, (touchpoint, weight) in enumerate(zip(journey, weights, strict=True))
    ]


def algorithmic(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
    scorer: CompositeScorer | None = None,
) -> list[AttributedTouchpoint]:
    """
    Weight touchpoints by their normalized composite score.

    Negative composite scores count as zero. If every score is zero the
    model falls back to uniform weights.
    """
    if not journey:
        return []

    scorer = scorer or CompositeScorer()
    total = len(journey)
    factors = scorer.score(journey, conversion, signals)
    scores = [max(f.composite(scorer.weights), 0.0) for f in factors]

    score_total = sum(scores)
    if score_total > 0:
        weights = [s / score_total for s in scores]
    else:
        logger.warning(
            f"All composite scores are zero for conversion {conversion.conversion_id}, "
            "using uniform weights"
        )
        weights = _uniform_weights(total)

    return [
        _attributed(touchpoint, weight, index, total, conversion, factors=factor)
        for index, (touchpoint, weight, factor) in enumerate(
            zip(journey, weights, factors, strict=True)
        )
    ]


def custom(
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | None = None,
    signals: ScoringSignals | None = None,
) -> list[AttributedTouchpoint]:
    """
    Apply user-defined rules; falls back to linear when there are none.

    Each touchpoint gets the sum of the weights of every rule it matches,
    floored at zero. Weights are not normalized: rules may overlap or leave
    credit unassigned, so the total can be above or below 1.0.
    """
    rules = (options or ModelOptions()).rules
    if not rules:
        return linear(journey, conversion, options)

    total = len(journey)
    attributed = []
    for index, touchpoint in enumerate(journey):
        weight = sum(rule.weight for rule in rules if rule.matches(touchpoint, index, total))
        attributed.append(_attributed(touchpoint, max(weight, 0.0), index, total, conversion))
    return attributed


def apply_model(
    model: AttributionModel | str,
    journey: list[Touchpoint],
    conversion: Conversion,
    options: ModelOptions | dict[str, Any] | None = None,
    signals: ScoringSignals | None = None,
    scorer: CompositeScorer | None = None,
) -> list[AttributedTouchpoint]:
    """Run the named attribution model over a journey.

    Raises:
        UnknownModelError: If the model name is not registered.
    """
    model = AttributionModel.parse(model)
    options = ModelOptions.coerce(options)

    match model:
        case AttributionModel.FIRST_CLICK:
            return first_click(journey, conversion, options, signals)
        case AttributionModel.LAST_CLICK:
            return last_click(journey, conversion, options, signals)
        case AttributionModel.LINEAR:
            return linear(journey, conversion, options, signals)
        case AttributionModel.TIME_DECAY:
            return time_decay(journey, conversion, options, signals)
        case AttributionModel.POSITION_BASED:
            return position_based(journey, conversion, options, signals)
        case AttributionModel.ALGORITHMIC:
            return algorithmic(journey, conversion, options, signals, scorer=scorer)
        case AttributionModel.CUSTOM:
            return custom(journey, conversion, options, signals)
        case _:
            raise UnknownModelError(str(model))
