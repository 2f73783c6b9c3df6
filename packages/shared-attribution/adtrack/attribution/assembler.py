"""Result assembly - finalize model output and hand it to storage.

The assembler sits between the attribution models and the store:
- checks that weights sum to 1.0 and repairs drift (except for custom)
- fills in journey positions that a model left unset
- derives per-campaign, per-day credit from the weights
- persists the result: replace per conversion, accumulate per campaign
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import TYPE_CHECKING

from adtrack.attribution.exceptions import EmptyJourneyError
from adtrack.attribution.schema import (
    AttributedTouchpoint,
    AttributionModel,
    AttributionResult,
    CampaignCredit,
    Conversion,
    Touchpoint,
)

if TYPE_CHECKING:
    from adtrack.attribution.storage import AttributionStore

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-9


def _journey_index(journey: list[Touchpoint], touchpoint: Touchpoint) -> int:
    for index, candidate in enumerate(journey):
        if candidate is touchpoint:
            return index
    return journey.index(touchpoint)


def assemble(
    conversion: Conversion,
    model: AttributionModel,
    journey: list[Touchpoint],
    weighted: list[AttributedTouchpoint],
) -> AttributionResult:
    """Package model output into an AttributionResult.

    Args:
        conversion: The conversion being attributed.
        model: The model that produced the weights.
        journey: The journey the model ran over.
        weighted: Attributed touchpoints returned by the model.

    Returns:
        AttributionResult whose weights sum to 1.0 unless the model is custom.

    Raises:
        EmptyJourneyError: If the model returned no touchpoints.
    """
    if not weighted:
        raise EmptyJourneyError(conversion.conversion_id)

    touchpoints = []
    for tp in weighted:
        if tp.position is None or tp.total_positions is None:
            tp = replace(
                tp,
                position=_journey_index(journey, tp.touchpoint) + 1,
                total_positions=len(journey),
            )
        touchpoints.append(tp)

    if model.normalizes:
        total = sum(tp.attribution_weight for tp in touchpoints)
        if total <= 0:
            logger.warning(
                f"{model.value} produced zero total weight for {conversion.conversion_id}, "
                "using uniform weights"
            )
            uniform = 1.0 / len(touchpoints)
            touchpoints = [replace(tp, attribution_weight=uniform) for tp in touchpoints]
        elif not math.isclose(total, 1.0, abs_tol=WEIGHT_TOLERANCE):
            logger.warning(
                f"{model.value} weights for {conversion.conversion_id} sum to {total}, "
                "renormalizing"
            )
            touchpoints = [
                replace(tp, attribution_weight=tp.attribution_weight / total)
                for tp in touchpoints
            ]

    return AttributionResult(conversion=conversion, model=model, touchpoints=touchpoints)


def campaign_credits(result: AttributionResult) -> list[CampaignCredit]:
    """Credit per campaign and touchpoint day.

    Each touchpoint contributes ``weight`` fractional conversions and
    ``weight * value`` attributed value. Touchpoints without a campaign
    contribute nothing.
    """
    credits: dict[tuple[str, object], CampaignCredit] = {}
    for tp in result.touchpoints:
        if not tp.campaign_id:
            continue
        credit = CampaignCredit(
            campaign_id=tp.campaign_id,
            date=tp.timestamp.date(),
            fractional_conversions=tp.attribution_weight,
            attributed_value=tp.attribution_weight * result.total_value,
        )
        key = (credit.campaign_id, credit.date)
        credits[key] = credits[key] + credit if key in credits else credit
    return list(credits.values())


async def persist(store: AttributionStore, result: AttributionResult) -> None:
    """Write an attribution result to the store in one atomic save.

    Touchpoint records replace any earlier attribution of the conversion;
    campaign credit is added to existing daily totals. A failed save leaves
    the store as it was.
    """
    await store.save_attribution(result, campaign_credits(result))

    logger.info(
        f"Saved {result.model.value} attribution for {result.conversion_id}: "
        f"{len(result.touchpoints)} touchpoints, value {result.total_value}"
    )
