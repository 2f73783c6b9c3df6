"""Journey resolution - find the touchpoints that led to a conversion.

A touchpoint belongs to a conversion's journey when it falls inside the
lookback window ending at the conversion and shares ANY identity key with
it (IP address, session ID, platform click ID or browser ID).

Matching on any single key favors recall over precision. Visitors behind a
shared IP (offices, carrier NAT) can be merged into one journey, so some
cross-device journeys are false positives.

Example:
    >>> resolver = JourneyResolver(store, lookback=timedelta(days=30))
    >>> journey = await resolver.resolve(conversion)
    >>> [tp.click_id for tp in journey]
    ['clk_001', 'clk_007', 'clk_012']
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import TYPE_CHECKING

from adtrack.attribution.schema import Conversion, Touchpoint

if TYPE_CHECKING:
    from adtrack.attribution.storage import AttributionStore

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=30)


def shares_identity(touchpoint: Touchpoint, conversion: Conversion) -> bool:
    """True if the touchpoint shares any identity key with the conversion."""
    conversion_keys = conversion.identity_keys()
    return any(
        conversion_keys.get(key) == value
        for key, value in touchpoint.identity_keys().items()
    )


def match_touchpoints(
    conversion: Conversion,
    candidates: Iterable[Touchpoint],
    lookback: timedelta = DEFAULT_LOOKBACK,
) -> list[Touchpoint]:
    """Filter and order candidate touchpoints into a journey.

    Keeps candidates inside ``[conversion.timestamp - lookback,
    conversion.timestamp]`` that share an identity key with the conversion,
    drops repeated click IDs, and sorts ascending by timestamp. The sort is
    stable, so touchpoints with equal timestamps keep their arrival order.
    """
    if not conversion.has_identity:
        return []

    window_start = conversion.timestamp - lookback
    seen: set[str] = set()
    matching = []

    for touchpoint in candidates:
        if touchpoint.timestamp < window_start or touchpoint.timestamp > conversion.timestamp:
            continue
        if not shares_identity(touchpoint, conversion):
            continue
        if touchpoint.click_id in seen:
            continue
        seen.add(touchpoint.click_id)
        matching.append(touchpoint)

    matching.sort(key=lambda tp: tp.timestamp)
    return matching


class JourneyResolver:
    """Resolve the ordered customer journey for a conversion."""

    def __init__(
        self,
        store: AttributionStore,
        lookback: timedelta = DEFAULT_LOOKBACK,
    ):
        if lookback <= timedelta(0):
            raise ValueError("lookback must be positive")
        self.store = store
        self.lookback = lookback

    async def resolve(self, conversion: Conversion) -> list[Touchpoint]:
        """Return the conversion's journey, oldest touchpoint first.

        Returns an empty list when the conversion carries no identity key.
        """
        if not conversion.has_identity:
            logger.debug(f"Conversion {conversion.conversion_id} has no identity keys")
            return []

        window_start = conversion.timestamp - self.lookback
        candidates = await self.store.fetch_journey(
            conversion, window_start, conversion.timestamp
        )
        journey = match_touchpoints(conversion, candidates, self.lookback)

        logger.debug(
            f"Resolved {len(journey)} touchpoints for conversion {conversion.conversion_id}"
        )
        return journey
