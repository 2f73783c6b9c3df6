"""
Attribution engine - attribute conversions across customer journeys.

For one conversion the engine:
1. Resolves the model name (unknown names fail before any I/O)
2. Fetches the conversion and resolves its journey
3. Gathers campaign/channel performance (algorithmic model only)
4. Runs the model and assembles the result
5. Persists touchpoint weights and accumulates campaign credit

Nothing is written until the full result has been computed. The engine does
not retry; callers decide whether a failed conversion is worth another run.

Runs for different conversions share no state and can be awaited
concurrently. Two concurrent runs for the SAME conversion race on the
replace step and the last write wins; callers that need stable results
must serialize by conversion ID.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from adtrack.attribution.assembler import assemble, persist
from adtrack.attribution.config import AttributionConfig
from adtrack.attribution.exceptions import ConversionNotFoundError, EmptyJourneyError
from adtrack.attribution.journey import JourneyResolver
from adtrack.attribution.models import ModelOptions, apply_model
from adtrack.attribution.schema import (
    AttributionModel,
    AttributionOutcome,
    AttributionResult,
    Conversion,
    Touchpoint,
)
from adtrack.attribution.scoring import CompositeScorer, ScoringSignals
from adtrack.attribution.storage import AttributionStore

logger = logging.getLogger(__name__)


class AttributionEngine:
    """Multi-touch attribution over a storage backend.

    Example:
        engine = AttributionEngine(store)

        result = await engine.process_attribution("conv_12345", "time_decay")
        print(result.to_dict())

        outcomes = await engine.batch_process_attributions(
            ["conv_001", "conv_002"],
            "custom",
            {"rules": [{"position": "first", "weight": 0.4}]},
        )
    """

    def __init__(
        self,
        store: AttributionStore,
        config: AttributionConfig | None = None,
        scorer: CompositeScorer | None = None,
    ):
        self.store = store
        self.config = config or AttributionConfig()
        self.scorer = scorer or CompositeScorer(self.config.scoring)
        self.resolver = JourneyResolver(store, lookback=self.config.lookback)

    def compute_attribution(
        self,
        conversion: Conversion,
        journey: list[Touchpoint],
        model: AttributionModel | str,
        options: ModelOptions | dict[str, Any] | None = None,
        signals: ScoringSignals | None = None,
    ) -> AttributionResult:
        """Run a model over a resolved journey without touching storage.

        Raises:
            UnknownModelError: If the model name is not registered.
            EmptyJourneyError: If the journey is empty.
        """
        model = AttributionModel.parse(model)
        if not journey:
            raise EmptyJourneyError(conversion.conversion_id)

        weighted = apply_model(model, journey, conversion, options, signals, scorer=self.scorer)
        return assemble(conversion, model, journey, weighted)

    async def process_attribution(
        self,
        conversion_id: str,
        model: AttributionModel | str | None = None,
        options: ModelOptions | dict[str, Any] | None = None,
    ) -> AttributionResult:
        """Attribute one conversion and persist the result.

        Args:
            conversion_id: The conversion to attribute.
            model: Attribution model name. Defaults to the configured model.
            options: Model options (half_life, rules).

        Returns:
            The persisted AttributionResult.

        Raises:
            UnknownModelError: If the model name is not registered.
            ConversionNotFoundError: If the conversion does not exist.
            EmptyJourneyError: If no touchpoints match the conversion.
        """
        model = AttributionModel.parse(model if model is not None else self.config.default_model)
        options = ModelOptions.coerce(options)

        conversion = await self.store.fetch_conversion(conversion_id)
        if conversion is None:
            raise ConversionNotFoundError(conversion_id)

        journey = await self.resolver.resolve(conversion)
        if not journey:
            raise EmptyJourneyError(conversion_id)

        signals = None
        if model is AttributionModel.ALGORITHMIC:
            signals = await self.scorer.gather_signals(self.store, journey)

        result = self.compute_attribution(conversion, journey, model, options, signals)
        await persist(self.store, result)
        return result

    async def batch_process_attributions(
        self,
        conversion_ids: list[str],
        model: AttributionModel | str | None = None,
        options: ModelOptions | dict[str, Any] | None = None,
    ) -> list[AttributionOutcome]:
        """Attribute conversions one after another.

        A failure on one conversion is recorded in its outcome and does not
        stop the batch.

        Returns:
            One outcome per conversion ID, in input order.
        """
        outcomes = []

        for conversion_id in conversion_ids:
            try:
                result = await self.process_attribution(conversion_id, model, options)
                outcomes.append(AttributionOutcome(
                    conversion_id=conversion_id,
                    success=True,
                    result=result,
                ))
            except Exception as e:
                logger.exception(f"Attribution failed for {conversion_id}")
                outcomes.append(AttributionOutcome(
                    conversion_id=conversion_id,
                    success=False,
                    error=str(e),
                    error_type=type(e).__name__,
                ))

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info(
            f"Batch attribution completed: {succeeded}/{len(outcomes)} conversions attributed"
        )
        return outcomes

    async def get_attribution_analysis(
        self,
        campaign_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Per-model summary of a campaign's attributed conversions.

        Raises:
            ValueError: If start is after end.
        """
        if start > end:
            raise ValueError(f"start ({start}) must not be after end ({end})")
        return await self.store.fetch_attribution_analysis(campaign_id, start, end)
