"""
AdTrack MCP Server - Main entry point.

Attribution tools backed by the BigQuery tracking dataset configured
through ADTRACK_* environment variables.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time
from typing import TYPE_CHECKING

from fastmcp import FastMCP

if TYPE_CHECKING:
    from adtrack.attribution import AttributionEngine

logger = logging.getLogger(__name__)

# Initialize server
mcp = FastMCP("AdTrack Attribution")

_MODEL_DESCRIPTIONS = {
    "first_click": "100% credit to the first touchpoint",
    "last_click": "100% credit to the last touchpoint",
    "linear": "Equal credit to every touchpoint",
    "time_decay": "Credit halves every half-life before the conversion (default 7 days)",
    "position_based": "40% first, 40% last, 20% shared by the middle touchpoints",
    "algorithmic": "Credit proportional to a composite score of recency and performance",
    "custom": "Sum of user-defined rule weights; not normalized to 100%",
}


def _build_engine() -> AttributionEngine:
    """Create an engine over the BigQuery store from environment config."""
    from adtrack.attribution import AttributionConfig, AttributionEngine
    from adtrack.attribution.bigquery_store import BigQueryAttributionStore

    config = AttributionConfig.from_env()
    store = BigQueryAttributionStore.from_config(config)
    return AttributionEngine(store, config=config)


def _parse_datetime(value: str, end_of_day: bool = False) -> datetime:
    """Parse an ISO date or datetime; a bare date is the start or end of that day."""
    try:
        day = date.fromisoformat(value)
    except ValueError:
        parsed = datetime.fromisoformat(value)
    else:
        parsed = datetime.combine(day, time.max if end_of_day else time.min)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


# =============================================================================
# Attribution Tools
# =============================================================================


@mcp.tool()
def list_attribution_models() -> list[dict]:
    """
    List the available attribution models.

    Returns:
        Model names with a short description and whether weights sum to 100%
    """
    from adtrack.attribution import AttributionModel

    return [
        {
            "model": model.value,
            "description": _MODEL_DESCRIPTIONS[model.value],
            "normalized": model.normalizes,
        }
        for model in AttributionModel
    ]


@mcp.tool()
async def attribute_conversion(
    conversion_id: str,
    model: str = "last_click",
    options: dict | None = None,
) -> dict:
    """
    Attribute a conversion across its customer journey.

    Replaces any earlier attribution of the conversion and adds the credit
    to each campaign's daily performance.

    Args:
        conversion_id: Conversion identifier
        model: Attribution model (first_click, last_click, linear, time_decay,
            position_based, algorithmic, custom)
        options: Model options, e.g. {"halfLife": 432000000} (milliseconds) or
            {"rules": [{"position": "first", "weight": 0.4}]}

    Returns:
        Attribution summary with per-touchpoint weights
    """
    from pydantic import ValidationError

    from adtrack.attribution import AttributionError

    engine = _build_engine()
    try:
        result = await engine.process_attribution(conversion_id, model, options)
    except (AttributionError, ValidationError) as e:
        logger.warning(f"Attribution failed for {conversion_id}: {e}")
        return {
            "success": False,
            "conversion_id": conversion_id,
            "error": str(e),
            "error_type": type(e).__name__,
        }

    summary = result.to_dict()
    summary["weights"] = [
        {
            "click_id": tp.click_id,
            "campaign_id": tp.campaign_id,
            "position": tp.position,
            "attribution_weight": tp.attribution_weight,
        }
        for tp in result.touchpoints
    ]
    return summary


@mcp.tool()
async def batch_attribute_conversions(
    conversion_ids: list[str],
    model: str = "last_click",
    options: dict | None = None,
) -> list[dict]:
    """
    Attribute several conversions with the same model.

    Each conversion is processed independently; a failure is reported in
    its own entry and does not stop the batch.

    Args:
        conversion_ids: Conversion identifiers, processed in order
        model: Attribution model name
        options: Model options shared by all conversions

    Returns:
        One entry per conversion, in input order
    """
    engine = _build_engine()
    outcomes = await engine.batch_process_attributions(conversion_ids, model, options)
    return [outcome.to_dict() for outcome in outcomes]


@mcp.tool()
async def get_attribution_analysis(
    campaign_id: str,
    start_date: str,
    end_date: str,
) -> dict:
    """
    Compare attribution models for a campaign over a date range.

    Args:
        campaign_id: Campaign identifier
        start_date: ISO date or datetime (UTC if no offset given)
        end_date: ISO date or datetime (UTC if no offset given); a bare date
            includes that whole day

    Returns:
        Rows per model with conversions, total_value, avg_weight and
        attributed_touchpoints
    """
    try:
        start = _parse_datetime(start_date)
        end = _parse_datetime(end_date, end_of_day=True)
    except ValueError as e:
        return {"success": False, "error": f"Invalid date: {e}"}

    engine = _build_engine()
    try:
        rows = await engine.get_attribution_analysis(campaign_id, start, end)
    except ValueError as e:
        return {"success": False, "error": str(e)}

    return {"success": True, "campaign_id": campaign_id, "rows": rows}


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
