"""
Attribution analysis - tabular summaries of attribution results.

Flattens results into one row per attributed touchpoint and aggregates
them with pandas:
- campaign_summary: fractional conversions and value per campaign
- model_comparison: conversions, value and average weight per model

Usage:
    frame = results_to_frame(results)
    summary = campaign_summary(frame)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pandas as pd

if TYPE_CHECKING:
    from adtrack.attribution.schema import (
        AttributedTouchpoint,
        AttributionModel,
        AttributionResult,
        Conversion,
    )

FRAME_COLUMNS = [
    "conversion_id",
    "attribution_model",
    "click_id",
    "campaign_id",
    "position",
    "total_positions",
    "attribution_weight",
    "conversion_value",
    "attributed_value",
    "conversion_timestamp",
    "touch_date",
]


def attribution_rows(
    conversion: Conversion,
    model: AttributionModel,
    touchpoints: list[AttributedTouchpoint],
) -> list[dict[str, Any]]:
    """One row per attributed touchpoint."""
    return [
        {
            "conversion_id": conversion.conversion_id,
            "attribution_model": model.value,
            "click_id": tp.click_id,
            "campaign_id": tp.campaign_id,
            "position": tp.position,
            "total_positions": tp.total_positions,
            "attribution_weight": tp.attribution_weight,
            "conversion_value": conversion.value,
            "attributed_value": tp.attribution_weight * conversion.value,
            "conversion_timestamp": conversion.timestamp,
            "touch_date": tp.timestamp.date(),
        }
        for tp in touchpoints
    ]


def rows_to_frame(rows: list[dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def results_to_frame(results: list[AttributionResult]) -> pd.DataFrame:
    """Flatten attribution results into a DataFrame."""
    rows = []
    for result in results:
        rows.extend(attribution_rows(result.conversion, result.model, result.touchpoints))
    return rows_to_frame(rows)


def campaign_summary(data: pd.DataFrame | list[AttributionResult]) -> pd.DataFrame:
    """
    Aggregate credit per campaign.

    Touchpoints without a campaign are left out, matching how credit is
    accumulated into campaign performance.

    Returns:
        DataFrame with campaign_id, fractional_conversions, attributed_value
        and touchpoints, sorted by attributed_value descending.
    """
    frame = data if isinstance(data, pd.DataFrame) else results_to_frame(data)
    frame = frame.dropna(subset=["campaign_id"])

    summary = (
        frame.groupby("campaign_id", as_index=False)
        .agg(
            fractional_conversions=("attribution_weight", "sum"),
            attributed_value=("attributed_value", "sum"),
            touchpoints=("click_id", "count"),
        )
        .sort_values("attributed_value", ascending=False, kind="stable")
        .reset_index(drop=True)
    )
    return summary


def model_comparison(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Compare attribution models over the same set of rows.

    Each conversion's value is counted once per model, not once per
    touchpoint.

    Returns:
        DataFrame with attribution_model, conversions, total_value,
        avg_weight and attributed_touchpoints, sorted by total_value
        descending.
    """
    grouped = frame.groupby("attribution_model")
    per_conversion = frame.drop_duplicates(["attribution_model", "conversion_id"])

    comparison = pd.DataFrame({
        "conversions": grouped["conversion_id"].nunique(),
        "total_value": per_conversion.groupby("attribution_model")["conversion_value"].sum(),
        "avg_weight": grouped["attribution_weight"].mean(),
        "attributed_touchpoints": grouped["click_id"].nunique(),
    })
    comparison.index.name = "attribution_model"

    return (
        comparison.reset_index()
        .sort_values("total_value", ascending=False, kind="stable")
        .reset_index(drop=True)
    )
