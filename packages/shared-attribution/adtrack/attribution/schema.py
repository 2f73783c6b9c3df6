"""
Attribution data model - touchpoints, conversions and attribution results.

A conversion is credited across the touchpoints of one visitor's journey:
- Touchpoint: a recorded ad click with campaign and identity metadata
- Conversion: the event being credited, carrying the identity keys of its click
- AttributedTouchpoint: a touchpoint plus the credit a model assigned to it
- AttributionResult: everything produced for one conversion by one model

Touchpoints and conversions are read-only inputs. Derived values are built
as new objects rather than by mutating the records they came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from adtrack.attribution.exceptions import UnknownModelError

if TYPE_CHECKING:
    from adtrack.attribution.scoring import ScoreFactors

# Identity-matching keys shared by touchpoints and conversions
IDENTITY_KEYS = ("user_ip", "session_id", "fb_click_id", "browser_id")


class AttributionModel(str, Enum):
    """Attribution model used to split credit across a journey."""

    FIRST_CLICK = "first_click"
    LAST_CLICK = "last_click"
    LINEAR = "linear"  # Equal credit to all touchpoints
    TIME_DECAY = "time_decay"  # More credit to recent touchpoints
    POSITION_BASED = "position_based"  # 40% first, 40% last, 20% middle
    ALGORITHMIC = "algorithmic"  # Composite score per touchpoint
    CUSTOM = "custom"  # User-defined rules, not normalized

    @classmethod
    def parse(cls, value: AttributionModel | str) -> AttributionModel:
        """Resolve a model name, raising UnknownModelError if unregistered."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownModelError(str(value)) from None

    @property
    def normalizes(self) -> bool:
        """Whether weights produced by this model always sum to 1.0."""
        return self is not AttributionModel.CUSTOM


def _parse_timestamp(value: Any, field_name: str = "timestamp") -> datetime:
    """Parse a timestamp into a timezone-aware UTC datetime.

    Naive datetimes (and ISO strings without an offset) are treated as UTC.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValueError(f"Invalid {field_name} format: {value}") from e
    elif not isinstance(value, datetime):
        raise ValueError(f"Missing required field: {field_name}")

    return _as_utc(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _identity_from(data: dict[str, Any]) -> dict[str, str | None]:
    return {key: (str(data[key]) if data.get(key) else None) for key in IDENTITY_KEYS}


@dataclass(frozen=True)
class Touchpoint:
    """
    A single recorded marketing interaction.

    The timestamp is stored in UTC; a naive value is taken as UTC.

    Example:
        touchpoint = Touchpoint(
            click_id="clk_001",
            campaign_id="camp_summer_sale",
            timestamp=datetime(2025, 8, 1, 9, 30, tzinfo=UTC),
            utm_source="facebook",
            device_type="mobile",
            fb_click_id="fb.1.123",
        )
    """

    click_id: str
    timestamp: datetime

    # Campaign ownership
    campaign_id: str | None = None
    ad_id: str | None = None
    adset_id: str | None = None

    # Acquisition channel
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    device_type: str | None = None  # "mobile", "desktop", "tablet"

    # Identity-matching keys
    user_ip: str | None = None
    session_id: str | None = None
    fb_click_id: str | None = None  # Platform click identifier
    browser_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))

    @property
    def channel(self) -> str | None:
        """Acquisition channel used for channel-level lookups and rules."""
        return self.utm_source

    def identity_keys(self) -> dict[str, str]:
        """Return the identity-matching keys that are present."""
        return {
            key: getattr(self, key)
            for key in IDENTITY_KEYS
            if getattr(self, key)
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "click_id": self.click_id,
            "campaign_id": self.campaign_id,
            "ad_id": self.ad_id,
            "adset_id": self.adset_id,
            "timestamp": self.timestamp.isoformat(),
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "device_type": self.device_type,
            "user_ip": self.user_ip,
            "session_id": self.session_id,
            "fb_click_id": self.fb_click_id,
            "browser_id": self.browser_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Touchpoint:
        """Create Touchpoint from a storage row.

        Raises:
            ValueError: If click_id or timestamp is missing or invalid.
        """
        if not data.get("click_id"):
            raise ValueError("Missing required field: click_id")

        return cls(
            click_id=str(data["click_id"]),
            timestamp=_parse_timestamp(data.get("timestamp")),
            campaign_id=data.get("campaign_id"),
            ad_id=data.get("ad_id"),
            adset_id=data.get("adset_id"),
            utm_source=data.get("utm_source"),
            utm_medium=data.get("utm_medium"),
            utm_campaign=data.get("utm_campaign"),
            device_type=data.get("device_type"),
            **_identity_from(data),
        )


@dataclass(frozen=True)
class Conversion:
    """
    A conversion event to be credited across a journey.

    Identity keys are copied from the click that triggered the conversion
    and are what the journey resolver matches touchpoints on.
    Timestamps are stored in UTC; naive values are taken as UTC.
    """

    conversion_id: str
    timestamp: datetime
    value: float = 0.0
    currency: str = "USD"
    conversion_type: str = "purchase"

    # Triggering click
    click_id: str | None = None
    campaign_id: str | None = None
    device_type: str | None = None

    # Identity-matching keys
    user_ip: str | None = None
    session_id: str | None = None
    fb_click_id: str | None = None
    browser_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))

    def identity_keys(self) -> dict[str, str]:
        """Return the identity-matching keys that are present."""
        return {
            key: getattr(self, key)
            for key in IDENTITY_KEYS
            if getattr(self, key)
        }

    @property
    def has_identity(self) -> bool:
        """True if at least one identity-matching key is present."""
        return bool(self.identity_keys())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "conversion_id": self.conversion_id,
            "click_id": self.click_id,
            "campaign_id": self.campaign_id,
            "conversion_type": self.conversion_type,
            "conversion_value": self.value,
            "currency": self.currency,
            "timestamp": self.timestamp.isoformat(),
            "device_type": self.device_type,
            "user_ip": self.user_ip,
            "session_id": self.session_id,
            "fb_click_id": self.fb_click_id,
            "browser_id": self.browser_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversion:
        """Create Conversion from a storage row.

        Accepts either ``conversion_value`` (storage column) or ``value``.

        Raises:
            ValueError: If conversion_id is missing, or value/timestamp is invalid.
        """
        if not data.get("conversion_id"):
            raise ValueError("Missing required field: conversion_id")

        raw_value = data.get("conversion_value", data.get("value", 0))
        try:
            value = float(raw_value or 0)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid value: {raw_value}") from e

        return cls(
            conversion_id=str(data["conversion_id"]),
            timestamp=_parse_timestamp(data.get("timestamp")),
            value=value,
            currency=data.get("currency") or "USD",
            conversion_type=data.get("conversion_type") or "purchase",
            click_id=data.get("click_id"),
            campaign_id=data.get("campaign_id"),
            device_type=data.get("device_type"),
            **_identity_from(data),
        )


@dataclass(frozen=True)
class AttributedTouchpoint:
    """A touchpoint together with the credit assigned to it."""

    touchpoint: Touchpoint
    attribution_weight: float
    position: int | None = None  # 1-based rank in the journey
    total_positions: int | None = None  # Journey length
    time_to_conversion: timedelta = timedelta(0)
    factors: ScoreFactors | None = None  # Algorithmic model only

    @property
    def click_id(self) -> str:
        return self.touchpoint.click_id

    @property
    def campaign_id(self) -> str | None:
        return self.touchpoint.campaign_id

    @property
    def timestamp(self) -> datetime:
        return self.touchpoint.timestamp

    def to_dict(self) -> dict[str, Any]:
        """Convert to an attribution_touchpoints row."""
        return {
            "click_id": self.click_id,
            "campaign_id": self.campaign_id,
            "position_in_journey": self.position,
            "total_positions": self.total_positions,
            "attribution_weight": self.attribution_weight,
            "time_to_conversion": int(self.time_to_conversion.total_seconds()),
        }


@dataclass
class AttributionResult:
    """Result of attributing one conversion with one model."""

    conversion: Conversion
    model: AttributionModel
    touchpoints: list[AttributedTouchpoint] = field(default_factory=list)

    @property
    def conversion_id(self) -> str:
        return self.conversion.conversion_id

    @property
    def total_value(self) -> float:
        """Monetary value of the conversion being attributed."""
        return self.conversion.value

    @property
    def total_weight(self) -> float:
        """Sum of attribution weights (1.0 except for the custom model)."""
        return sum(tp.attribution_weight for tp in self.touchpoints)

    def to_dict(self) -> dict[str, Any]:
        """Summary of the result, as returned to callers."""
        return {
            "success": True,
            "conversion_id": self.conversion_id,
            "model": self.model.value,
            "touchpoints": len(self.touchpoints),
            "total_attributed_value": self.total_value,
        }


@dataclass
class AttributionOutcome:
    """One entry of a batch run: a result or the error that prevented it."""

    conversion_id: str
    success: bool
    result: AttributionResult | None = None
    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success and self.result is not None:
            return self.result.to_dict()
        return {
            "success": False,
            "conversion_id": self.conversion_id,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class CampaignCredit:
    """Fractional conversions and value credited to a campaign on one day."""

    campaign_id: str
    date: date
    fractional_conversions: float = 0.0
    attributed_value: float = 0.0

    def __add__(self, other: CampaignCredit) -> CampaignCredit:
        if (self.campaign_id, self.date) != (other.campaign_id, other.date):
            raise ValueError("Can only add credits for the same campaign and date")
        return CampaignCredit(
            campaign_id=self.campaign_id,
            date=self.date,
            fractional_conversions=self.fractional_conversions + other.fractional_conversions,
            attributed_value=self.attributed_value + other.attributed_value,
        )
