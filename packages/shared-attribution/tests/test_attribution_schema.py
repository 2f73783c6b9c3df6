"""Tests for attribution schema types."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from adtrack.attribution.exceptions import UnknownModelError
from adtrack.attribution.schema import (
    AttributedTouchpoint,
    AttributionModel,
    AttributionOutcome,
    AttributionResult,
    CampaignCredit,
    Conversion,
    Touchpoint,
)


class TestAttributionModel:
    """Tests for AttributionModel enum."""

    def test_all_models_exist(self):
        """Test all attribution models are defined."""
        assert AttributionModel.FIRST_CLICK.value == "first_click"
        assert AttributionModel.LAST_CLICK.value == "last_click"
        assert AttributionModel.LINEAR.value == "linear"
        assert AttributionModel.TIME_DECAY.value == "time_decay"
        assert AttributionModel.POSITION_BASED.value == "position_based"
        assert AttributionModel.ALGORITHMIC.value == "algorithmic"
        assert AttributionModel.CUSTOM.value == "custom"

    def test_parse_name(self):
        """Test parsing model names."""
        assert AttributionModel.parse("linear") is AttributionModel.LINEAR
        assert AttributionModel.parse(AttributionModel.CUSTOM) is AttributionModel.CUSTOM

    def test_parse_unknown(self):
        """Test unknown names raise UnknownModelError, which is also a ValueError."""
        with pytest.raises(UnknownModelError) as exc_info:
            AttributionModel.parse("data_driven")

        assert exc_info.value.model_name == "data_driven"
        assert isinstance(exc_info.value, ValueError)
        assert str(exc_info.value) == "Attribution model 'data_driven' not found"

    def test_only_custom_skips_normalization(self):
        """Test normalizes flag."""
        assert not AttributionModel.CUSTOM.normalizes
        assert all(m.normalizes for m in AttributionModel if m is not AttributionModel.CUSTOM)


class TestTouchpoint:
    """Tests for Touchpoint dataclass."""

    def test_identity_keys_skip_missing(self):
        """Test only present identity keys are returned."""
        tp = Touchpoint(
            click_id="clk_1",
            timestamp=datetime(2025, 8, 1, tzinfo=UTC),
            user_ip="203.0.113.7",
            browser_id="",
        )

        assert tp.identity_keys() == {"user_ip": "203.0.113.7"}

    def test_channel_is_utm_source(self):
        """Test channel comes from utm_source."""
        tp = Touchpoint(click_id="clk_1", timestamp=datetime(2025, 8, 1, tzinfo=UTC),
                        utm_source="google")
        assert tp.channel == "google"

    def test_from_dict(self):
        """Test creating a touchpoint from a storage row."""
        tp = Touchpoint.from_dict({
            "click_id": "clk_1",
            "timestamp": "2025-08-01T09:30:00",
            "campaign_id": "camp_a",
            "utm_source": "facebook",
            "fb_click_id": "fb.1.123",
            "session_id": None,
        })

        assert tp.click_id == "clk_1"
        assert tp.timestamp == datetime(2025, 8, 1, 9, 30, tzinfo=UTC)
        assert tp.campaign_id == "camp_a"
        assert tp.fb_click_id == "fb.1.123"
        assert tp.session_id is None

    def test_from_dict_converts_offset_to_utc(self):
        """Test aware timestamps are converted to UTC."""
        tp = Touchpoint.from_dict({
            "click_id": "clk_1",
            "timestamp": datetime(2025, 8, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))),
        })

        assert tp.timestamp == datetime(2025, 8, 1, 10, 0, tzinfo=UTC)
        assert tp.timestamp.tzinfo is UTC

    def test_from_dict_missing_click_id(self):
        """Test missing click_id raises ValueError."""
        with pytest.raises(ValueError, match="click_id"):
            Touchpoint.from_dict({"timestamp": "2025-08-01T00:00:00"})

    def test_from_dict_missing_timestamp(self):
        """Test missing timestamp raises ValueError."""
        with pytest.raises(ValueError, match="Missing required field: timestamp"):
            Touchpoint.from_dict({"click_id": "clk_1"})

    def test_from_dict_invalid_timestamp(self):
        """Test unparseable timestamp raises ValueError."""
        with pytest.raises(ValueError, match="Invalid timestamp format"):
            Touchpoint.from_dict({"click_id": "clk_1", "timestamp": "yesterday"})

    def test_is_immutable(self):
        """Test touchpoints cannot be modified."""
        tp = Touchpoint(click_id="clk_1", timestamp=datetime(2025, 8, 1, tzinfo=UTC))
        with pytest.raises(AttributeError):
            tp.campaign_id = "camp_b"  # type: ignore[misc]

    def test_naive_timestamp_taken_as_utc(self):
        """Test a naive timestamp passed directly is normalized to UTC."""
        tp = Touchpoint(click_id="clk_1", timestamp=datetime(2025, 8, 1, 9, 30))

        assert tp.timestamp == datetime(2025, 8, 1, 9, 30, tzinfo=UTC)
        assert tp.timestamp.tzinfo is UTC


class TestConversion:
    """Tests for Conversion dataclass."""

    def test_defaults(self):
        """Test default values."""
        conversion = Conversion(conversion_id="conv_1", timestamp=datetime(2025, 8, 1, tzinfo=UTC))

        assert conversion.value == 0.0
        assert conversion.currency == "USD"
        assert conversion.conversion_type == "purchase"
        assert not conversion.has_identity

    def test_timestamp_normalized_to_utc(self):
        """Test offset and naive timestamps both end up in UTC."""
        offset = Conversion(
            conversion_id="conv_1",
            timestamp=datetime(2025, 8, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5))),
        )
        naive = Conversion(conversion_id="conv_2", timestamp=datetime(2025, 8, 1, 17, 0))

        assert offset.timestamp == datetime(2025, 8, 1, 17, 0, tzinfo=UTC)
        assert offset.timestamp.tzinfo is UTC
        assert naive.timestamp == offset.timestamp

    def test_has_identity(self, sample_conversion):
        """Test identity detection."""
        assert sample_conversion.has_identity
        assert sample_conversion.identity_keys() == {
            "user_ip": "203.0.113.7",
            "fb_click_id": "fb.1.abc",
            "browser_id": "fb.1.browser",
        }

    def test_from_dict_storage_row(self):
        """Test creating a conversion from a joined storage row."""
        conversion = Conversion.from_dict({
            "conversion_id": "conv_1",
            "click_id": "clk_9",
            "conversion_type": "lead",
            "conversion_value": "49.5",
            "currency": None,
            "timestamp": datetime(2025, 8, 1, 15, 0),
            "user_ip": "203.0.113.7",
        })

        assert conversion.value == 49.5
        assert conversion.currency == "USD"
        assert conversion.conversion_type == "lead"
        assert conversion.timestamp.tzinfo is UTC
        assert conversion.user_ip == "203.0.113.7"

    def test_from_dict_accepts_value_key(self):
        """Test value may be given as 'value'."""
        conversion = Conversion.from_dict({
            "conversion_id": "conv_1",
            "value": 10,
            "timestamp": "2025-08-01T00:00:00+00:00",
        })
        assert conversion.value == 10.0

    def test_from_dict_invalid_value(self):
        """Test non-numeric value raises ValueError."""
        with pytest.raises(ValueError, match="Invalid value"):
            Conversion.from_dict({
                "conversion_id": "conv_1",
                "conversion_value": "lots",
                "timestamp": "2025-08-01T00:00:00",
            })

    def test_to_dict(self, sample_conversion):
        """Test conversion to a storage row."""
        data = sample_conversion.to_dict()

        assert data["conversion_id"] == "conv_12345"
        assert data["conversion_value"] == 150.0
        assert data["timestamp"] == "2025-08-15T12:00:00+00:00"


class TestAttributedTouchpoint:
    """Tests for AttributedTouchpoint."""

    def test_delegated_properties(self, sample_journey):
        """Test click, campaign and timestamp come from the touchpoint."""
        attributed = AttributedTouchpoint(touchpoint=sample_journey[0], attribution_weight=0.5)

        assert attributed.click_id == "clk_001"
        assert attributed.campaign_id == "camp_prospect"
        assert attributed.timestamp == sample_journey[0].timestamp

    def test_to_dict(self, sample_journey):
        """Test storage row uses whole seconds for time to conversion."""
        attributed = AttributedTouchpoint(
            touchpoint=sample_journey[2],
            attribution_weight=0.4,
            position=3,
            total_positions=3,
            time_to_conversion=timedelta(days=1, milliseconds=500),
        )

        assert attributed.to_dict() == {
            "click_id": "clk_003",
            "campaign_id": "camp_retarget",
            "position_in_journey": 3,
            "total_positions": 3,
            "attribution_weight": 0.4,
            "time_to_conversion": 86400,
        }


class TestAttributionResult:
    """Tests for AttributionResult and AttributionOutcome."""

    def test_to_dict(self, sample_conversion, sample_journey):
        """Test result summary."""
        result = AttributionResult(
            conversion=sample_conversion,
            model=AttributionModel.LINEAR,
            touchpoints=[
                AttributedTouchpoint(touchpoint=tp, attribution_weight=0.5)
                for tp in sample_journey[:2]
            ],
        )

        assert result.total_weight == 1.0
        assert result.to_dict() == {
            "success": True,
            "conversion_id": "conv_12345",
            "model": "linear",
            "touchpoints": 2,
            "total_attributed_value": 150.0,
        }

    def test_failed_outcome_to_dict(self):
        """Test failed outcome summary."""
        outcome = AttributionOutcome(
            conversion_id="conv_missing",
            success=False,
            error="Conversion not found: conv_missing",
            error_type="ConversionNotFoundError",
        )

        assert outcome.to_dict() == {
            "success": False,
            "conversion_id": "conv_missing",
            "error": "Conversion not found: conv_missing",
            "error_type": "ConversionNotFoundError",
        }


class TestCampaignCredit:
    """Tests for CampaignCredit."""

    def test_add(self):
        """Test credits for the same campaign and day add up."""
        total = CampaignCredit("camp_a", date(2025, 8, 1), 0.25, 25.0) + CampaignCredit(
            "camp_a", date(2025, 8, 1), 0.5, 50.0
        )

        assert total.fractional_conversions == 0.75
        assert total.attributed_value == 75.0

    def test_add_different_day(self):
        """Test adding credits for different days raises ValueError."""
        with pytest.raises(ValueError):
            CampaignCredit("camp_a", date(2025, 8, 1)) + CampaignCredit("camp_a", date(2025, 8, 2))
