"""Shared pytest fixtures for AdTrack packages."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from adtrack.attribution.schema import Conversion, Touchpoint
from adtrack.attribution.storage import InMemoryAttributionStore

CONVERSION_TIME = datetime(2025, 8, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture
def conversion_time():
    return CONVERSION_TIME


@pytest.fixture
def make_touchpoint():
    """Factory for touchpoints placed relative to the sample conversion."""

    def _make(click_id, hours_before, **kwargs):
        kwargs.setdefault("user_ip", "203.0.113.7")
        return Touchpoint(
            click_id=click_id,
            timestamp=CONVERSION_TIME - timedelta(hours=hours_before),
            **kwargs,
        )

    return _make


@pytest.fixture
def sample_conversion():
    """Sample purchase conversion with identity keys from its click."""
    return Conversion(
        conversion_id="conv_12345",
        timestamp=CONVERSION_TIME,
        value=150.0,
        currency="USD",
        click_id="clk_003",
        campaign_id="camp_retarget",
        device_type="mobile",
        user_ip="203.0.113.7",
        fb_click_id="fb.1.abc",
        browser_id="fb.1.browser",
    )


@pytest.fixture
def sample_journey():
    """Three touchpoints, each sharing a different identity key."""
    return [
        Touchpoint(
            click_id="clk_001",
            timestamp=CONVERSION_TIME - timedelta(days=3),
            campaign_id="camp_prospect",
            utm_source="facebook",
            device_type="mobile",
            user_ip="203.0.113.7",
        ),
        Touchpoint(
            click_id="clk_002",
            timestamp=CONVERSION_TIME - timedelta(days=2),
            campaign_id="camp_search",
            utm_source="google",
            device_type="desktop",
            browser_id="fb.1.browser",
        ),
        Touchpoint(
            click_id="clk_003",
            timestamp=CONVERSION_TIME - timedelta(days=1),
            campaign_id="camp_retarget",
            utm_source="facebook",
            device_type="mobile",
            fb_click_id="fb.1.abc",
        ),
    ]


@pytest.fixture
def populated_store(sample_conversion, sample_journey):
    """In-memory store holding the sample conversion, its journey and noise."""
    store = InMemoryAttributionStore()
    store.add_conversion(sample_conversion)
    store.add_touchpoints(sample_journey)
    store.add_touchpoints([
        # Another visitor
        Touchpoint(
            click_id="clk_other",
            timestamp=CONVERSION_TIME - timedelta(days=1),
            campaign_id="camp_prospect",
            user_ip="198.51.100.20",
        ),
        # Same visitor, outside the 30-day lookback window
        Touchpoint(
            click_id="clk_old",
            timestamp=CONVERSION_TIME - timedelta(days=31),
            campaign_id="camp_prospect",
            user_ip="203.0.113.7",
        ),
    ])
    return store
