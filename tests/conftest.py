"""Shared fixtures for the amazon-brain test suite."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from amazon_brain.config import Config, Settings
from amazon_brain.db import init_db, make_engine, make_session_factory
from amazon_brain.store import Store


@pytest.fixture
def fake_settings() -> Settings:
    return Settings(
        lwa_client_id="test-lwa-id",
        lwa_client_secret="test-lwa-secret",
        sp_refresh_token="test-sp-refresh",
        seller_id="SELLER1",
        marketplace_id="A2VIGQ35RCS4UG",
        ads_client_id="test-ads-id",
        ads_client_secret="test-ads-secret",
        ads_refresh_token="test-ads-refresh",
        ads_profile_id="111111",
        database_url="sqlite://",
        vat_rate=5.0,
        sync_days_back=90,
    )


@pytest.fixture
def fake_config(fake_settings) -> Config:
    return Config(settings=fake_settings)


@pytest.fixture
def store() -> Store:
    """Fresh in-memory database per test."""
    engine = make_engine("sqlite://")
    init_db(engine)
    return Store(make_session_factory(engine))


@pytest.fixture
def mock_client():
    """MagicMock standing in for AdsApiClient / SellingPartnerClient."""
    client = MagicMock()
    client.profile_id = "111111"
    client.get = MagicMock()
    client.post = MagicMock()
    client.download = MagicMock()
    client.close = MagicMock()
    return client
