"""Tests for client.py: headers, retry logic, error mapping."""
from unittest.mock import MagicMock, patch

import httpx
import pytest

from amazon_brain.client import AdsApiClient, SellingPartnerClient
from amazon_brain.utils.errors import ApiError


@pytest.fixture
def mock_auth():
    auth = MagicMock()
    auth.client_id = "ads-client-id"
    auth.get_access_token.return_value = "test-token"
    return auth


@pytest.fixture
def ads_client(mock_auth):
    c = AdsApiClient("https://advertising-api-eu.amazon.com/", mock_auth, profile_id="111111", retry_delay=0.0)
    c._http = MagicMock()
    return c


@pytest.fixture
def sp_client(mock_auth):
    c = SellingPartnerClient("https://sellingpartnerapi-eu.amazon.com", mock_auth, retry_delay=0.0)
    c._http = MagicMock()
    return c


def _resp(status_code=200, json_data=None, text=""):
    r = MagicMock(spec=httpx.Response)
    r.status_code = status_code
    r.text = text
    r.json.return_value = json_data or {}
    return r


# ── Headers ──────────────────────────────────────────────────────────

def test_ads_headers(ads_client):
    ads_client._http.request.return_value = _resp()
    ads_client.get("/v2/profiles")

    kwargs = ads_client._http.request.call_args[1]
    assert kwargs["url"] == "https://advertising-api-eu.amazon.com/v2/profiles"
    assert kwargs["headers"]["Authorization"] == "Bearer test-token"
    assert kwargs["headers"]["Amazon-Advertising-API-ClientId"] == "ads-client-id"
    assert kwargs["headers"]["Amazon-Advertising-API-Scope"] == "111111"


def test_ads_headers_without_profile(ads_client):
    ads_client.profile_id = ""
    ads_client._http.request.return_value = _resp()
    ads_client.get("/v2/profiles")

    headers = ads_client._http.request.call_args[1]["headers"]
    assert "Amazon-Advertising-API-Scope" not in headers


def test_sp_headers(sp_client):
    sp_client._http.request.return_value = _resp()
    sp_client.get("/orders/v0/orders", params={"MarketplaceIds": "X"})

    kwargs = sp_client._http.request.call_args[1]
    assert kwargs["headers"]["x-amz-access-token"] == "test-token"
    assert kwargs["params"] == {"MarketplaceIds": "X"}


def test_custom_content_type_and_accept(ads_client):
    ads_client._http.request.return_value = _resp()
    ads_client.post("/sp/campaigns/list", body={}, content_type="application/x+json", accept="application/x+json")

    headers = ads_client._http.request.call_args[1]["headers"]
    assert headers["Content-Type"] == "application/x+json"
    assert headers["Accept"] == "application/x+json"


# ── Retries ──────────────────────────────────────────────────────────

@patch("amazon_brain.client.time.sleep")
def test_401_refreshes_token_and_retries(mock_sleep, ads_client, mock_auth):
    ads_client._http.request.side_effect = [_resp(401), _resp(200)]

    response = ads_client.get("/v2/profiles")
    assert response.status_code == 200
    mock_auth.get_access_token.assert_any_call(force_refresh=True)


@patch("amazon_brain.client.time.sleep")
def test_429_retries(mock_sleep, ads_client):
    ads_client._http.request.side_effect = [_resp(429), _resp(429), _resp(200)]

    assert ads_client.get("/x").status_code == 200
    assert ads_client._http.request.call_count == 3


@patch("amazon_brain.client.time.sleep")
def test_5xx_exhausts_retries(mock_sleep, ads_client):
    ads_client._http.request.return_value = _resp(503, {"message": "unavailable"})

    with pytest.raises(ApiError) as exc:
        ads_client.get("/x")
    assert exc.value.status_code == 503
    assert ads_client._http.request.call_count == 3


def test_4xx_raises_without_retry(ads_client):
    ads_client._http.request.return_value = _resp(400, {"errors": [{"message": "bad date"}]})

    with pytest.raises(ApiError, match="bad date"):
        ads_client.get("/x")
    assert ads_client._http.request.call_count == 1


@patch("amazon_brain.client.time.sleep")
def test_transport_error_retries_then_raises(mock_sleep, ads_client):
    ads_client._http.request.side_effect = httpx.ConnectError("refused")

    with pytest.raises(ApiError, match="failed after 3 attempts"):
        ads_client.get("/x")


# ── download / close ─────────────────────────────────────────────────

def test_download_returns_bytes(ads_client):
    dl = MagicMock()
    dl.content = b"payload"
    ads_client._http.get.return_value = dl

    assert ads_client.download("https://s3.example.com/report.gz") == b"payload"
    dl.raise_for_status.assert_called_once()


def test_close_closes_auth(ads_client, mock_auth):
    ads_client.close()
    ads_client._http.close.assert_called_once()
    mock_auth.close.assert_called_once()
