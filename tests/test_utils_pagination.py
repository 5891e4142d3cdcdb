"""Tests for utils/pagination.py: uses a callable mock for fetch_fn."""
from amazon_brain.utils.pagination import paginate


def test_single_page():
    assert paginate(lambda b: {"items": [{"id": 1}, {"id": 2}]}, {}, "items") == [{"id": 1}, {"id": 2}]


def test_three_pages():
    pages = iter([
        {"items": [{"id": 1}], "nextToken": "t2"},
        {"items": [{"id": 2}], "nextToken": "t3"},
        {"items": [{"id": 3}]},
    ])
    assert len(paginate(lambda b: next(pages), {}, "items")) == 3


def test_missing_results_key():
    assert paginate(lambda b: {"other": "data"}, {}, "items") == []


def test_sends_token_back_in_body():
    calls = []

    def fetch(b):
        calls.append(dict(b))
        if len(calls) == 1:
            return {"items": [1], "nextToken": "tok"}
        return {"items": [2]}

    paginate(fetch, {"maxResults": 100}, "items")
    assert calls[1] == {"maxResults": 100, "nextToken": "tok"}


def test_orders_style_next_token():
    calls = []

    def fetch(query):
        calls.append(dict(query))
        if len(calls) == 1:
            return {"Orders": [{"AmazonOrderId": "1"}], "NextToken": "abc"}
        return {"Orders": [{"AmazonOrderId": "2"}]}

    orders = paginate(fetch, {"MarketplaceIds": "M"}, "Orders", token_key="NextToken")
    assert [o["AmazonOrderId"] for o in orders] == ["1", "2"]
    assert calls[1]["NextToken"] == "abc"


def test_request_token_key_override():
    calls = []

    def fetch(b):
        calls.append(dict(b))
        return {"items": [], "next": "x"} if len(calls) == 1 else {"items": []}

    paginate(fetch, {}, "items", token_key="next", request_token_key="pageToken")
    assert calls[1] == {"pageToken": "x"}
