"""Token pagination helpers for the Ads and Selling Partner APIs."""

from __future__ import annotations

from typing import Any, Callable


def paginate(
    fetch_fn: Callable[[dict[str, Any]], dict[str, Any]],
    body: dict[str, Any],
    results_key: str,
    token_key: str = "nextToken",
    request_token_key: str | None = None,
) -> list[dict[str, Any]]:
    """Collect every page of a token-paginated listing.

    Args:
        fetch_fn: Takes the request body/query and returns the response dict.
        body: The initial request body or query parameters.
        results_key: Key holding the page's items ("campaigns", "Orders").
        token_key: Key holding the next-page token in the response.
        request_token_key: Key to send the token back under; defaults to token_key.

    Returns:
        All items concatenated across pages.
    """
    request_token_key = request_token_key or token_key
    all_results: list[dict[str, Any]] = []

    while True:
        response = fetch_fn(body)
        all_results.extend(response.get(results_key) or [])

        next_token = response.get(token_key)
        if not next_token:
            break
        body = {**body, request_token_key: next_token}

    return all_results
