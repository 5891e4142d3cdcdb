"""Exception types and structured error output."""

from __future__ import annotations

import json
import sys

from rich.console import Console

console = Console(stderr=True)


class BrainError(Exception):
    """Base class for Amazon Brain errors."""


class ConfigError(BrainError):
    """Missing or invalid configuration. Fatal before any dataset runs."""


class ApiError(BrainError):
    """An Amazon API call failed after retries."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReportError(BrainError):
    """A report could not be generated or downloaded."""


# Actionable hints keyed by error substring
_ERROR_HINTS: list[tuple[str, str]] = [
    ("missing credentials", "Set the listed variables in .env.local or the environment"),
    ("401", "Token may be expired or revoked: check the refresh token"),
    ("unauthorized", "Token may be expired or revoked: check the refresh token"),
    ("429", "Rate limited: wait a moment and retry with fewer datasets"),
    ("throttl", "Rate limited: wait a moment and retry with fewer datasets"),
    ("database", "Check DATABASE_URL and that the database is reachable"),
    ("timeout", "Request timed out: try again or check network connectivity"),
    ("connection", "Connection error: check network connectivity"),
]


def _get_hint(error_message: str) -> str | None:
    """Match an error message to an actionable hint."""
    lower = error_message.lower()
    for pattern, hint in _ERROR_HINTS:
        if pattern.lower() in lower:
            return hint
    return None


def error_code(error: Exception) -> str:
    """Classify an exception into a stable error code."""
    if isinstance(error, ConfigError):
        return "CONFIG_ERROR"
    if isinstance(error, ReportError):
        return "REPORT_ERROR"

    message = str(error).lower()
    if (isinstance(error, ApiError) and error.status_code == 401) or "unauthorized" in message:
        return "AUTH_ERROR"
    if "429" in message or "rate limit" in message or "throttl" in message:
        return "RATE_LIMITED"
    if "timeout" in message or "timed out" in message:
        return "TIMEOUT"
    if "connection" in message:
        return "CONNECTION_ERROR"
    return "RUNTIME_ERROR"


def handle_error(error: Exception) -> None:
    """Handle an error with structured output to stdout and human-readable output to stderr.

    Outputs a JSON error object to stdout for scripted consumers:
    {"error": true, "code": "CONFIG_ERROR", "message": "...", "hint": "..."}
    """
    message = str(error)
    hint = _get_hint(message)

    error_obj: dict[str, object] = {
        "error": True,
        "code": error_code(error),
        "message": message,
    }
    if hint:
        error_obj["hint"] = hint

    json.dump(error_obj, sys.stdout)
    sys.stdout.write("\n")

    console.print(f"[red]Error:[/red] {message}")
    if hint:
        console.print(f"[dim]Hint: {hint}[/dim]")
