"""Tests for services/notifier.py: Resend email sends."""
from unittest.mock import MagicMock

import httpx

from amazon_brain.services.notifier import RESEND_URL, EmailNotifier


def _notifier(api_key="re_test", status_code=200):
    http = MagicMock()
    http.post.return_value = MagicMock(status_code=status_code, text="")
    return EmailNotifier(api_key, "Brain <noreply@example.com>", http=http), http


def test_send_posts_to_resend():
    notifier, http = _notifier()
    assert notifier.send("Subject", ["a@example.com"], "body") is True

    args, kwargs = http.post.call_args
    assert args[0] == RESEND_URL
    assert kwargs["headers"]["Authorization"] == "Bearer re_test"
    assert kwargs["json"]["to"] == ["a@example.com"]
    assert kwargs["json"]["text"] == "body"


def test_send_skipped_without_key():
    notifier, http = _notifier(api_key="")
    assert notifier.configured is False
    assert notifier.send("Subject", ["a@example.com"], "body") is False
    http.post.assert_not_called()


def test_send_skipped_without_recipients():
    notifier, http = _notifier()
    assert notifier.send("Subject", [], "body") is False
    http.post.assert_not_called()


def test_send_rejected():
    notifier, _ = _notifier(status_code=422)
    assert notifier.send("Subject", ["a@example.com"], "body") is False


def test_send_transport_error():
    notifier, http = _notifier()
    http.post.side_effect = httpx.ConnectError("refused")
    assert notifier.send("Subject", ["a@example.com"], "body") is False
