"""CLI tests for the alerts command group and the root app."""
import json
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from amazon_brain.commands.alerts_cmd import app
from amazon_brain.main import app as root_app

runner = CliRunner()


def _mock_build(service):
    return MagicMock(), service


def test_alerts_run():
    service = MagicMock()
    service.run.return_value = {"success": True, "stock_alerts": 2, "tacos_alerts": 0}

    with patch("amazon_brain.commands.alerts_cmd._build_service", return_value=_mock_build(service)):
        result = runner.invoke(app, ["run", "--output", "json"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["stock_alerts"] == 2


def test_alerts_report_preview():
    service = MagicMock()
    service.build_strategic_report.return_value = ("Subject", "## What Happened This Week")

    with patch("amazon_brain.commands.alerts_cmd._build_service", return_value=_mock_build(service)):
        result = runner.invoke(app, ["report"])

    assert result.exit_code == 0
    assert "What Happened This Week" in result.stdout
    service.maybe_send_strategic_report.assert_not_called()


def test_alerts_report_send():
    service = MagicMock()
    service.maybe_send_strategic_report.return_value = True

    with patch("amazon_brain.commands.alerts_cmd._build_service", return_value=_mock_build(service)):
        result = runner.invoke(app, ["report", "--send"])

    assert result.exit_code == 0
    service.maybe_send_strategic_report.assert_called_once()


def test_root_help_lists_groups():
    result = runner.invoke(root_app, ["--help"])
    assert result.exit_code == 0
    for group in ("sync", "alerts", "api"):
        assert group in result.stdout
