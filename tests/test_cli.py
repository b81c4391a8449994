"""
Tests for the Typer command-line interface.
"""

import json

import pytest
from rich.console import Console
from typer.testing import CliRunner

from shopcalendar import __version__
from shopcalendar.cli import app as cli_app

runner = CliRunner()

NOW = ["--now", "2025-09-20 08:00"]

APPOINTMENTS = [
    {"id": "apt-1001", "shop_id": "atelier-1", "client_id": "c-17", "date": "2025-09-22",
     "start_time": "10:30:00", "end_time": "12:00:00", "status": "confirmed", "type": "fitting"},
    {"id": "apt-1002", "shop_id": "atelier-1", "client_id": "c-4", "date": "2025-09-22",
     "start_time": "14:00:00", "end_time": "14:30:00", "status": "pending", "type": "pickup"},
    {"id": "apt-1003", "shop_id": "atelier-1", "client_id": "c-9", "date": "2025-09-23",
     "start_time": "09:00:00", "end_time": "10:00:00", "status": "canceled", "type": "consultation"},
]


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(cli_app, "console", Console(width=200))


@pytest.fixture
def config_path(tmp_path):
    (tmp_path / "appointments.json").write_text(json.dumps(APPOINTMENTS), encoding="utf-8")
    path = tmp_path / "config.yaml"
    path.write_text(
        "shop_id: atelier-1\n"
        "calendar:\n"
        "  buffer_time_minutes: 15\n"
        "appointments_file: appointments.json\n",
        encoding="utf-8",
    )
    return str(path)


def test_slots(config_path):
    result = runner.invoke(cli_app.app, ["slots", "2025-09-22", "--config", config_path, *NOW])

    assert result.exit_code == 0, result.output
    assert "09:45" in result.output
    assert "10:15" not in result.output
    assert "12:15" in result.output
    assert "12:15 PM" in result.output


def test_slots_on_closed_day(config_path):
    result = runner.invoke(cli_app.app, ["slots", "2025-09-21", "--config", config_path, *NOW])

    assert result.exit_code == 0
    assert "closed" in result.output


def test_slots_with_invalid_date(config_path):
    result = runner.invoke(cli_app.app, ["slots", "2025-02-30", "--config", config_path])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_missing_config(tmp_path):
    result = runner.invoke(cli_app.app, ["hours", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_hours(config_path):
    result = runner.invoke(cli_app.app, ["hours", "--config", config_path])

    assert result.exit_code == 0
    assert "Monday" in result.output
    assert "09:00 - 17:00" in result.output
    assert "closed" in result.output


def test_agenda_hides_inactive_by_default(config_path):
    result = runner.invoke(cli_app.app, ["agenda", "2025-09-22", "--config", config_path])

    assert result.exit_code == 0, result.output
    assert "apt-1001" in result.output
    assert "apt-1002" in result.output
    assert "apt-1003" not in result.output


def test_agenda_all(config_path):
    result = runner.invoke(cli_app.app, ["agenda", "2025-09-22", "--all", "--view", "month", "--config", config_path])

    assert result.exit_code == 0, result.output
    assert "apt-1003" in result.output


def test_reschedule_preview(config_path):
    result = runner.invoke(
        cli_app.app,
        ["reschedule", "apt-1001", "--date", "2025-09-23", "--start", "14:00", "--config", config_path, *NOW],
    )

    assert result.exit_code == 0, result.output
    assert "14:00-15:30" in result.output
    assert "status will be pending" in result.output


def test_reschedule_into_conflict(config_path):
    result = runner.invoke(
        cli_app.app,
        ["reschedule", "apt-1001", "--start", "13:30", "--config", config_path, *NOW],
    )

    assert result.exit_code == 1
    assert "overlaps" in result.output


def test_reschedule_unknown_appointment(config_path):
    result = runner.invoke(cli_app.app, ["reschedule", "apt-9", "--config", config_path, *NOW])

    assert result.exit_code == 1
    assert "Unknown appointment" in result.output


def test_version():
    result = runner.invoke(cli_app.app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output
