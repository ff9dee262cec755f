"""Tests for configuration settings."""

import pytest

from conftest import FakeDirectory, FakeLedger
from ledger_scheduler.config.settings import get_settings
from ledger_scheduler.events import EventPublisher
from ledger_scheduler.ledger import LedgerAPIClient
from ledger_scheduler.materializer import Materializer
from ledger_scheduler.runner import SchedulerRunner


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_loads_from_env():
    """Test that settings loads from environment variables."""
    settings = get_settings()

    assert settings.ledger_api_url == "http://ledger.test"
    assert settings.ledger_api_key.get_secret_value() == "test-api-key"


def test_settings_has_defaults():
    """Test that settings has sensible defaults."""
    settings = get_settings()

    assert settings.ledger_timeout == 30.0
    assert settings.ledger_max_retries == 3
    assert settings.scheduler_timezone == "UTC"
    assert settings.reminder_days_ahead == 3
    assert settings.max_catch_up == 366
    assert settings.ws_port == 8766


def test_settings_override(monkeypatch):
    monkeypatch.setenv("REMINDER_DAYS_AHEAD", "7")
    monkeypatch.setenv("SCHEDULER_TIMEZONE", "America/New_York")
    monkeypatch.setenv("LOG_FORMAT", "json")

    settings = get_settings()

    assert settings.reminder_days_ahead == 7
    assert settings.scheduler_timezone == "America/New_York"
    assert settings.log_format == "json"


def test_invalid_log_level_rejected(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "LOUD")
    with pytest.raises(ValueError):
        get_settings()


def test_settings_are_cached():
    """Test that get_settings returns cached instance."""
    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_explicit_arguments_need_no_environment(monkeypatch, store):
    monkeypatch.delenv("LEDGER_API_KEY")
    with pytest.raises(ValueError):
        get_settings()

    runner = SchedulerRunner(
        store,
        Materializer(store, FakeLedger(), FakeDirectory()),
        reminder_days_ahead=1,
        max_catch_up=5,
    )
    client = LedgerAPIClient(
        base_url="http://ledger.local/", api_key="key", timeout=5.0, max_retries=0
    )
    publisher = EventPublisher(host="127.0.0.1", port=9100)

    assert runner.get_status()["max_catch_up"] == 5
    assert client.base_url == "http://ledger.local"
    assert publisher.get_status()["port"] == 9100


def test_missing_arguments_fall_back_to_settings(store):
    runner = SchedulerRunner(store, Materializer(store, FakeLedger(), FakeDirectory()))
    client = LedgerAPIClient(api_key="key")

    assert runner.get_status()["reminder_days_ahead"] == 3
    assert client.base_url == "http://ledger.test"
