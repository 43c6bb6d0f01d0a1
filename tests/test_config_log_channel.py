import logging

import pytest

from shared import config as cfg


@pytest.fixture
def restore_config():
    yield
    cfg.reload_config()


def test_log_channel_disabled_warns_once(monkeypatch, caplog, restore_config):
    caplog.set_level(logging.WARNING)
    monkeypatch.delenv("LOG_CHANNEL_ID", raising=False)
    monkeypatch.setattr(cfg, "_log_channel_warning_emitted", False)

    cfg.reload_config()
    cfg.reload_config()

    warnings = [r for r in caplog.records if "Log channel disabled" in r.getMessage()]
    assert len(warnings) == 1
    assert cfg.get_log_channel_id() is None


def test_log_channel_parsed_from_env(monkeypatch, restore_config):
    monkeypatch.setenv("LOG_CHANNEL_ID", " <#123456789> ")

    cfg.reload_config()

    assert cfg.get_log_channel_id() == 123456789
