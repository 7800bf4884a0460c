"""Environment configuration and the composition root."""

import logging

import pytest

from cmmc_tracker import services as services_module
from cmmc_tracker.config import DEFAULT_QUOTA_BYTES, AppConfig, configure_logging, load_config
from cmmc_tracker.storage import FileStorage


def test_defaults_without_environment():
    config = load_config({})
    assert config == AppConfig()
    assert config.quota_bytes == DEFAULT_QUOTA_BYTES


def test_environment_overrides():
    config = load_config({
        "CMMC_STORAGE_DIR": "/tmp/cmmc",
        "CMMC_KEY_PREFIX": "test_",
        "CMMC_STORAGE_QUOTA_BYTES": "1024",
        "CMMC_REVIEW_WINDOW_DAYS": "14",
        "CMMC_LOG_LEVEL": "debug",
    })
    assert config.storage_dir == "/tmp/cmmc"
    assert config.key_prefix == "test_"
    assert config.quota_bytes == 1024
    assert config.review_window_days == 14
    assert config.log_level == "DEBUG"


def test_non_integer_setting_raises():
    with pytest.raises(ValueError):
        load_config({"CMMC_STORAGE_QUOTA_BYTES": "lots"})


def test_configure_logging_adds_one_handler():
    logger = configure_logging("WARNING")
    handlers = len(logger.handlers)
    configure_logging("INFO")
    assert len(logger.handlers) == handlers
    assert logger.level == logging.INFO


def test_build_services_defaults_to_file_storage(tmp_path):
    built = services_module.build_services(AppConfig(storage_dir=str(tmp_path / "store"), key_prefix="t_"))
    assert isinstance(built.storage, FileStorage)
    assert built.store.key_prefix == "t_"
    assert built.reporting.reports is built.reports
    assert built.team.tasks.store is built.store


def test_default_services_is_built_once(tmp_path, monkeypatch):
    monkeypatch.setenv("CMMC_STORAGE_DIR", str(tmp_path / "default"))
    monkeypatch.setattr(services_module, "_default_services", None)

    first = services_module.get_default_services()
    assert first is services_module.get_default_services()
    assert first.config.storage_dir == str(tmp_path / "default")
