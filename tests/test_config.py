"""Tests for environment configuration and logging setup."""

import logging
import re

import pytest

from port_sync.config import Config, setup_logging
from port_sync.exceptions import ConfigError


def test_defaults():
    cfg = Config.from_env({})

    assert cfg.base_url == "http://localhost:8080"
    assert cfg.wg_interface == "wg0"
    assert cfg.natpmp_gateway == ""
    assert cfg.check_interval == 45
    assert cfg.health_check_interval == 300
    assert cfg.verify_attempts == 5
    assert cfg.verify_delay == 2
    assert cfg.request_timeout == 10.0
    assert cfg.lease_lifetime == 60
    assert not cfg.has_credentials
    assert not cfg.debug


def test_from_env_values():
    cfg = Config.from_env({
        "QBITTORRENT_HOST": "10.0.0.5",
        "QBITTORRENT_PORT": "9080",
        "QBITTORRENT_USER": "admin",
        "QBITTORRENT_PASS": "adminadmin",
        "QBITTORRENT_RESTART_COMMAND": "systemctl restart qbittorrent-nox",
        "WG_INTERFACE": "proton0",
        "NATPMP_GATEWAY": "10.2.0.1",
        "CHECK_INTERVAL": "30",
        "DEBUG": "yes",
    })

    assert cfg.base_url == "http://10.0.0.5:9080"
    assert cfg.has_credentials
    assert cfg.restart_command == "systemctl restart qbittorrent-nox"
    assert cfg.wg_interface == "proton0"
    assert cfg.natpmp_gateway == "10.2.0.1"
    assert cfg.check_interval == 30
    assert cfg.debug


def test_credentials_need_both_fields():
    assert not Config.from_env({"QBITTORRENT_USER": "admin"}).has_credentials


@pytest.mark.parametrize("name,value", [
    ("QBITTORRENT_PORT", "http"),
    ("CHECK_INTERVAL", "0"),
    ("VERIFY_ATTEMPTS", "-1"),
])
def test_invalid_integers(name, value):
    with pytest.raises(ConfigError, match=name):
        Config.from_env({name: value})


def test_config_is_frozen():
    cfg = Config()
    with pytest.raises(AttributeError):
        cfg.check_interval = 10


def test_describe_masks_password():
    cfg = Config(qbittorrent_user="admin", qbittorrent_pass="hunter2")
    values = dict(cfg.describe())

    assert values["Password"] == "********"
    assert "hunter2" not in str(values)


def test_setup_logging_appends_timestamped_lines(tmp_path):
    log_file = tmp_path / "port-sync.log"
    cfg = Config(log_file=str(log_file))

    setup_logging(cfg).info("first")
    setup_logging(cfg).warning("second")
    logging.getLogger("port_sync").handlers[-1].flush()

    lines = log_file.read_text().splitlines()
    assert len(lines) == 2
    assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] INFO: first$", lines[0])
    assert lines[1].endswith("WARNING: second")


def test_setup_logging_unwritable_file_falls_back(tmp_path):
    cfg = Config(log_file=str(tmp_path / "missing" / "port-sync.log"))

    logger = setup_logging(cfg)

    assert len(logger.handlers) == 1


def test_verify_delay_accepts_fractions():
    cfg = Config.from_env({"VERIFY_DELAY": "0.5"})

    assert cfg.verify_delay == 0.5
    assert dict(cfg.describe())["Verification"] == "5 x 0.5s"


def test_verify_delay_rejects_text():
    with pytest.raises(ConfigError, match="VERIFY_DELAY"):
        Config.from_env({"VERIFY_DELAY": "fast"})
