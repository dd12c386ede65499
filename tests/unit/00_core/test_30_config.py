# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for configuration loading."""

import logging

import pytest

from mail_lro.config import (
    CONNECTION_STRING_ENV,
    CONNECTION_STRING_EXAMPLE,
    SENDER_ADDRESS_ENV,
    load_config,
    parse_connection_string,
)
from mail_lro.errors import ConfigurationError


class TestParseConnectionString:
    """Tests for parse_connection_string."""

    def test_endpoint_and_key(self):
        """Test both parts are extracted and the trailing slash dropped."""
        endpoint, key = parse_connection_string("endpoint=https://acs.example/;accesskey=abc=")
        assert endpoint == "https://acs.example"
        assert key == "abc="

    def test_keys_case_insensitive_any_order(self):
        """Test key names ignore case and order."""
        endpoint, key = parse_connection_string("AccessKey=k;Endpoint=https://acs.example")
        assert (endpoint, key) == ("https://acs.example", "k")

    def test_scheme_added(self):
        """Test a bare host gets an https scheme."""
        endpoint, _ = parse_connection_string("endpoint=acs.example;accesskey=k")
        assert endpoint == "https://acs.example"

    @pytest.mark.parametrize("value", ["endpoint=https://acs.example", "accesskey=k", "garbage"])
    def test_incomplete_raises(self, value):
        """Test missing parts raise ConfigurationError with an example."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_connection_string(value)
        assert exc_info.value.setting == CONNECTION_STRING_ENV
        assert exc_info.value.example == CONNECTION_STRING_EXAMPLE


class TestLoadConfig:
    """Tests for load_config priority and validation."""

    def test_from_environment(self, acs_env):
        """Test required settings come from the environment."""
        config = load_config(environ=acs_env)
        assert config.provider.endpoint == "https://acs.example.test"
        assert config.provider.sender_address == "DoNotReply@example.azurecomm.net"
        assert config.polling.interval == 0.5
        assert config.polling.timeout == 120.0
        assert config.polling.wait_timeout == 60.0
        assert config.polling.shutdown_grace == 5.0
        assert config.probe.burst_size == 35
        assert config.probe.limit_per_minute == 30

    @pytest.mark.parametrize("missing", [CONNECTION_STRING_ENV, SENDER_ADDRESS_ENV])
    def test_missing_required_setting(self, acs_env, missing):
        """Test a missing required setting names itself."""
        del acs_env[missing]
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(environ=acs_env)
        assert exc_info.value.setting == missing
        assert exc_info.value.example

    def test_blank_required_setting(self, acs_env):
        """Test whitespace-only values count as missing."""
        acs_env[SENDER_ADDRESS_ENV] = "   "
        with pytest.raises(ConfigurationError):
            load_config(environ=acs_env)

    def test_environment_overrides(self, acs_env):
        """Test tuning variables override defaults."""
        acs_env.update({"ACS_POLL_INTERVAL": "2", "ACS_PROBE_BURST_SIZE": "50", "ACS_API_VERSION": "2024-01-01"})
        config = load_config(environ=acs_env)
        assert config.polling.interval == 2.0
        assert config.probe.burst_size == 50
        assert config.provider.api_version == "2024-01-01"

    def test_invalid_number_falls_back(self, acs_env, caplog):
        """Test an unparsable number logs a warning and keeps the default."""
        acs_env["ACS_POLL_TIMEOUT"] = "soon"
        with caplog.at_level(logging.WARNING):
            config = load_config(environ=acs_env)
        assert config.polling.timeout == 120.0
        assert "ACS_POLL_TIMEOUT" in caplog.text

    @pytest.mark.parametrize(
        ("env_var", "value", "attribute", "default"),
        [
            ("ACS_POLL_INTERVAL", "-1", ("polling", "interval"), 0.5),
            ("ACS_POLL_TIMEOUT", "-5", ("polling", "timeout"), 120.0),
            ("ACS_REQUEST_TIMEOUT", "0", ("provider", "request_timeout"), 30.0),
            ("ACS_PROBE_BURST_SIZE", "0", ("probe", "burst_size"), 35),
            ("ACS_PROBE_LIMIT_PER_MINUTE", "-3", ("probe", "limit_per_minute"), 30),
        ],
    )
    def test_out_of_range_number_falls_back(self, acs_env, caplog, env_var, value, attribute, default):
        """Test a number below its lower bound logs a warning and keeps the default."""
        acs_env[env_var] = value
        with caplog.at_level(logging.WARNING):
            config = load_config(environ=acs_env)
        section, name = attribute
        assert getattr(getattr(config, section), name) == default
        assert env_var in caplog.text

    def test_zero_interval_allowed(self, acs_env):
        """Test a zero interval is accepted as back-to-back reads."""
        acs_env["ACS_POLL_INTERVAL"] = "0"
        assert load_config(environ=acs_env).polling.interval == 0.0

    def test_out_of_range_file_value_falls_back(self, acs_env, tmp_path, caplog):
        """Test an INI number below its lower bound keeps the environment value."""
        acs_env["ACS_PROBE_BURST_SIZE"] = "12"
        path = tmp_path / "mail-lro.ini"
        path.write_text("[polling]\ninterval = -0.5\n[probe]\nburst_size = 0\n")
        with caplog.at_level(logging.WARNING):
            config = load_config(str(path), environ=acs_env)
        assert config.polling.interval == 0.5
        assert config.probe.burst_size == 12
        assert "[probe] burst_size" in caplog.text
        assert "[polling] interval" in caplog.text

    def test_log_level_default(self, acs_env):
        """Test the log level defaults to WARNING."""
        assert load_config(environ=acs_env).log_level == "WARNING"

    def test_config_file_wins(self, acs_env, tmp_path):
        """Test the INI file overrides environment values."""
        acs_env["ACS_POLL_INTERVAL"] = "3"
        path = tmp_path / "mail-lro.ini"
        path.write_text(
            "[provider]\n"
            "sender_address = other@example.com\n"
            "[polling]\n"
            "interval = 0.25\n"
            "wait_timeout = 10\n"
            "[probe]\n"
            "burst_size = 5\n"
            "[logging]\n"
            "level = DEBUG\n"
        )
        config = load_config(str(path), environ=acs_env)
        assert config.provider.sender_address == "other@example.com"
        assert config.polling.interval == 0.25
        assert config.polling.wait_timeout == 10.0
        assert config.probe.burst_size == 5
        assert config.log_level == "DEBUG"

    def test_config_file_supplies_required(self, tmp_path):
        """Test required settings may come from the file alone."""
        path = tmp_path / "mail-lro.ini"
        path.write_text(
            "[provider]\n"
            "connection_string = endpoint=https://acs.example/;accesskey=k\n"
            "sender_address = no-reply@example.com\n"
        )
        config = load_config(str(path), environ={})
        assert config.provider.endpoint == "https://acs.example"

    def test_missing_config_file(self, acs_env, tmp_path):
        """Test a missing file is ignored with a warning."""
        config = load_config(str(tmp_path / "absent.ini"), environ=acs_env)
        assert config.provider.access_key
