"""
Unit tests for configuration loading and validation.

Run tests with: python -m pytest tests/test_config_loader.py -v
"""

import copy
import json
import os
import sys
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.config_loader import ConfigLoader, load_config, parse_bool, validate_config
from shared.errors import ConfigurationError

VALID_CONFIG = {
    "ig_api": {
        "environment": "demo",
        "url_demo": "https://demo-api.ig.com/gateway/deal",
        "api_key": "0123456789abcdef",
        "username": "trader",
        "password": "s3cret-pass",
    },
    "strategy": {
        "name": "major",
        "market": "US 500",
        "underlying": "US 500",
        "currency": "USD",
        "delta": 25,
        "budget": 100,
        "delay": 0,
        "sampling": 5,
        "stop_level": 0.5,
        "trailing_stop_level": 0.3,
    },
}


@pytest.fixture
def config():
    return copy.deepcopy(VALID_CONFIG)


class TestValidateConfig:

    def test_valid_config(self, config):
        validate_config(config)

    def test_missing_key(self, config):
        del config["strategy"]["budget"]
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(config)
        assert exc_info.value.config_key == "strategy.budget"

    def test_missing_section(self, config):
        del config["ig_api"]
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(config)
        assert exc_info.value.config_key == "ig_api.api_key"

    @pytest.mark.parametrize("key,value", [
        ("budget", 0),
        ("budget", "100"),
        ("delta", 5000),
        ("sampling", 0),
        ("stop_level", 1),
        ("trailing_stop_level", 0),
        ("delay", True),
    ])
    def test_bad_numbers(self, config, key, value):
        config["strategy"][key] = value
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(config)
        assert exc_info.value.config_key == f"strategy.{key}"

    @pytest.mark.parametrize("currency", ["usd", "EURO", "", 978])
    def test_bad_currency(self, config, currency):
        config["strategy"]["currency"] = currency
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(config)
        assert exc_info.value.config_key == "strategy.currency"

    def test_plain_http_rejected(self, config):
        config["ig_api"]["url_demo"] = "http://demo-api.ig.com/gateway/deal"
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(config)
        assert exc_info.value.config_key == "ig_api.url"

    def test_live_url_checked_in_live_environment(self, config):
        config["ig_api"]["environment"] = "live"
        config["ig_api"]["url_live"] = "http://api.ig.com/gateway/deal"
        with pytest.raises(ConfigurationError):
            validate_config(config)

    @pytest.mark.parametrize("key,value", [
        ("api_key", "provide a valid IG API key"),
        ("api_key", "short"),
        ("username", "ab"),
        ("username", "replace with your username"),
        ("password", "12345"),
    ])
    def test_placeholder_or_short_credentials(self, config, key, value):
        config["ig_api"][key] = value
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(config)
        assert exc_info.value.config_key == f"ig_api.{key}"


class TestParseBool:

    @pytest.mark.parametrize("value", [True, "true", "on", "YES", " On "])
    def test_truthy(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", [False, "false", "off", "no", "", "1"])
    def test_falsy(self, value):
        assert parse_bool(value) is False


class TestConfigLoader:

    @pytest.fixture(autouse=True)
    def local(self):
        with patch("shared.secret_manager.is_running_on_gcp", return_value=False):
            yield

    @pytest.fixture
    def config_file(self, tmp_path, config):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(config))
        return str(path)

    def test_loads_local_file(self, config_file):
        loader = ConfigLoader(config_file)
        assert not loader.is_cloud
        assert loader.load_config()["strategy"]["market"] == "US 500"

    def test_environment_overrides_credentials(self, config_file, monkeypatch):
        monkeypatch.setenv("IG_USERNAME", "env-user")
        monkeypatch.setenv("IG_PASSWORD", "env-password")
        monkeypatch.delenv("IG_API_KEY", raising=False)

        config = ConfigLoader(config_file).load_config()

        assert config["ig_api"]["username"] == "env-user"
        assert config["ig_api"]["password"] == "env-password"
        assert config["ig_api"]["api_key"] == "0123456789abcdef"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(str(tmp_path / "missing.json")).load_config()
        assert exc_info.value.config_key == "config_file"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(str(path)).load_config()
        assert exc_info.value.config_key == "config_file"

    def test_load_config_validates(self, tmp_path, config, monkeypatch):
        for var in ("IG_API_KEY", "IG_USERNAME", "IG_PASSWORD"):
            monkeypatch.delenv(var, raising=False)
        config["strategy"]["currency"] = "dollars"
        path = tmp_path / "config.json"
        path.write_text(json.dumps(config))

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))
        assert exc_info.value.config_key == "strategy.currency"


class TestCloudConfig:

    def test_secret_credentials_merged_over_file(self, tmp_path, config):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(config))
        secret = {"api_key": "cloud-key-0123456", "username": "cloud-user", "password": "cloud-pass"}

        with patch("shared.secret_manager.is_running_on_gcp", return_value=True), \
                patch("shared.secret_manager.get_ig_credentials", return_value=secret), \
                patch("shared.secret_manager.get_google_sheets_credentials", return_value=None):
            loaded = ConfigLoader(str(path)).load_config()

        assert loaded["ig_api"]["username"] == "cloud-user"
        assert loaded["ig_api"]["environment"] == "live"
        assert loaded["google_sheets"]["enabled"] is False

    def test_missing_secret_is_fatal(self, tmp_path, config):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(config))

        with patch("shared.secret_manager.is_running_on_gcp", return_value=True), \
                patch("shared.secret_manager.get_ig_credentials", return_value=None):
            with pytest.raises(ConfigurationError) as exc_info:
                ConfigLoader(str(path)).load_config()
        assert exc_info.value.config_key == "ig_api"

    def test_environment_override_is_validated(self, tmp_path, config, monkeypatch):
        for var in ("IG_API_KEY", "IG_USERNAME", "IG_PASSWORD"):
            monkeypatch.delenv(var, raising=False)
        config["ig_api"]["url_live"] = "http://api.ig.com/gateway/deal"
        path = tmp_path / "config.json"
        path.write_text(json.dumps(config))

        with patch("shared.secret_manager.is_running_on_gcp", return_value=False):
            assert load_config(str(path))["ig_api"]["environment"] == "demo"
            with pytest.raises(ConfigurationError) as exc_info:
                load_config(str(path), environment="live")
        assert exc_info.value.config_key == "ig_api.url"
