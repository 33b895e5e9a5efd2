#!/usr/bin/env python3
"""
Config Loader Module

Smart configuration loader that abstracts cloud vs local environment:
- On GCP: IG CREDENTIALS come from Secret Manager, everything else from
  the bot's config.json
- Locally: everything comes from config.json, with IG_API_KEY,
  IG_USERNAME and IG_PASSWORD environment variables taking precedence

validate_config() checks the merged result before any broker connection
is attempted and raises ConfigurationError naming the offending key.
"""

import os
import re
import json
import logging
from typing import Dict, Any, Optional

from shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Dotted keys that must be present after loading
REQUIRED_KEYS = [
    "ig_api.api_key",
    "ig_api.username",
    "ig_api.password",
    "strategy.market",
    "strategy.underlying",
    "strategy.currency",
    "strategy.delta",
    "strategy.budget",
    "strategy.delay",
    "strategy.sampling",
    "strategy.stop_level",
    "strategy.trailing_stop_level",
]

# (key, lower, upper, inclusive bounds)
NUMERIC_RANGES = [
    ("strategy.budget", 0.01, 10000, True),
    ("strategy.delta", 1, 1000, True),
    ("strategy.delay", -1440, 1440, True),
    ("strategy.sampling", 1, 3600, True),
    ("strategy.stop_level", 0, 1, False),
    ("strategy.trailing_stop_level", 0, 1, False),
]

PLACEHOLDERS = {
    "ig_api.api_key": "provide a valid IG API key",
    "ig_api.username": "replace with your username",
    "ig_api.password": "replace with your password",
}

MIN_LENGTHS = {
    "ig_api.api_key": 10,
    "ig_api.username": 3,
    "ig_api.password": 6,
}

ENV_OVERRIDES = {
    "IG_API_KEY": "api_key",
    "IG_USERNAME": "username",
    "IG_PASSWORD": "password",
}

_MISSING = object()


def _lookup(config: Dict[str, Any], dotted_key: str) -> Any:
    node: Any = config
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def parse_bool(value: Any) -> bool:
    """true/on/yes (any case) are True; booleans pass through."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "on", "yes")


def get_api_url(config: Dict[str, Any]) -> str:
    """Gateway URL for the configured environment (demo or live)."""
    from shared.ig_client import IGClient

    ig_config = config.get("ig_api", {})
    if ig_config.get("environment", "demo") == "live":
        return ig_config.get("url_live", IGClient.URL_LIVE)
    return ig_config.get("url_demo", IGClient.URL_DEMO)


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate a loaded configuration.

    Raises:
        ConfigurationError: with config_key set to the first offending key
    """
    for key in REQUIRED_KEYS:
        if _lookup(config, key) is _MISSING:
            raise ConfigurationError(f"Missing required configuration: {key}", key)

    for key, low, high, inclusive in NUMERIC_RANGES:
        value = _lookup(config, key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
            raise ConfigurationError(f"Configuration {key} must be a valid number", key)
        if inclusive:
            in_range = low <= value <= high
        else:
            in_range = low < value < high
        if not in_range:
            bounds = f"[{low}, {high}]" if inclusive else f"({low}, {high})"
            raise ConfigurationError(f"Configuration {key} must be within {bounds}", key)

    currency = _lookup(config, "strategy.currency")
    if not isinstance(currency, str) or not re.match(r"^[A-Z]{3}$", currency):
        raise ConfigurationError(
            "Currency must be a 3-letter code (e.g., USD, EUR)", "strategy.currency"
        )

    url = get_api_url(config)
    if not isinstance(url, str) or not url.startswith("https://"):
        raise ConfigurationError("API URL must use HTTPS", "ig_api.url")

    for key, min_length in MIN_LENGTHS.items():
        value = _lookup(config, key)
        if not isinstance(value, str) or value == PLACEHOLDERS[key] or len(value) < min_length:
            raise ConfigurationError(f"Invalid or placeholder {key.split('.')[-1]}", key)


class ConfigLoader:
    """
    Configuration loader with cloud/local detection.

    Usage:
        loader = ConfigLoader("bots/strangle/config/config.json")
        config = loader.load_config()

    On GCP:
        - IG credentials loaded from Secret Manager (strangle-ig-credentials)
        - Strategy, logging, alerts and sheets settings from config.json
        - Google Sheets service account from Secret Manager when present

    Locally:
        - Everything loaded from config.json
        - IG_API_KEY / IG_USERNAME / IG_PASSWORD override the file
    """

    def __init__(self, local_config_path: str = "bots/strangle/config/config.json"):
        self.local_config_path = local_config_path
        self._is_cloud: Optional[bool] = None
        self._config: Optional[Dict[str, Any]] = None

    @property
    def is_cloud(self) -> bool:
        """Check if running on GCP."""
        if self._is_cloud is None:
            from shared.secret_manager import is_running_on_gcp
            self._is_cloud = is_running_on_gcp()
        return self._is_cloud

    def load_config(self) -> Dict[str, Any]:
        """
        Load configuration from the appropriate source.

        Returns:
            dict: Full configuration dictionary

        Raises:
            ConfigurationError: if the file is missing, unreadable, or cloud
                                credentials cannot be fetched
        """
        if self._config is not None:
            return self._config

        if self.is_cloud:
            logger.info("=" * 60)
            logger.info("CLOUD ENVIRONMENT DETECTED")
            logger.info("Loading credentials from GCP Secret Manager")
            logger.info("=" * 60)
            self._config = self._load_cloud_config()
        else:
            logger.info("Local environment detected - Loading from config file")
            self._config = self._load_local_config()

        return self._config

    def _read_file(self) -> Dict[str, Any]:
        if not os.path.exists(self.local_config_path):
            raise ConfigurationError(
                f"Config file not found: {self.local_config_path}. "
                f"Copy config.example.json to config.json and customize.",
                "config_file",
            )
        try:
            with open(self.local_config_path, "r") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Config file {self.local_config_path} is not valid JSON: {e}", "config_file"
            )
        logger.info(f"Loaded config from: {self.local_config_path}")
        return config

    def _load_cloud_config(self) -> Dict[str, Any]:
        """
        Merge Secret Manager credentials over the bot's config.json.

        Always uses the LIVE environment unless the secret says otherwise.
        """
        from shared.secret_manager import get_ig_credentials, get_google_sheets_credentials

        config = self._read_file()

        ig_creds = get_ig_credentials()
        if not ig_creds:
            raise ConfigurationError(
                "Failed to load IG credentials from Secret Manager. "
                "Ensure 'strangle-ig-credentials' secret exists.",
                "ig_api",
            )

        ig_config = dict(config.get("ig_api", {}))
        ig_config["environment"] = ig_creds.get("environment", "live")
        for field in ("api_key", "username", "password"):
            if field in ig_creds:
                ig_config[field] = ig_creds[field]
        config["ig_api"] = ig_config

        sheets_creds = get_google_sheets_credentials()
        if sheets_creds:
            config["_google_sheets_credentials"] = sheets_creds
        else:
            logger.warning("Google Sheets credentials not found - Sheets logging disabled")
            config.setdefault("google_sheets", {})["enabled"] = False

        logger.info(f"  Environment: {ig_config['environment'].upper()}")
        logger.info(f"  Strategy: {config.get('strategy', {}).get('name', 'Unknown')}")
        return config

    def _load_local_config(self) -> Dict[str, Any]:
        """Load config.json and apply IG_* environment overrides."""
        config = self._read_file()

        ig_config = config.setdefault("ig_api", {})
        for env_var, field in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                ig_config[field] = value
                logger.info(f"ig_api.{field} taken from {env_var}")

        return config


def load_config(
    config_path: str = "bots/strangle/config/config.json",
    environment: Optional[str] = None
) -> Dict[str, Any]:
    """
    Load and validate configuration in one call.

    Args:
        config_path: Local config file
        environment: Overrides ig_api.environment ("demo" or "live");
                     applied before validation
    """
    config = ConfigLoader(config_path).load_config()
    if environment:
        config.setdefault("ig_api", {})["environment"] = environment
    validate_config(config)
    return config
