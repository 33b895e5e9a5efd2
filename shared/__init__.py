"""
Shared infrastructure modules for the strangle trading bot.

This package contains the broker-agnostic plumbing used by the strategy:
- ig_client: IG REST API session client (auth, heartbeat, dealing)
- retry: Exponential backoff executor for broker calls
- errors: TradingError hierarchy (validation, configuration, API)
- logger_service: Local file, JSON journal and Google Sheets logging
- config_loader: Smart config loading (cloud vs local) and validation
- secret_manager: GCP Secret Manager interface
- event_calendar: Event time parsing and countdown messages
- alert_service: Alerting via Google Cloud Pub/Sub

ALERT SYSTEM
================================================================================
Architecture: Bot -> AlertService -> Pub/Sub -> subscriber (SMS/email/chat)

Alerts are sent AFTER actions complete with ACTUAL results. The bot
publishes to Pub/Sub and continues immediately; delivery happens
asynchronously outside the bot.

Usage:
    from shared import AlertService, AlertType, AlertPriority

    alert_service = AlertService(config, "STRANGLE")
    alert_service.position_opened("Put US 500 5800 PUT / Call US 500 5850 CALL", 0.5)
    alert_service.leg_exit("Put", "Stop loss", 0.25, 4.9)
================================================================================

================================================================================
IG API NOTES
================================================================================
1. AUTHENTICATION
   POST /session (Version 3) returns an OAuth token pair. The access token
   is refreshed by a heartbeat timer at half its lifetime through
   POST /session/refresh-token. Requests failing with an authentication
   error code are replayed once after a fresh login.

2. CLOSING POSITIONS
   IG closes OTC positions with POST /positions/otc carrying the
   "_method: DELETE" header (DELETE requests cannot carry a body).

3. DEAL CONFIRMATION
   Creating or closing a position only returns a dealReference. The
   outcome (ACCEPTED / REJECTED, dealId, level) comes from
   GET /confirms/{dealReference}.
================================================================================
"""

from shared.errors import TradingError, ValidationError, ConfigurationError, ApiError
from shared.retry import BackoffExecutor, RetryConfig, with_backoff
from shared.ig_client import IGClient, TradingSession, OAuthToken, SessionState
from shared.logger_service import TradeLoggerService, setup_logging, TradeRecord
from shared.config_loader import ConfigLoader, load_config, validate_config
from shared.secret_manager import is_running_on_gcp
from shared.alert_service import AlertService, AlertType, AlertPriority
from shared.event_calendar import parse_event, format_event, countdown_message

__all__ = [
    # Errors
    'TradingError', 'ValidationError', 'ConfigurationError', 'ApiError',
    # Retry
    'BackoffExecutor', 'RetryConfig', 'with_backoff',
    # IG Client
    'IGClient', 'TradingSession', 'OAuthToken', 'SessionState',
    # Logging
    'TradeLoggerService', 'setup_logging', 'TradeRecord',
    # Config
    'ConfigLoader', 'load_config', 'validate_config',
    # Cloud
    'is_running_on_gcp',
    # Alerts
    'AlertService', 'AlertType', 'AlertPriority',
    # Event Calendar
    'parse_event', 'format_event', 'countdown_message',
]
