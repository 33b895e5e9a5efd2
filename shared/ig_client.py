"""
ig_client.py - IG REST Trading API Client Module

This module owns the authenticated connection to the broker:
- Session creation with identifier/password (v3 OAuth session)
- Background heartbeat that silently exchanges the refresh token
- Transparent re-authenticate-and-replay on auth-expiry error codes
- Exponential backoff for transient network failures (shared/retry.py)
- Trading operations: market navigation, market search, position
  open/close, deal confirmation, position and account listing

Auth-expiry replay is a one-shot side channel: it happens inside a single
backoff attempt and never consumes retry budget. Callers only see an
auth error when the replay has failed too.

Last Updated: 2026-10-18
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from shared.config_loader import get_api_url
from shared.errors import ApiError, ConfigurationError
from shared.retry import BackoffExecutor, RetryConfig

# Configure module logger
logger = logging.getLogger(__name__)

# Error codes meaning the access token is stale or absent
AUTH_ERROR_CODES = frozenset({
    "error.security.oauth-token-invalid",
    "error.security.client-token-invalid",
    "error.security.client-token-missing",
})

REQUEST_TIMEOUT_SECONDS = 30

# Heartbeat fires at this fraction of the advertised token lifetime
HEARTBEAT_LIFETIME_FRACTION = 0.5


class SessionState(Enum):
    """Authentication state of the client."""
    UNAUTHENTICATED = "Unauthenticated"
    AUTHENTICATED = "Authenticated"


class Direction(Enum):
    """Deal direction."""
    BUY = "BUY"
    SELL = "SELL"


@dataclass
class OAuthToken:
    """Access/refresh token pair returned by the session endpoints."""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 60  # seconds
    scope: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OAuthToken":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            token_type=data.get("token_type", "Bearer"),
            expires_in=int(data.get("expires_in", 60)),
            scope=data.get("scope", ""),
        )


@dataclass
class TradingSession:
    """Result of a successful session creation."""
    client_id: str
    account_id: str
    timezone_offset: int
    oauth_token: OAuthToken


class IGClient:
    """
    IG REST Trading API client.

    Attributes:
        base_url: Gateway URL, e.g. https://demo-api.ig.com/gateway/deal
        state: SessionState of the client
        account_id: Account identifier returned at session creation

    Example:
        >>> client = IGClient.from_config(config)
        >>> client.create_session("user", "secret")
        >>> markets = client.search_markets("US 500")
    """

    URL_DEMO = "https://demo-api.ig.com/gateway/deal"
    URL_LIVE = "https://api.ig.com/gateway/deal"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
        executor: Optional[BackoffExecutor] = None
    ):
        """
        Initialize the IG API client.

        Args:
            base_url: Gateway base URL (no trailing slash needed)
            api_key: IG application key sent as X-IG-API-KEY
            retry_config: Backoff settings for every domain operation
            session: Optional requests.Session (injectable for tests)
            executor: Optional pre-built BackoffExecutor (overrides retry_config)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = session or requests.Session()
        self.executor = executor or BackoffExecutor(retry_config)

        # Authentication state, guarded by _auth_lock
        self._auth_lock = threading.RLock()
        self.state = SessionState.UNAUTHENTICATED
        self._token: Optional[OAuthToken] = None
        self.account_id: Optional[str] = None
        self.client_id: Optional[str] = None

        # Retained for heartbeat fallback and auth replay
        self._identifier: Optional[str] = None
        self._secret: Optional[str] = None

        # Heartbeat timer
        self._heartbeat_timer: Optional[threading.Timer] = None
        self._heartbeat_count = 0

        logger.info(f"IGClient initialized for {self.base_url}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "IGClient":
        """Build a client from the "ig_api" and "retry" config sections."""
        ig_config = config.get("ig_api")
        if not ig_config:
            raise ConfigurationError("Missing required configuration: ig_api", "ig_api")

        base_url = get_api_url(config)

        return cls(
            base_url=base_url,
            api_key=ig_config.get("api_key", ""),
            retry_config=RetryConfig.from_config(config),
        )

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    # =========================================================================
    # AUTHENTICATION METHODS
    # =========================================================================

    def create_session(self, identifier: str, secret: str) -> TradingSession:
        """
        Authenticate with the broker and start the token heartbeat.

        Credentials are retained in memory for the life of the session so
        the heartbeat and auth replay can re-authenticate.

        Returns:
            TradingSession with client/account ids and the token pair.

        Raises:
            ApiError: if authentication fails after retries.
        """
        logger.info("Creating IG session...")
        with self._auth_lock:
            self._identifier = identifier
            self._secret = secret
        return self.executor.execute(self._authenticate, "create_session")

    def _authenticate(self) -> TradingSession:
        """Single authentication attempt with the retained credentials."""
        with self._auth_lock:
            if self._identifier is None or self._secret is None:
                raise ApiError("No credentials available for authentication")

            payload = {
                "identifier": self._identifier,
                "password": self._secret,
                "encryptedPassword": False,
            }
            data = self._send("POST", "/session", version=3, body=payload, authenticated=False)

            session = TradingSession(
                client_id=str(data.get("clientId", "")),
                account_id=str(data.get("accountId", "")),
                timezone_offset=int(data.get("timezoneOffset", 0)),
                oauth_token=OAuthToken.from_dict(data["oauthToken"]),
            )
            self._token = session.oauth_token
            self.account_id = session.account_id
            self.client_id = session.client_id
            self.state = SessionState.AUTHENTICATED

            logger.info(
                f"Session created for account {self.account_id} "
                f"(token expires in {self._token.expires_in}s)"
            )
            self._schedule_heartbeat()
            return session

    def _schedule_heartbeat(self):
        """(Re)arm the refresh timer at half the token lifetime."""
        with self._auth_lock:
            self._cancel_heartbeat()
            if self._token is None:
                return
            interval = max(self._token.expires_in * HEARTBEAT_LIFETIME_FRACTION, 1.0)
            timer = threading.Timer(interval, self._heartbeat)
            timer.daemon = True
            self._heartbeat_timer = timer
            timer.start()
            logger.debug(f"Heartbeat scheduled in {interval:.0f}s")

    def _cancel_heartbeat(self):
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _heartbeat(self):
        """
        Exchange the refresh token for a new access token.

        Falls back to a full re-authentication with the retained
        credentials when the refresh fails.
        """
        with self._auth_lock:
            if self.state != SessionState.AUTHENTICATED or self._token is None:
                return
            self._heartbeat_count += 1
            try:
                data = self._send(
                    "POST",
                    "/session/refresh-token",
                    version=1,
                    body={"refresh_token": self._token.refresh_token},
                    authenticated=False,
                )
                self._token = OAuthToken.from_dict(data)
                logger.debug(f"Heartbeat #{self._heartbeat_count}: access token refreshed")
                self._schedule_heartbeat()
                return
            except Exception as e:
                logger.warning(f"Heartbeat #{self._heartbeat_count}: token refresh failed ({e}), re-authenticating")

            try:
                self._authenticate()
            except Exception as e:
                logger.error(f"Heartbeat re-authentication failed: {e}")
                self._token = None
                self.state = SessionState.UNAUTHENTICATED

    def logout(self):
        """
        End the session: cancel the heartbeat, delete the broker session
        (best effort) and forget tokens and credentials.
        """
        with self._auth_lock:
            self._cancel_heartbeat()
            if self.state == SessionState.AUTHENTICATED:
                try:
                    self._send("DELETE", "/session", version=1)
                    logger.info("Logged out of IG session")
                except Exception as e:
                    logger.warning(f"Logout request failed: {e}")
            self._token = None
            self._identifier = None
            self._secret = None
            self.state = SessionState.UNAUTHENTICATED

    # =========================================================================
    # REQUEST PLUMBING
    # =========================================================================

    def _headers(self, version: int, authenticated: bool) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json; charset=UTF-8",
            "Accept": "application/json; charset=UTF-8",
            "X-IG-API-KEY": self.api_key,
            "Version": str(version),
        }
        if authenticated:
            with self._auth_lock:
                if self._token is not None:
                    headers["Authorization"] = f"{self._token.token_type} {self._token.access_token}"
                if self.account_id:
                    headers["IG-ACCOUNT-ID"] = self.account_id
        return headers

    def _send(
        self,
        method: str,
        path: str,
        version: int = 1,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        extra_headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Perform one HTTP request and decode the JSON body.

        Raises:
            ApiError: on any non-2xx response, with status and broker error
                      code; 5xx and 429 are flagged transient.
            requests.exceptions.RequestException: on network failures
                      (left as-is so the retry predicate can see them).
        """
        headers = self._headers(version, authenticated)
        if extra_headers:
            headers.update(extra_headers)

        response = self.http.request(
            method=method,
            url=f"{self.base_url}{path}",
            headers=headers,
            params=params,
            json=body,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

        if 200 <= response.status_code < 300:
            if not response.text:
                return {}
            return response.json()

        error_code = None
        try:
            error_code = response.json().get("errorCode")
        except ValueError:
            pass

        transient = response.status_code >= 500 or response.status_code == 429
        raise ApiError(
            f"{method} {path} returned {response.status_code}"
            + (f" ({error_code})" if error_code else ""),
            status_code=response.status_code,
            error_code=error_code,
            transient=transient,
        )

    def _send_with_auth_replay(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Send a request; on an auth-expiry error code re-authenticate once
        and replay the exact same request.
        """
        try:
            return self._send(method, path, **kwargs)
        except ApiError as e:
            if e.error_code not in AUTH_ERROR_CODES:
                raise
            logger.warning(f"{method} {path}: {e.error_code} - re-authenticating and replaying")
            self._authenticate()
            return self._send(method, path, **kwargs)

    def _call(self, name: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Domain operation: auth replay inside each backoff attempt."""
        return self.executor.execute(
            lambda: self._send_with_auth_replay(method, path, **kwargs),
            name,
        )

    # =========================================================================
    # REST API METHODS - MARKET DATA
    # =========================================================================

    def get_market_navigation(self, node_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Browse the market navigation tree.

        Args:
            node_id: Child node id, or None for the top-level nodes

        Returns:
            dict with optional "nodes" ([{id, name}]) and "markets" lists.
        """
        logger.debug(f"get_market_navigation {node_id}")
        path = f"/marketnavigation/{node_id}" if node_id else "/marketnavigation"
        return self._call("get_market_navigation", "GET", path, version=1)

    def search_markets(self, search_term: str) -> List[Dict[str, Any]]:
        """Search instruments; each result carries bid/offer."""
        logger.debug(f"search_markets {search_term}")
        data = self._call(
            "search_markets", "GET", "/markets", version=1,
            params={"searchTerm": search_term},
        )
        return data.get("markets", []) or []

    # =========================================================================
    # REST API METHODS - TRADING
    # =========================================================================

    def create_position(
        self,
        epic: str,
        currency_code: str,
        size: float,
        level: float,
        expiry: str = "-"
    ) -> str:
        """
        Open a position with a fill-or-kill style limit order.

        Args:
            epic: Instrument identifier
            currency_code: 3-letter currency
            size: Deal size
            level: Limit price
            expiry: Instrument expiry ("-" for none)

        Returns:
            str: Deal reference to confirm with trade_confirm().
        """
        order = {
            "epic": epic,
            "expiry": expiry or "-",
            "direction": Direction.BUY.value,
            "size": size,
            "level": level,
            "orderType": "LIMIT",
            "timeInForce": "EXECUTE_AND_ELIMINATE",
            "currencyCode": currency_code,
            "forceOpen": True,
            "guaranteedStop": False,
        }
        logger.info(f"Placing order: BUY {size} x {epic} @ {level} {currency_code}")
        data = self._call("create_position", "POST", "/positions/otc", version=2, body=order)
        return data["dealReference"]

    def close_position(self, deal_id: str, size: float, level: float) -> str:
        """
        Close (part of) an open position with a limit order.

        IG closes positions with a POST carrying a "_method: DELETE" header.

        Returns:
            str: Deal reference of the closing deal.
        """
        order = {
            "dealId": deal_id,
            "direction": Direction.SELL.value,
            "size": size,
            "level": level,
            "orderType": "LIMIT",
            "timeInForce": "EXECUTE_AND_ELIMINATE",
        }
        logger.info(f"Closing position: SELL {size} of {deal_id} @ {level}")
        data = self._call(
            "close_position", "POST", "/positions/otc", version=1, body=order,
            extra_headers={"_method": "DELETE"},
        )
        return data["dealReference"]

    def trade_confirm(self, deal_reference: str) -> Dict[str, Any]:
        """
        Fetch the confirmation of a deal.

        Returns:
            dict with dealStatus, direction, size, level, epic, dealId, reason.
        """
        logger.debug(f"trade_confirm {deal_reference}")
        return self._call("trade_confirm", "GET", f"/confirms/{deal_reference}", version=1)

    def get_positions(self) -> List[Dict[str, Any]]:
        """List open positions as {"position": {...}, "market": {...}} pairs."""
        data = self._call("get_positions", "GET", "/positions", version=2)
        return data.get("positions", []) or []

    def get_accounts(self) -> List[Dict[str, Any]]:
        """List the accounts of the logged-in client, with balances."""
        data = self._call("get_accounts", "GET", "/accounts", version=1)
        return data.get("accounts", []) or []
