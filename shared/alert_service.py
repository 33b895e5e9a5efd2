#!/usr/bin/env python3
"""
Alert Service Module

Publishes trading alerts to Google Cloud Pub/Sub.

Architecture:
    Bot -> AlertService -> Pub/Sub Topic -> subscriber (SMS/email/chat)

Alerts are sent AFTER actions complete, with actual results (fill sizes,
deal statuses), so the message describes what happened rather than what
was attempted.

Locally there is no Pub/Sub: alerts are written to the log only. Set
ALERT_DRY_RUN=true to print the exact payload that would be published.

Usage:
    from shared.alert_service import AlertService, AlertType

    alert_service = AlertService(config, "STRANGLE")
    alert_service.leg_exit("Put", "Stop loss", 0.25, 1.2)
"""

import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from shared.secret_manager import is_running_on_gcp, get_project_id

logger = logging.getLogger(__name__)


class AlertPriority(Enum):
    """Alert priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertType(Enum):
    """Alert types published by the strangle bot."""
    POSITION_OPENED = "position_opened"
    LEG_EXIT = "leg_exit"
    DEAL_REJECTED = "deal_rejected"
    CYCLE_COMPLETE = "cycle_complete"
    API_ERROR = "api_error"
    BOT_STARTED = "bot_started"
    BOT_STOPPED = "bot_stopped"


DEFAULT_PRIORITIES = {
    AlertType.DEAL_REJECTED: AlertPriority.HIGH,
    AlertType.API_ERROR: AlertPriority.HIGH,
    AlertType.POSITION_OPENED: AlertPriority.MEDIUM,
    AlertType.LEG_EXIT: AlertPriority.MEDIUM,
    AlertType.CYCLE_COMPLETE: AlertPriority.MEDIUM,
    AlertType.BOT_STARTED: AlertPriority.LOW,
    AlertType.BOT_STOPPED: AlertPriority.LOW,
}


class AlertService:
    """
    Publishes strangle bot alerts as JSON messages on a Pub/Sub topic.

    Off GCP nothing is published and send_alert() only logs; with
    ALERT_DRY_RUN=true the payload is formatted and logged as if sent.

    Attributes:
        bot_name: Included in every payload to tell bots apart
        enabled: alerts.enabled from config (default True)
    """

    PUBSUB_TOPIC = "strangle-alerts"
    PUBLISH_TIMEOUT_SECONDS = 5

    def __init__(self, config: Dict[str, Any], bot_name: str):
        self.config = config
        self.bot_name = bot_name
        self._publisher = None
        self._topic_path = None

        settings = config.get("alerts", {})
        self._enabled = settings.get("enabled", True)
        self._topic = settings.get("topic", self.PUBSUB_TOPIC)
        self._dry_run = os.environ.get("ALERT_DRY_RUN", "").lower() == "true"

        if not self._enabled:
            logger.info("Alerts disabled (alerts.enabled=false)")
        elif self._dry_run:
            logger.info("Alerts in dry run: payloads are logged, not published")
        elif is_running_on_gcp():
            self._connect()
        else:
            logger.info("Local run: alerts go to the log only")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _connect(self) -> None:
        try:
            from google.cloud import pubsub_v1
        except ImportError:
            logger.warning("google-cloud-pubsub is required to publish alerts (pip install google-cloud-pubsub)")
            return

        project_id = get_project_id()
        if not project_id:
            logger.error(f"No GCP project id, alerts will not reach {self._topic}")
            return

        try:
            publisher = pubsub_v1.PublisherClient()
            self._topic_path = publisher.topic_path(project_id, self._topic)
        except Exception as e:
            logger.error(f"Pub/Sub publisher could not be created: {e}")
            return
        self._publisher = publisher
        logger.info(f"Publishing alerts to {self._topic_path}")

    def send_alert(
        self,
        alert_type: AlertType,
        title: str,
        message: str,
        priority: Optional[AlertPriority] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Log an alert and publish it when a publisher is available.

        Args:
            alert_type: What happened
            title: One-line summary
            message: Body text
            priority: Overrides DEFAULT_PRIORITIES for this alert type
            details: Extra structured fields for the subscriber

        Returns:
            bool: True if published, or formatted in dry run mode
        """
        if not self._enabled:
            logger.debug(f"Alert dropped, alerts disabled: {alert_type.value} {title}")
            return False

        priority = priority or DEFAULT_PRIORITIES.get(alert_type, AlertPriority.MEDIUM)
        payload = {
            "bot_name": self.bot_name,
            "alert_type": alert_type.value,
            "priority": priority.value,
            "title": title,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
        }
        body = json.dumps(payload)

        urgent = priority in (AlertPriority.CRITICAL, AlertPriority.HIGH)
        (logger.warning if urgent else logger.info)(
            f"ALERT [{self.bot_name}] [{priority.value.upper()}] {alert_type.value}: {title}"
        )

        if self._dry_run:
            logger.info(f"Dry run payload: {json.dumps(payload, indent=2)}")
            return True
        if self._publisher is None:
            logger.info(f"Alert not published: {body}")
            return False

        try:
            future = self._publisher.publish(self._topic_path, body.encode("utf-8"))
            message_id = future.result(timeout=self.PUBLISH_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error(f"Publishing {alert_type.value} alert failed: {e}")
            logger.warning(f"Unpublished alert: {body}")
            return False
        logger.debug(f"Alert {alert_type.value} published as message {message_id}")
        return True

    # =========================================================================
    # CONVENIENCE METHODS
    # =========================================================================

    def position_opened(self, summary: str, size: float, details: Optional[Dict[str, Any]] = None) -> bool:
        """Both legs of the strangle are open."""
        extra = dict(details or {})
        extra["size"] = size
        return self.send_alert(
            alert_type=AlertType.POSITION_OPENED,
            title="Strangle Opened",
            message=f"{summary}\nSize: {size}",
            details=extra
        )

    def leg_exit(
        self,
        leg: str,
        rule: str,
        size: float,
        bid: float,
        details: Optional[Dict[str, Any]] = None
    ) -> bool:
        """An exit rule sold part (or all) of a leg."""
        extra = dict(details or {})
        extra.update({"leg": leg, "rule": rule, "size": size, "bid": bid})
        return self.send_alert(
            alert_type=AlertType.LEG_EXIT,
            title=f"{leg} Exit ({rule})",
            message=f"Sold {size} of the {leg} leg at bid {bid} ({rule}).",
            details=extra
        )

    def deal_rejected(self, leg: str, reason: str, details: Optional[Dict[str, Any]] = None) -> bool:
        extra = dict(details or {})
        extra.update({"leg": leg, "reason": reason})
        return self.send_alert(
            alert_type=AlertType.DEAL_REJECTED,
            title=f"{leg} Deal Rejected",
            message=f"The {leg} order was not accepted: {reason}",
            details=extra
        )

    def cycle_complete(self, details: Optional[Dict[str, Any]] = None) -> bool:
        return self.send_alert(
            alert_type=AlertType.CYCLE_COMPLETE,
            title="Trading Complete",
            message="All strangle legs are closed. Back to Idle.",
            details=details
        )

    def api_error(self, operation: str, error: str, details: Optional[Dict[str, Any]] = None) -> bool:
        extra = dict(details or {})
        extra.update({"operation": operation, "error": error})
        return self.send_alert(
            alert_type=AlertType.API_ERROR,
            title=f"API Error: {operation}",
            message=error,
            details=extra
        )

    def bot_started(self, environment: str, details: Optional[Dict[str, Any]] = None) -> bool:
        extra = dict(details or {})
        extra["environment"] = environment
        return self.send_alert(
            alert_type=AlertType.BOT_STARTED,
            title=f"Bot Started ({environment})",
            message=f"{self.bot_name} is now running in {environment} mode.",
            details=extra
        )

    def bot_stopped(self, reason: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """Send bot stopped notification (LOW, or HIGH if unexpected)."""
        extra = dict(details or {})
        extra["reason"] = reason
        is_unexpected = any(word in reason.lower() for word in ["error", "crash", "exception", "fail"])
        priority = AlertPriority.HIGH if is_unexpected else AlertPriority.LOW
        return self.send_alert(
            alert_type=AlertType.BOT_STOPPED,
            title="Bot Stopped",
            message=f"{self.bot_name} has stopped.\nReason: {reason}",
            priority=priority,
            details=extra
        )
