"""
strategy.py - Event Strangle Trade Lifecycle

Buys a two-leg index-option strangle shortly before or after a scheduled
macroeconomic event, then manages each leg with layered exits:
- Entry: put and call at +/- delta from the underlying, sized from a
  premium budget, limit at twice the offer
- Exits: stop loss, trailing stop after tier 2, tier 2 / tier 3 profit
  taking that also unwinds the opposite leg (see exit_rules.py)

State machine (TradeCycle.state):
    IDLE -> DEALING -> POSITION -> IDLE

A scheduler thread calls tick() every `sampling` seconds. A tick never
overlaps another one: if the previous tick still holds the guard the new
one returns immediately without touching the broker.
"""

import json
import logging
import os
import re
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from bots.strangle.exit_rules import ExitRule, close_price, evaluate_leg, sell_size
from bots.strangle.models import (
    LEG_KINDS,
    Contract,
    DealConfirmation,
    LegKind,
    LegSlot,
    LegState,
    OpenPosition,
    RiskParameters,
    TradeCycle,
    TradeState,
)
from bots.strangle.selector import compute_size, mid_price, select_entry_contracts
from shared.alert_service import AlertService
from shared.config_loader import parse_bool
from shared.errors import ApiError, TradingError, ValidationError
from shared.event_calendar import (
    countdown_message,
    format_event,
    minutes_until,
    parse_event,
    utc_now,
)
from shared.ig_client import IGClient
from shared.logger_service import TradeLoggerService

# Configure module logger
logger = logging.getLogger(__name__)

# =============================================================================
# PATH CONSTANTS
# =============================================================================

DATA_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "data"
)
STATE_FILE = os.path.join(DATA_DIR, "strangle_state.json")

# =============================================================================
# MARKET NAVIGATION
# =============================================================================

DEFAULT_DAILY_OPTIONS_NODE = "Options jour"
DEFAULT_TODAY_NODE = "Jour"

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


def _param_property(field_name: str, doc: str):
    """Read/validated-write accessor for one RiskParameters field."""

    def getter(self):
        return getattr(self.params, field_name)

    def setter(self, value):
        self.params = self.params.with_changes(**{field_name: value})
        logger.info(f"{field_name} set to {value}")

    return property(getter, setter, doc=doc)


class StrangleTrader:
    """
    Event strangle orchestrator.

    Args:
        client: Authenticated-session IG client
        config: Full bot configuration
        params: Risk parameters (default: from the "strategy" section)
        cycle: Initial trade cycle (default: from strategy.state, else Idle)
        alert_service: Optional Pub/Sub alerting
        trade_logger: Optional trade journal
        clock: Callable returning the current aware UTC datetime
        state_file: Where the cycle is persisted after each tick
    """

    def __init__(
        self,
        client: IGClient,
        config: Dict[str, Any],
        params: Optional[RiskParameters] = None,
        cycle: Optional[TradeCycle] = None,
        alert_service: Optional[AlertService] = None,
        trade_logger: Optional[TradeLoggerService] = None,
        clock: Optional[Callable[[], datetime]] = None,
        state_file: str = STATE_FILE
    ):
        self.client = client
        self.config = config
        self.alert_service = alert_service
        self.trade_logger = trade_logger
        self._clock = clock or utc_now
        self.state_file = state_file

        strategy = config.get("strategy", {}) or {}
        self.params = params or RiskParameters.from_config(config)

        self._name: str = strategy.get("name", "major")
        self._market: str = strategy.get("market", "")
        self._underlying: str = strategy.get("underlying", "")
        self._currency: str = ""
        self.currency = strategy.get("currency", "EUR")
        self._pause: bool = parse_bool(strategy.get("pause", False))
        self._daily_options_node = strategy.get("daily_options_node", DEFAULT_DAILY_OPTIONS_NODE)
        self._today_node = strategy.get("today_node", DEFAULT_TODAY_NODE)

        # For debugging/replay: event and state can be injected from config
        self._next_event: Optional[datetime] = None
        if strategy.get("event"):
            self._next_event = parse_event(str(strategy["event"]), self._clock())

        if cycle is not None:
            self.cycle = cycle
        elif strategy.get("state"):
            self.cycle = TradeCycle.from_dict(strategy["state"])
        else:
            self.cycle = TradeCycle()

        self.started = False
        self.last_error: Optional[str] = None
        self.last_tick: Optional[datetime] = None
        self.tick_count = 0

        self._tick_guard = threading.Lock()
        self._stop_event = threading.Event()
        self._scheduler: Optional[threading.Thread] = None
        self._last_countdown: Optional[int] = None

        logger.info(f"StrangleTrader initialized: {self._market} / {self._underlying} ({self._currency})")
        logger.info(
            f"  Budget: {self.params.budget} | Delta: {self.params.delta} | "
            f"Delay: {self.params.delay} min | Sampling: {self.params.sampling}s"
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """Open the broker session and launch the scheduler thread."""
        ig_config = self.config.get("ig_api", {})
        session = self.client.create_session(ig_config.get("username", ""), ig_config.get("password", ""))
        logger.info(f"Client ID is \"{session.client_id}\".")

        self.started = True
        self._stop_event.clear()
        self._scheduler = threading.Thread(
            target=self._run_scheduler, name="strangle-scheduler", daemon=True
        )
        self._scheduler.start()

    def _run_scheduler(self):
        # First tick after one sampling period
        while not self._stop_event.wait(self.params.sampling):
            self.tick()

    def stop(self):
        """Stop scheduling, wait for any in-flight tick, then log out."""
        logger.info("Stopping trader...")
        self.started = False
        self._stop_event.set()
        if self._scheduler is not None and self._scheduler is not threading.current_thread():
            self._scheduler.join(timeout=max(self.params.sampling, 30))
        self._scheduler = None
        with self._tick_guard:
            self._save_state_to_disk()
        self.client.logout()
        logger.info("Trader stopped")

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def tick(self) -> Optional[str]:
        """
        One pass of the state machine.

        Returns:
            str: Description of what happened, or None when skipped because
                 another tick is still running.
        """
        if not self._tick_guard.acquire(blocking=False):
            logger.debug("Previous tick still running - skipping")
            return None
        try:
            if self._pause:
                return "Paused"
            if not self.started:
                return "Not started"

            self.tick_count += 1
            self.last_tick = self._clock()
            logger.debug(f"Tick #{self.tick_count} ({self.cycle.state.value})")
            result = self._run_state_machine()
            self._save_state_to_disk()
            return result

        except Exception as e:
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error(f"Tick failed in {self.cycle.state.value} state: {e}", exc_info=True)
            if isinstance(e, ApiError) and self.alert_service:
                self.alert_service.api_error("tick", str(e), {"state": self.cycle.state.value})
            self._save_state_to_disk()
            return f"Error: {e}"

        finally:
            self._tick_guard.release()

    def _run_state_machine(self) -> str:
        actions: List[str] = []

        if self._next_event is not None and self.cycle.state is TradeState.IDLE:
            actions.append(self._handle_idle_state())

        if self.cycle.state is not TradeState.IDLE and self.cycle.legs:
            self._update_positions()

        if self.cycle.state is TradeState.DEALING:
            actions.append(self._handle_dealing_state())

        if self.cycle.state.is_monitoring:
            actions.append(self._handle_position_state())

        return "; ".join(a for a in actions if a) or f"{self.cycle.state.value}: nothing to do"

    # =========================================================================
    # STATE HANDLERS
    # =========================================================================

    def _handle_idle_state(self) -> str:
        """
        Enter the strangle once the event time (plus delay) has passed.

        Raises:
            TradingError: when the chain, the price or one of the legs is
                          unavailable. The cycle stays Idle and the event
                          is consumed.
        """
        now = self._clock()
        entry_time = self._next_event + timedelta(minutes=self.params.delay)
        if now <= entry_time:
            remaining = minutes_until(entry_time, now)
            self._display_countdown(remaining)
            return f"Waiting for event ({remaining} min)"

        logger.info("Time for trading!")
        self._next_event = None
        self._last_countdown = None

        contracts = self.get_daily_options()
        price = self.get_underlying_price()
        if not contracts or price is None:
            raise TradingError("No daily options or can't guess underlying price!")
        logger.info(f"Underlying price is {price}, {len(contracts)} tradeable daily options")

        selection = select_entry_contracts(contracts, price, self.params.delta)
        missing = [kind.value for kind in LEG_KINDS if selection[kind] is None]
        if missing:
            raise TradingError(f"Can't find both legs for the strangle! Missing: {', '.join(missing)}")
        if any(not selection[kind].offer for kind in LEG_KINDS):
            raise TradingError("Selected contracts have no offer price")

        premium = sum(selection[kind].offer for kind in LEG_KINDS)
        size = compute_size(self.params.budget, premium, self.params.size_step, self.params.min_size)

        for kind in LEG_KINDS:
            contract = selection[kind]
            limit = contract.offer * 2
            logger.info(f"Buy {size} {contract.instrument_name} @ {contract.offer} {self._currency}")
            deal_reference = self.client.create_position(
                contract.epic, self._currency, size, limit, contract.expiry
            )
            self.cycle.legs[kind] = LegState(deal_reference=deal_reference, contract=contract)
            self.cycle.state = TradeState.DEALING
            self._log_trade(
                "OPEN_LEG", kind, contract, size, limit,
                deal_reference=deal_reference, underlying_price=price, trade_reason="Entry"
            )

        return f"Strangle submitted: {size} x put {selection[LegKind.PUT].strike} / call {selection[LegKind.CALL].strike}"

    def _display_countdown(self, minutes: int):
        if self._last_countdown == minutes:
            return
        message = countdown_message(minutes)
        if message:
            logger.info(message)
        self._last_countdown = minutes

    def _handle_dealing_state(self) -> str:
        """
        Fetch missing confirmations and move to POSITION once the legs are
        live. Rejections are logged and alerted, never raised.
        """
        if not self.cycle.legs:
            logger.warning("Dealing without any submitted leg - back to Idle")
            self.cycle.reset()
            return "Entry abandoned"

        for kind in LEG_KINDS:
            leg = self.cycle.leg(kind)
            if leg is None or leg.confirmation is not None:
                continue
            confirmation = DealConfirmation.from_api(self.client.trade_confirm(leg.deal_reference))
            leg.confirmation = confirmation
            logger.info(
                f"{confirmation.direction} {confirmation.size} {confirmation.epic} {confirmation.deal_status}"
            )
            if not confirmation.is_accepted:
                logger.warning(f"{kind.value} deal {leg.deal_reference} not accepted: {confirmation.reason}")
                if self.alert_service:
                    self.alert_service.deal_rejected(
                        kind.value, confirmation.reason or confirmation.deal_status,
                        {"deal_reference": leg.deal_reference, "epic": confirmation.epic}
                    )

        legs = list(self.cycle.legs.values())
        if len(legs) == len(LEG_KINDS) and all(leg.is_open for leg in legs):
            self.cycle.state = TradeState.POSITION
            size = legs[0].open_size
            logger.info("Both legs open - monitoring exits")
            if self.alert_service:
                summary = " / ".join(
                    f"{kind.value} {self.cycle.legs[kind].contract.instrument_name}" for kind in LEG_KINDS
                )
                self.alert_service.position_opened(summary, size)
            return "Position opened"

        settled = [leg.slot in (LegSlot.OPEN, LegSlot.CLOSED) for leg in legs]
        if legs and all(settled):
            if any(leg.is_open for leg in legs):
                self.cycle.state = TradeState.POSITION
                logger.warning("Only one leg is open - monitoring it alone")
                return "Partial position opened"
            logger.warning("No leg was filled - back to Idle")
            self.cycle.reset()
            return "Entry rejected"

        return "Waiting for fills"

    def _handle_position_state(self) -> str:
        """Run the exit rules on each leg, then reset when everything is closed."""
        actions: List[str] = []
        touched = set()
        for kind in LEG_KINDS:
            if kind in touched or self.cycle.leg(kind) is None:
                continue
            try:
                action = self._process_leg(kind, touched)
                if action:
                    actions.append(action)
            except Exception as e:
                # One failing leg must not block the other
                self.last_error = f"{type(e).__name__}: {e}"
                logger.error(f"{kind.value} leg evaluation failed: {e}", exc_info=True)
                actions.append(f"{kind.value}: error")

        if self.cycle.total_open_size() == 0:
            logger.info("Trading complete")
            self.cycle.reset()
            if self.alert_service:
                self.alert_service.cycle_complete()
            actions.append("Trading complete")

        return "; ".join(actions) or "Monitoring"

    def _process_leg(self, kind: LegKind, touched: set) -> Optional[str]:
        leg = self.cycle.leg(kind)
        opposite_kind = kind.opposite()
        opposite = self.cycle.leg(opposite_kind)

        decision = evaluate_leg(leg, opposite, self.params)
        if decision is None:
            return None

        logger.info(
            f"Sell ({decision.rule.value}) {decision.size} {leg.contract.instrument_name} "
            f"@ {leg.contract.bid} {self._currency}"
        )
        self._close(kind, decision.size, decision.price, decision.rule.value)
        if decision.rule in (ExitRule.STOP_LOSS, ExitRule.TRAILING_STOP):
            leg.mark_stop_part_sold()
        elif decision.rule is ExitRule.TIER2:
            leg.mark_tier2_part_sold()
        else:
            leg.mark_tier3_part_sold()
        if self.alert_service:
            self.alert_service.leg_exit(kind.value, decision.rule.value, decision.size, leg.contract.bid)

        result = f"{kind.value}: {decision.rule.value} sold {decision.size}"
        if decision.touches_opposite:
            touched.add(opposite_kind)
            logger.info(
                f"Sell ({decision.rule.value} opposite) {decision.opposite_size} "
                f"{opposite.contract.instrument_name} @ {opposite.contract.bid} {self._currency}"
            )
            self._close(
                opposite_kind, decision.opposite_size, decision.opposite_price,
                f"{decision.rule.value} opposite"
            )
            opposite.mark_stop_part_sold()
            result += f", {opposite_kind.value} sold {decision.opposite_size}"
        return result

    # =========================================================================
    # BROKER HELPERS
    # =========================================================================

    def _find_node_id(self, navigation: Dict[str, Any], name: str) -> str:
        for node in navigation.get("nodes") or []:
            if node.get("name") == name:
                return node["id"]
        raise TradingError(f"Market navigation node not found: {name}")

    def get_daily_options(self) -> List[Contract]:
        """Today's tradeable options on the configured market."""
        top_id = self._find_node_id(self.client.get_market_navigation(), self._market)
        daily_id = self._find_node_id(self.client.get_market_navigation(top_id), self._daily_options_node)
        today_id = self._find_node_id(self.client.get_market_navigation(daily_id), self._today_node)
        markets = self.client.get_market_navigation(today_id).get("markets") or []
        contracts = [Contract.from_market(market) for market in markets]
        return [contract for contract in contracts if contract.is_tradeable]

    def get_underlying_price(self) -> Optional[float]:
        return mid_price(self.client.search_markets(self._underlying))

    def _update_positions(self):
        """Refresh every leg from the broker's position list (matched by deal reference)."""
        positions = self.client.get_positions()
        by_reference = {
            item["position"].get("dealReference"): item
            for item in positions
            if item.get("position")
        }
        for leg in self.cycle.legs.values():
            item = by_reference.get(leg.deal_reference)
            if item is None:
                leg.update_from_broker(None, None)
                continue
            contract = Contract.from_market(item["market"]) if item.get("market") else None
            leg.update_from_broker(OpenPosition.from_api(item["position"]), contract)

    def _close(self, kind: LegKind, size: float, price: float, reason: str) -> DealConfirmation:
        """
        Close `size` of a leg and confirm it.

        Raises:
            TradingError: if the leg has no live position or the broker
                          did not accept the close
        """
        leg = self.cycle.leg(kind)
        if leg is None or not leg.is_open:
            raise TradingError(f"No such leg or positions closed for \"{kind.value}\" leg")

        deal_reference = self.client.close_position(leg.position.deal_id, size, price)
        confirmation = DealConfirmation.from_api(self.client.trade_confirm(deal_reference))
        logger.info(
            f"{confirmation.direction} {confirmation.size} {confirmation.epic} {confirmation.deal_status}"
        )
        self._log_trade(
            "CLOSE_LEG", kind, leg.contract, size, price,
            deal_reference=deal_reference,
            deal_status=confirmation.deal_status,
            pnl=round(size * (leg.contract.bid - leg.position.level), 2) if leg.contract.bid else None,
            trade_reason=reason,
        )
        if not confirmation.is_accepted:
            raise TradingError(
                f"Close of {kind.value} leg not accepted: {confirmation.reason or confirmation.deal_status}"
            )
        return confirmation

    def _log_trade(self, action: str, kind: LegKind, contract: Contract, size: float, price: float, **details):
        if self.trade_logger is None:
            return
        self.trade_logger.log_trade(
            action, kind.value, contract.instrument_name, size, price, self._currency,
            epic=contract.epic, strike=contract.strike, **details
        )

    # =========================================================================
    # OPERATOR API
    # =========================================================================

    def close_leg(self, kind: LegKind, fraction: float, relative_to_current: bool = False) -> DealConfirmation:
        """
        Manually close part of a leg.

        Args:
            kind: PUT or CALL
            fraction: Portion to sell (1 = everything)
            relative_to_current: True for a fraction of the current size,
                                 False for a fraction of the confirmed entry size

        Raises:
            TradingError: when the leg has no live position
        """
        with self._tick_guard:
            leg = self.cycle.leg(kind)
            if leg is None or not leg.is_open:
                raise TradingError(f"No such leg or positions closed for \"{kind.value}\" leg")
            if not leg.contract.bid:
                raise TradingError(f"No bid for the {kind.value} leg")

            if relative_to_current:
                size = sell_size(leg.open_size, fraction)
            else:
                entry_size = leg.confirmation.size if leg.confirmation else leg.open_size
                size = min(max(round(entry_size * fraction, 2), 0.01), leg.open_size)

            logger.info(f"Manual close: {size} {leg.contract.instrument_name} @ {leg.contract.bid} {self._currency}")
            return self._close(kind, size, close_price(leg.contract.bid), "Manual close")

    def get_positions(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """Refresh positions and return one entry per leg (None when closed)."""
        with self._tick_guard:
            self._update_positions()
            result: Dict[str, Optional[Dict[str, Any]]] = {}
            for kind in LEG_KINDS:
                leg = self.cycle.leg(kind)
                if leg is None or leg.position is None:
                    result[kind.value] = None
                    continue
                bid = leg.contract.bid or 0.0
                position = leg.position
                result[kind.value] = {
                    "instrument_name": leg.contract.instrument_name,
                    "epic": leg.contract.epic,
                    "size": position.size,
                    "open": position.level,
                    "bid": bid,
                    "value": position.size * bid,
                    "pnl": position.size * (bid - position.level),
                    "ratio": bid / position.level if position.level else None,
                }
            return result

    def get_account(self) -> Dict[str, Any]:
        accounts = self.client.get_accounts()
        if not accounts:
            raise TradingError("No account returned by the broker")
        return accounts[0]

    def snapshot(self) -> Dict[str, Any]:
        return self.cycle.to_dict()

    def restore(self, data: Dict[str, Any]):
        """
        Replace the current cycle with a saved one.

        Raises:
            ValidationError: field="state" when the data is malformed
        """
        try:
            cycle = TradeCycle.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid state: {e}", "state")
        with self._tick_guard:
            self.cycle = cycle
        logger.info(f"State restored: {cycle.state.value}")

    def load_state_from_disk(self) -> bool:
        """Restore cycle and next event from the state file, if any."""
        if not os.path.exists(self.state_file):
            return False
        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
            self.cycle = TradeCycle.from_dict(data["cycle"])
            if data.get("next_event"):
                self._next_event = datetime.fromisoformat(data["next_event"])
        except (OSError, KeyError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load state from {self.state_file}: {e}")
            return False
        logger.info(f"State recovered from {self.state_file}: {self.cycle.state.value}")
        return True

    def _save_state_to_disk(self):
        """Write the cycle atomically (temp file + rename) for crash recovery."""
        try:
            state_data = {
                "cycle": self.cycle.to_dict(),
                "next_event": self._next_event.isoformat() if self._next_event else None,
                "last_saved": self._clock().isoformat(),
            }
            temp_file = self.state_file + ".tmp"
            os.makedirs(os.path.dirname(self.state_file) or ".", exist_ok=True)
            with open(temp_file, "w") as f:
                json.dump(state_data, f, indent=2)
            os.replace(temp_file, self.state_file)
            logger.debug(f"State saved to {self.state_file}")
        except OSError as e:
            logger.error(f"Failed to save state: {e}")

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status_summary(self) -> Dict[str, Any]:
        return {
            "state": self.cycle.state.value,
            "paused": self._pause,
            "next_event": format_event(self._next_event),
            "put_size": self.cycle.legs[LegKind.PUT].open_size if LegKind.PUT in self.cycle.legs else 0.0,
            "call_size": self.cycle.legs[LegKind.CALL].open_size if LegKind.CALL in self.cycle.legs else 0.0,
            "ticks": self.tick_count,
            "last_error": self.last_error,
        }

    def status_text(self) -> str:
        now = self._clock()
        if self._next_event is not None:
            next_in = str(round((self._next_event - now).total_seconds() / 60))
        else:
            next_in = "undefined"
        return (
            f"/name {self._name}\n"
            f"/event {format_event(self._next_event)}\n"
            f"/market {self._market}\n"
            f"/underlying {self._underlying}\n"
            f"/currency {self._currency}\n"
            f"/delta {self.params.delta}\n"
            f"/budget {self.params.budget}\n"
            f"/pause {str(self._pause).lower()}\n"
            f"/delay {self.params.delay}\n"
            f"/sampling {self.params.sampling}\n"
            f"/stoplevel {self.params.stop_level}\n"
            f"/trailingstoplevel {self.params.trailing_stop_level}\n"
            f"---\n"
            f"Next event in {next_in} min(s)\n"
            f"Now {now.isoformat()}\n"
            f"Status: {self.cycle.state.value}"
        )

    def explain(self) -> str:
        p = self.params
        now = self._clock()
        event = format_event(self._next_event)
        when = "before" if p.delay < 0 else "after"
        max_loss = p.budget - p.budget * (1 - p.stop_level) * p.stop_exit_fraction
        if p.tier2_opposite_fraction is not None:
            tier2_opposite = f" and simultaneously sell {round(p.tier2_opposite_fraction * 100)}% of the opposite leg"
        else:
            tier2_opposite = ""
        return (
            f"Current strategy:\n"
            f"We will trade the next {self._name} economic macro event at {event} (now: {now.isoformat()}).\n"
            f"\n"
            f"Trade Entry:\n"
            f"We buy a strangle on {self._market} for an overall budget of {p.budget} {self._currency}, "
            f"{abs(p.delay)} minute(s) {when} the event.\n"
            f"Each leg will be at a distance of {p.delta} from the {self._underlying} level, "
            f"selecting the closest strike.\n"
            f"\n"
            f"Exit Conditions:\n"
            f"We will sell {round(p.tier2_exit_fraction * 100)}% of any position reaching "
            f"{round(p.tier2_multiple * 100)}% of its entry price{tier2_opposite}; "
            f"then sell {round(p.stop_exit_fraction * 100)}% if its price falls "
            f"{round(p.trailing_stop_level * 100)}% from its highest price.\n"
            f"We will sell {round(p.tier3_exit_fraction * 100)}% of any position reaching "
            f"{round(p.tier3_multiple * 100)}% of its entry price and simultaneously close the remaining opposite leg.\n"
            f"\n"
            f"Losing Exit Conditions:\n"
            f"We will sell {round(p.stop_exit_fraction * 100)}% of any position whose price falls below "
            f"{round((1 - p.stop_level) * 100)}% of the entry price.\n"
            f"\n"
            f"Notes:\n"
            f"Any unsold part of a position may be lost at the end of the trading day.\n"
            f"Under normal market conditions, we should not lose more than {round(max_loss, 2)} {self._currency}.\n"
            f"Conditions will be checked approximately every {p.sampling} second(s); "
            f"any condition that is met for less than this delay may be ignored."
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> TradeState:
        return self.cycle.state

    @property
    def pause(self) -> bool:
        return self._pause

    @pause.setter
    def pause(self, value: bool):
        self._pause = parse_bool(value)
        logger.info(f"Trader {'paused' if self._pause else 'resumed'}")

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str):
        self._name = value

    @property
    def market(self) -> str:
        return self._market

    @market.setter
    def market(self, value: str):
        self._market = value

    @property
    def underlying(self) -> str:
        return self._underlying

    @underlying.setter
    def underlying(self, value: str):
        self._underlying = value

    @property
    def currency(self) -> str:
        return self._currency

    @currency.setter
    def currency(self, value: str):
        if not isinstance(value, str) or not CURRENCY_PATTERN.match(value):
            raise ValidationError("Currency must be a 3-letter code (e.g., USD, EUR)", "currency")
        self._currency = value

    @property
    def next_event(self) -> Optional[datetime]:
        return self._next_event

    @next_event.setter
    def next_event(self, value: Optional[datetime]):
        self._next_event = value
        self._last_countdown = None
        logger.info(f"Next event set to {format_event(value)}")

    budget = _param_property("budget", "Premium budget for both legs.")
    delta = _param_property("delta", "Strike distance from the underlying.")
    delay = _param_property("delay", "Entry offset from the event, minutes.")
    sampling = _param_property("sampling", "Seconds between ticks.")
    stop_level = _param_property("stop_level", "Loss fraction that triggers the stop.")
    trailing_stop_level = _param_property("trailing_stop_level", "Drop from ATH that triggers the trailing stop.")
    stop_exit_fraction = _param_property("stop_exit_fraction", "Fraction sold by stops.")
    tier2_multiple = _param_property("tier2_multiple", "Entry multiple for tier 2.")
    tier2_exit_fraction = _param_property("tier2_exit_fraction", "Fraction sold at tier 2.")
    tier2_opposite_fraction = _param_property("tier2_opposite_fraction", "Opposite fraction sold at tier 2.")
    tier3_multiple = _param_property("tier3_multiple", "Entry multiple for tier 3.")
    tier3_exit_fraction = _param_property("tier3_exit_fraction", "Fraction sold at tier 3.")
    size_step = _param_property("size_step", "Size increment.")
    min_size = _param_property("min_size", "Minimum size per leg.")
