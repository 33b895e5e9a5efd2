"""
commands.py - Operator command surface for the strangle trader.

Text commands (leading "/" optional), one reply string per command:

    help                       list commands
    status                     parameters, next event, state
    explain                    plain-language strategy description
    pause [on|off]             get/set pause
    name|market|underlying [x] get/set text settings
    currency [XXX]             get/set 3-letter currency
    event [when]               get/set next event (now, none, +N, HH:MM, ISO)
    delta|delay|sampling|budget|stoplevel|trailingstoplevel [n]
    price                      underlying mid price
    positions                  live legs with value, P&L and ratio
    close [put|call ...]       close whole legs (default both)
    account                    first broker account
    state [json]               dump or replace the trade cycle
    error                      last tick error
    exit                       stop the bot

Bad input never raises: the reply starts with "Error: ".
"""

import json
import logging
from typing import Callable, Dict, Optional

from bots.strangle.models import LEG_KINDS, LegKind
from bots.strangle.strategy import StrangleTrader
from shared.config_loader import parse_bool
from shared.errors import TradingError, ValidationError
from shared.event_calendar import format_event, parse_event

logger = logging.getLogger(__name__)

# command -> (trader attribute, number parser)
NUMERIC_COMMANDS = {
    "delta": ("delta", float),
    "delay": ("delay", float),
    "sampling": ("sampling", int),
    "budget": ("budget", float),
    "stoplevel": ("stop_level", float),
    "trailingstoplevel": ("trailing_stop_level", float),
}

TEXT_COMMANDS = ("name", "market", "underlying")


def _format(obj) -> str:
    return json.dumps(obj, indent=2, default=str)


class CommandHandler:
    """Parses and executes operator commands against a StrangleTrader."""

    def __init__(self, trader: StrangleTrader, on_exit: Optional[Callable[[], None]] = None):
        self.trader = trader
        self.on_exit = on_exit
        self._handlers: Dict[str, Callable[[str], str]] = {
            "help": self._help,
            "status": lambda arg: self.trader.status_text(),
            "explain": lambda arg: self.trader.explain(),
            "pause": self._pause,
            "currency": self._currency,
            "event": self._event,
            "price": self._price,
            "positions": self._positions,
            "close": self._close,
            "account": lambda arg: _format(self.trader.get_account()),
            "state": self._state,
            "error": lambda arg: f"Last error: {self.trader.last_error or 'none'}",
            "exit": self._exit,
        }

    def handle(self, text: str) -> str:
        """Execute one command line and return the reply."""
        line = (text or "").strip()
        if not line:
            return "Error: empty command"
        command, _, arg = line.lstrip("/").partition(" ")
        command = command.lower()
        arg = " ".join(arg.split())
        logger.debug(f"Handle '{command}' command")

        try:
            if command in NUMERIC_COMMANDS:
                return self._numeric(command, arg)
            if command in TEXT_COMMANDS:
                return self._text(command, arg)
            handler = self._handlers.get(command)
            if handler is None:
                return f"Error: unknown command '{command}'. Type help for the list."
            return handler(arg)
        except (ValidationError, TradingError) as e:
            logger.warning(f"Command '{command}' failed: {e}")
            return f"Error: {e}"
        except Exception as e:
            logger.error(f"Command '{command}' crashed: {e}", exc_info=True)
            return f"Error: {e}"

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _help(self, arg: str) -> str:
        commands = sorted(list(self._handlers) + list(NUMERIC_COMMANDS) + list(TEXT_COMMANDS))
        return "Available commands: " + ", ".join(f"/{c}" for c in commands)

    def _numeric(self, command: str, arg: str) -> str:
        attribute, parser = NUMERIC_COMMANDS[command]
        if arg:
            try:
                value = parser(arg.replace(" ", ""))
            except ValueError:
                raise ValidationError(f"{attribute} must be a valid number", attribute)
            setattr(self.trader, attribute, value)
        return f"/{command} {getattr(self.trader, attribute)}"

    def _text(self, command: str, arg: str) -> str:
        if arg:
            setattr(self.trader, command, arg)
        return f"/{command} {getattr(self.trader, command)}"

    def _pause(self, arg: str) -> str:
        if arg:
            self.trader.pause = parse_bool(arg)
        return f"/pause {'on' if self.trader.pause else 'off'}"

    def _currency(self, arg: str) -> str:
        if arg:
            self.trader.currency = arg.upper()
        return f"/currency {self.trader.currency}"

    def _event(self, arg: str) -> str:
        if arg:
            self.trader.next_event = parse_event(arg)
        return f"/event {format_event(self.trader.next_event)}"

    def _price(self, arg: str) -> str:
        return f"Underlying price: {self.trader.get_underlying_price()}"

    def _positions(self, arg: str) -> str:
        positions = self.trader.get_positions()
        return "\n".join(f"{leg}: {_format(entry)}" for leg, entry in positions.items())

    def _close(self, arg: str) -> str:
        if arg:
            try:
                kinds = [LegKind.parse(word) for word in arg.split(" ")]
            except ValueError as e:
                raise ValidationError(str(e), "leg")
        else:
            kinds = list(LEG_KINDS)

        replies = []
        for kind in kinds:
            try:
                confirmation = self.trader.close_leg(kind, 1, relative_to_current=True)
                replies.append(
                    f"{kind.value}: {confirmation.direction} {confirmation.size} "
                    f"{confirmation.epic} {confirmation.deal_status}"
                )
            except TradingError as e:
                # Keep closing the other legs
                logger.warning(f"Close {kind.value} failed: {e}")
                replies.append(f"{kind.value}: Error: {e}")
        return "\n".join(replies)

    def _state(self, arg: str) -> str:
        if arg:
            try:
                data = json.loads(arg)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Invalid state JSON: {e}", "state")
            if not isinstance(data, dict):
                raise ValidationError("State must be a JSON object", "state")
            self.trader.restore(data)
        return f"/state {_format(self.trader.snapshot())}"

    def _exit(self, arg: str) -> str:
        if self.on_exit:
            self.on_exit()
        return "bye!"
