"""
Event Strangle Trading Bot

Buys a long strangle on IG's daily index options around a scheduled
macroeconomic release (NFP, CPI, central bank decisions):
- Entry at the event time plus a configurable delay, put and call at
  +/- delta from the underlying, sized from a premium budget
- Exits: stop loss, trailing stop after tier 2, tier 2 / tier 3 profit
  taking that also unwinds the opposite leg

Run with: python -m bots.strangle.main
"""

from bots.strangle.strategy import StrangleTrader
from bots.strangle.commands import CommandHandler
from bots.strangle.exit_rules import ExitDecision, ExitRule, evaluate_leg

__all__ = [
    'StrangleTrader',
    'CommandHandler',
    'ExitDecision',
    'ExitRule',
    'evaluate_leg',
]
