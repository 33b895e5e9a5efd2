#!/usr/bin/env python3
"""
main.py - Event Strangle Trading Bot Entry Point

Buys an index-option strangle around a scheduled macroeconomic event on
IG's daily options and manages the legs with layered exits.

Usage:
------
    python -m bots.strangle.main                  # Run in DEMO environment
    python -m bots.strangle.main --live           # Run in LIVE environment
    python -m bots.strangle.main --status         # Show current status only
    python -m bots.strangle.main --interactive    # Read operator commands from stdin

The trader ticks on its own scheduler thread. This loop only writes the
HEARTBEAT status line and waits for a shutdown signal.
"""

import os
import sys
import time
import signal
import argparse
import logging
import threading

# Ensure project root is in path for imports when running as script
_project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from shared.alert_service import AlertService
from shared.config_loader import load_config
from shared.errors import ConfigurationError, TradingError
from shared.ig_client import IGClient
from shared.logger_service import setup_logging
from shared.secret_manager import is_running_on_gcp

from bots.strangle.commands import CommandHandler
from bots.strangle.strategy import StrangleTrader

logger = logging.getLogger(__name__)

BOT_NAME = "STRANGLE"
STATUS_INTERVAL_SECONDS = 60

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals (CTRL+C, SIGTERM)."""
    global shutdown_requested
    logger.info(f"\nShutdown signal received ({signum}). Initiating graceful shutdown...")
    shutdown_requested = True


def request_shutdown():
    global shutdown_requested
    shutdown_requested = True


def interruptible_sleep(seconds: int, check_interval: int = 1) -> bool:
    """
    Sleep for the specified duration, but check for shutdown signal periodically.

    Returns:
        bool: True if sleep completed, False if interrupted by shutdown
    """
    remaining = seconds
    while remaining > 0 and not shutdown_requested:
        time.sleep(min(check_interval, remaining))
        remaining -= check_interval
    return not shutdown_requested


def print_banner():
    """Print the application banner."""
    banner = """
    ╔═══════════════════════════════════════════════════════════════╗
    ║                                                               ║
    ║         EVENT STRANGLE TRADING BOT                            ║
    ║         ══════════════════════════                            ║
    ║                                                               ║
    ║         Strategy: long strangle on macro event releases       ║
    ║         Exits: stop loss, trailing stop, tier 2 / tier 3      ║
    ║                                                               ║
    ║         Version: 1.0.0                                        ║
    ║         API: IG REST Trading API                              ║
    ║                                                               ║
    ╚═══════════════════════════════════════════════════════════════╝
    """
    print(banner)


def start_command_console(handler: CommandHandler) -> threading.Thread:
    """Read operator commands from stdin on a daemon thread."""

    def console():
        print("Type 'help' for the command list, 'exit' to stop.")
        while not shutdown_requested:
            try:
                line = sys.stdin.readline()
            except (OSError, ValueError):
                break
            if not line:
                break
            if line.strip():
                print(handler.handle(line))

    thread = threading.Thread(target=console, name="strangle-console", daemon=True)
    thread.start()
    return thread


def run_bot(config: dict, interactive: bool = False):
    """
    Run the trader until a shutdown signal or the exit command.

    Args:
        config: Validated configuration dictionary
        interactive: Start the stdin command console
    """
    global shutdown_requested

    trade_logger = setup_logging(config, bot_name=BOT_NAME)
    alert_service = AlertService(config, BOT_NAME)
    environment = config.get("ig_api", {}).get("environment", "demo")

    trade_logger.log_event("=" * 60)
    trade_logger.log_event("STRANGLE BOT STARTING")
    trade_logger.log_event(f"Environment: {environment.upper()}")
    trade_logger.log_event("=" * 60)

    client = IGClient.from_config(config)
    trader = StrangleTrader(
        client, config, alert_service=alert_service, trade_logger=trade_logger
    )
    if not config.get("strategy", {}).get("state"):
        trader.load_state_from_disk()

    try:
        trade_logger.log_event("Opening IG session...")
        trader.start()
    except TradingError as e:
        trade_logger.log_error(f"Failed to open session: {e}", exception=e)
        alert_service.bot_stopped(f"Session failed: {e}")
        trade_logger.shutdown()
        return

    trade_logger.log_event("Session open - scheduler running")
    trade_logger.log_monitor("STARTED", f"{environment} | {trader.market} / {trader.underlying}")
    alert_service.bot_started(environment, {"market": trader.market, "underlying": trader.underlying})

    if interactive:
        start_command_console(CommandHandler(trader, on_exit=request_shutdown))

    stop_reason = "Shutdown requested"
    try:
        while not shutdown_requested:
            status = trader.get_status_summary()
            trade_logger.log_event(
                f"HEARTBEAT | {status['state']} | "
                f"Next event: {status['next_event']} | "
                f"Put: {status['put_size']} | Call: {status['call_size']} | "
                f"Ticks: {status['ticks']}"
                + (" | PAUSED" if status["paused"] else "")
            )
            trade_logger.log_monitor("RUNNING", status["state"], status)
            if not interruptible_sleep(STATUS_INTERVAL_SECONDS):
                break

    except KeyboardInterrupt:
        shutdown_requested = True

    except Exception as e:
        stop_reason = f"Crash: {e}"
        trade_logger.log_error(f"Error in main loop: {e}", exception=e)

    finally:
        trade_logger.log_event("=" * 60)
        trade_logger.log_event("INITIATING GRACEFUL SHUTDOWN")
        trade_logger.log_event("=" * 60)

        trader.stop()

        status = trader.get_status_summary()
        trade_logger.log_event(
            f"Final Status: State={status['state']}, "
            f"Put={status['put_size']}, Call={status['call_size']}"
        )
        if status["put_size"] or status["call_size"]:
            logger.critical(
                "CRITICAL: Bot shutting down with open legs! "
                "Positions will remain open. Manual intervention may be required."
            )

        alert_service.bot_stopped(stop_reason, status)
        trade_logger.shutdown()
        logger.info("Shutdown complete.")


def show_status(config: dict):
    """Open a session, print the status and positions, then log out."""
    setup_logging(config, bot_name=BOT_NAME)
    client = IGClient.from_config(config)
    trader = StrangleTrader(client, config)
    trader.load_state_from_disk()

    ig_config = config.get("ig_api", {})
    client.create_session(ig_config.get("username", ""), ig_config.get("password", ""))
    try:
        handler = CommandHandler(trader)
        print("\n" + "=" * 60)
        print("STRANGLE CURRENT STATUS")
        print("=" * 60)
        print(trader.status_text())
        print("-" * 60)
        print(handler.handle("positions"))
        print("=" * 60 + "\n")
    finally:
        client.logout()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Event Strangle Trading Bot - IG daily index options",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bots.strangle.main                  Run in DEMO environment
  python -m bots.strangle.main --live           Run in LIVE environment
  python -m bots.strangle.main --status         Show current status only
  python -m bots.strangle.main --interactive    Accept commands on stdin
        """
    )

    parser.add_argument(
        "--config", "-c",
        default="bots/strangle/config/config.json",
        help="Path to configuration file"
    )

    parser.add_argument(
        "--status", "-s",
        action="store_true",
        help="Show current status and exit"
    )

    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Read operator commands from stdin"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)"
    )

    parser.add_argument(
        "--live", "-l",
        action="store_true",
        help="Use LIVE environment (real money trading)"
    )

    args = parser.parse_args()

    print_banner()

    try:
        on_gcp = is_running_on_gcp()
        config = load_config(args.config, environment="live" if args.live and not on_gcp else None)

        if on_gcp:
            print("\n" + "=" * 60)
            print("  RUNNING ON GOOGLE CLOUD PLATFORM")
            print(f"  Environment: {config['ig_api'].get('environment', 'live').upper()}")
            print("  Credentials: Loaded from Secret Manager")
            print("=" * 60 + "\n")
        elif args.live:
            print("\n  WARNING: LIVE ENVIRONMENT ENABLED - REAL MONEY TRADING\n")
        else:
            print(f"\n  Environment: {config['ig_api'].get('environment', 'demo').upper()}\n")

        if args.verbose:
            config.setdefault("logging", {})["log_level"] = "DEBUG"

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        if args.status:
            show_status(config)
        else:
            run_bot(config, interactive=args.interactive)

    except ConfigurationError as e:
        print(f"\n  Configuration Error: {e}")
        if e.config_key:
            print(f"  Check key: {e.config_key}")
        sys.exit(1)

    except Exception as e:
        print(f"\n  Unexpected Error: {e}")
        logger.exception("Unexpected error in main()")
        sys.exit(1)


if __name__ == "__main__":
    main()
