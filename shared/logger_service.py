"""
Logging setup and trade journal for the strangle bot.

Destinations:
- Root logger configuration (file + optional console)
- Local JSON trade journal (logs/trades.json)
- Shared one-line-per-event monitor log (logs/monitor.log)
- Google Sheets "Trades" worksheet (optional, gspread)

Trade Log Format:
[Timestamp, Action, Leg, Instrument, Strike, Size, Price, Currency, Underlying, P&L, Deal Status, Notes]
"""

import logging
import json
import threading
from datetime import datetime
from pathlib import Path
from queue import Empty, Queue
from typing import Optional, Dict, List, Any

# Configure module logger
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

TRADES_HEADERS = [
    "Timestamp", "Action", "Leg", "Instrument", "Strike", "Size", "Price",
    "Currency", "Underlying Price", "P&L", "Deal Status", "Notes"
]


class TradeRecord:
    """
    A single order sent to the broker, as written to the trade journal.

    Attributes:
        action: OPEN_LEG or CLOSE_LEG
        leg: "Put" or "Call"
        instrument_name: Broker instrument name
        size: Deal size
        price: Limit price sent (or fill level when known)
        trade_reason: Why the order was sent (Entry, Stop loss, Tier 2, ...)
    """

    def __init__(
        self,
        action: str,
        leg: str,
        instrument_name: str,
        size: float,
        price: float,
        currency: str,
        timestamp: Optional[datetime] = None,
        epic: Optional[str] = None,
        strike: Optional[float] = None,
        underlying_price: Optional[float] = None,
        pnl: Optional[float] = None,
        deal_reference: Optional[str] = None,
        deal_status: Optional[str] = None,
        trade_reason: Optional[str] = None
    ):
        self.timestamp = timestamp or datetime.now()
        self.action = action
        self.leg = leg
        self.instrument_name = instrument_name
        self.size = size
        self.price = price
        self.currency = currency
        self.epic = epic
        self.strike = strike
        self.underlying_price = underlying_price
        self.pnl = pnl
        self.deal_reference = deal_reference
        self.deal_status = deal_status
        self.trade_reason = trade_reason

    def to_list(self) -> List[Any]:
        """Row for the Trades worksheet (see TRADES_HEADERS)."""
        return [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            self.action,
            self.leg,
            self.instrument_name,
            str(self.strike) if self.strike is not None else "N/A",
            f"{self.size:.2f}",
            f"{self.price:.2f}",
            self.currency,
            f"{self.underlying_price:.2f}" if self.underlying_price else "N/A",
            f"{self.pnl:.2f}" if self.pnl is not None else "N/A",
            self.deal_status or "N/A",
            self.trade_reason or ""
        ]

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "leg": self.leg,
            "instrument_name": self.instrument_name,
            "size": self.size,
            "price": self.price,
            "currency": self.currency,
            "trade_reason": self.trade_reason,
        }
        optional = {
            "epic": self.epic,
            "strike": self.strike,
            "underlying_price": self.underlying_price,
            "pnl": self.pnl,
            "deal_reference": self.deal_reference,
            "deal_status": self.deal_status,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        return result


class GoogleSheetsLogger:
    """
    Appends trade rows to the "Trades" worksheet of a Google spreadsheet.

    Config (google_sheets section): enabled, credentials_file,
    spreadsheet_name. On GCP the service account comes from Secret Manager
    and is passed in as config["_google_sheets_credentials"].
    """

    SCOPES = [
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive"
    ]
    WORKSHEET = "Trades"

    def __init__(self, config: Dict[str, Any]):
        settings = config.get("google_sheets", {})
        self.enabled = settings.get("enabled", False)
        self.credentials_file = settings.get("credentials_file", "config/google_credentials.json")
        self.spreadsheet_name = settings.get("spreadsheet_name", "Strangle_Bot_Log")
        self._credentials_info = config.get("_google_sheets_credentials")
        self.worksheet = None

        if self.enabled and not self._connect():
            self.enabled = False

    def _credentials(self):
        from google.oauth2.service_account import Credentials

        if self._credentials_info:
            return Credentials.from_service_account_info(self._credentials_info, scopes=self.SCOPES)
        return Credentials.from_service_account_file(self.credentials_file, scopes=self.SCOPES)

    def _connect(self) -> bool:
        """Open (or create) the spreadsheet and its Trades worksheet."""
        try:
            import gspread
        except ImportError:
            logger.error("Sheets journal needs gspread and google-auth (pip install gspread google-auth)")
            return False

        try:
            client = gspread.authorize(self._credentials())
            try:
                spreadsheet = client.open(self.spreadsheet_name)
            except gspread.SpreadsheetNotFound:
                spreadsheet = client.create(self.spreadsheet_name)
                logger.info(f"Spreadsheet {self.spreadsheet_name} created")

            try:
                self.worksheet = spreadsheet.worksheet(self.WORKSHEET)
            except gspread.WorksheetNotFound:
                self.worksheet = spreadsheet.add_worksheet(
                    title=self.WORKSHEET, rows=10000, cols=len(TRADES_HEADERS)
                )
                self.worksheet.append_row(TRADES_HEADERS)
                self.worksheet.format("A1:L1", {"textFormat": {"bold": True}})
                logger.info(f"Worksheet {self.WORKSHEET} created")
        except FileNotFoundError:
            logger.error(f"Sheets credentials file missing: {self.credentials_file}")
            return False
        except Exception as e:
            logger.error(f"Sheets journal unavailable: {e}")
            return False

        logger.info(f"Sheets journal: {self.spreadsheet_name}/{self.WORKSHEET}")
        return True

    def log_trade(self, trade: TradeRecord) -> bool:
        if not self.enabled or self.worksheet is None:
            return False
        try:
            self.worksheet.append_row(trade.to_list())
        except Exception as e:
            logger.error(f"Sheets append failed for {trade.action} {trade.leg}: {e}")
            return False
        return True


class LocalFileLogger:
    """
    Root logger setup plus the JSON trade journal.

    Attributes:
        log_file: Path to the text log file
        trade_log_file: JSON trade journal next to the log file
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config.get("logging", {})
        self.log_file = self.config.get("log_file", "logs/strangle_bot.log")
        self.log_level = self.config.get("log_level", "INFO").upper()
        self.console_output = self.config.get("console_output", True)

        log_dir = Path(self.log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        self.trade_log_file = str(log_dir / "trades.json")

        self._setup_logging()

    def _setup_logging(self):
        """Configure the root logger."""
        level = getattr(logging, self.log_level, logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        file_handler = logging.FileHandler(self.log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        if self.console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)

        logger.info(f"Logging to {self.log_file} at {self.log_level}")

    def log_trade(self, trade: TradeRecord) -> bool:
        """Append a trade record to the JSON trade journal."""
        try:
            trades = []
            if Path(self.trade_log_file).exists():
                with open(self.trade_log_file, "r") as f:
                    try:
                        trades = json.load(f)
                    except json.JSONDecodeError:
                        logger.warning(f"{self.trade_log_file} is corrupt, starting a new journal")
                        trades = []

            trades.append(trade.to_dict())

            with open(self.trade_log_file, "w") as f:
                json.dump(trades, f, indent=2)

            logger.info(
                f"Trade logged: {trade.action} {trade.leg} | {trade.size} x {trade.instrument_name} "
                f"@ {trade.price} {trade.currency}"
            )
            return True

        except OSError as e:
            logger.error(f"Trade journal write failed ({self.trade_log_file}): {e}")
            return False


class TradeLoggerService:
    """
    Fans trade records out to the local journal and the Sheets worksheet.

    Records are queued and written by a background thread.

    Attributes:
        local_logger: LocalFileLogger instance
        google_logger: GoogleSheetsLogger instance (may be disabled)
        log_queue: Queue for asynchronous logging
    """

    def __init__(self, config: Dict[str, Any], bot_name: Optional[str] = None):
        self.config = config
        self.bot_name = bot_name or "UNKNOWN"

        self.local_logger = LocalFileLogger(config)
        self.google_logger = GoogleSheetsLogger(config)

        monitor_dir = Path(self.local_logger.log_file).parent
        self.monitor_log_file = monitor_dir / "monitor.log"

        self.log_queue: Queue = Queue()
        self._stop_logging = False
        self._log_thread: Optional[threading.Thread] = None
        self._start_log_thread()

        logger.info(f"Trade logging ready for {self.bot_name}")
        logger.info(f"  Trade journal: {self.local_logger.trade_log_file}")
        logger.info(f"  Sheets journal: {'on' if self.google_logger.enabled else 'off'}")
        logger.info(f"  Monitor log: {self.monitor_log_file}")

        self.log_monitor("STARTED", "Bot initialized")

    def _start_log_thread(self):
        self._log_thread = threading.Thread(target=self._process_log_queue, daemon=True)
        self._log_thread.start()
        logger.debug("Trade journal thread running")

    def _process_log_queue(self):
        while not self._stop_logging:
            try:
                trade = self.log_queue.get(timeout=1.0)
            except Empty:
                continue
            try:
                self.local_logger.log_trade(trade)
                if self.google_logger.enabled:
                    self.google_logger.log_trade(trade)
            finally:
                self.log_queue.task_done()

    def log_monitor(self, status: str, message: str, metrics: Optional[Dict[str, Any]] = None):
        """
        Append one status line to logs/monitor.log.

        Format: TIMESTAMP | BOT_NAME | STATUS | MESSAGE | METRICS

        Args:
            status: Short status code (STARTED, HEARTBEAT, TRADE, ERROR, STOPPED)
            message: Brief description
            metrics: Optional key metrics to append
        """
        try:
            timestamp = datetime.now().strftime(LOG_DATE_FORMAT)
            metrics_str = ""
            if metrics:
                metrics_str = " | " + " | ".join(f"{k}: {v}" for k, v in metrics.items())
            log_line = f"{timestamp} | {self.bot_name:<20} | {status:<10} | {message}{metrics_str}\n"
            with open(self.monitor_log_file, "a", encoding="utf-8") as f:
                f.write(log_line)
        except OSError as e:
            logger.error(f"Monitor log write failed: {e}")

    def log_trade(
        self,
        action: str,
        leg: str,
        instrument_name: str,
        size: float,
        price: float,
        currency: str,
        **details: Any
    ):
        """
        Queue a trade record for all enabled destinations (non-blocking).

        Extra keyword arguments are TradeRecord optional fields
        (epic, strike, underlying_price, pnl, deal_reference, deal_status,
        trade_reason).
        """
        trade = TradeRecord(
            action=action,
            leg=leg,
            instrument_name=instrument_name,
            size=size,
            price=price,
            currency=currency,
            **details
        )
        self.log_queue.put(trade)
        self.log_monitor("TRADE", f"{action} {leg} {size} x {instrument_name} @ {price}")

    def log_event(self, message: str, level: str = "INFO"):
        log_func = getattr(logger, level.lower(), logger.info)
        log_func(message)

    def log_error(self, message: str, exception: Optional[Exception] = None):
        """Log an error (with traceback when an exception is given) and mirror it to the monitor log."""
        if exception:
            logger.error(f"{message}: {exception}", exc_info=exception)
        else:
            logger.error(message)
        self.log_monitor("ERROR", message)

    def shutdown(self):
        """Drain the queue and stop the logging thread."""
        logger.info("Draining trade journal queue")
        self.log_queue.join()
        self._stop_logging = True
        if self._log_thread:
            self._log_thread.join(timeout=5.0)
        self.log_monitor("STOPPED", "Bot stopped")
        logger.info("Trade logging stopped")


def setup_logging(config: Dict[str, Any], bot_name: Optional[str] = None) -> TradeLoggerService:
    """
    Configure logging and return the TradeLoggerService for this bot.

    Args:
        config: Configuration dictionary
        bot_name: Name of the bot for monitor log identification (e.g., "STRANGLE")
    """
    return TradeLoggerService(config, bot_name=bot_name)
