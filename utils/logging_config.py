"""
Logging setup for BSC Transfer Tracker.

Everything goes to the console and logs/system.log, errors additionally to
logs/errors.log. Two audit loggers get their own files:

- `transfers`: one line per recorded incoming transfer
- `trades`: one line per hedge order sent to Gate.io

Files rotate at 50 MB with 5 backups; files untouched for a week are
removed at startup.
"""
import logging
import logging.handlers
import time
from pathlib import Path

LOG_DIR = Path("logs")

SYSTEM_LOG = "system.log"
ERRORS_LOG = "errors.log"
TRANSFERS_LOG = "transfers.log"
TRADES_LOG = "trades.log"

MAX_BYTES = 50 * 1024 * 1024
BACKUP_COUNT = 5
LOG_RETENTION_DAYS = 7

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _audit_logger(name: str, path: Path, formatter: logging.Formatter) -> logging.Logger:
    """Logger writing INFO lines to its own file and also to the root handlers."""
    audit = logging.getLogger(name)
    audit.handlers.clear()
    audit.setLevel(logging.INFO)
    audit.addHandler(_rotating_handler(path, logging.INFO, formatter))
    audit.propagate = True
    return audit


def setup_logging(log_level: str = "INFO", log_dir: Path = LOG_DIR) -> dict:
    """
    Configure console, rotating file and audit logging.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files, created if missing

    Returns:
        dict: 'system', 'transfers' and 'trades' loggers
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(console)
    root.addHandler(_rotating_handler(log_dir / SYSTEM_LOG, level, formatter))
    root.addHandler(_rotating_handler(log_dir / ERRORS_LOG, logging.ERROR, formatter))

    transfers = _audit_logger('transfers', log_dir / TRANSFERS_LOG, formatter)
    trades = _audit_logger('trades', log_dir / TRADES_LOG, formatter)

    # aiosqlite logs every statement at DEBUG
    logging.getLogger('aiosqlite').setLevel(max(level, logging.INFO))

    removed = cleanup_old_logs(log_dir)

    root.info(f"Logging to {log_dir.absolute()} at {log_level.upper()} "
              f"({MAX_BYTES // (1024 * 1024)} MB x {BACKUP_COUNT} backups, "
              f"{LOG_RETENTION_DAYS} days retention, {removed} old files removed)")

    return {
        'system': root,
        'transfers': transfers,
        'trades': trades,
    }


def cleanup_old_logs(log_dir: Path = LOG_DIR) -> int:
    """
    Delete current and rotated log files not modified for LOG_RETENTION_DAYS.

    Returns:
        Number of files deleted
    """
    cutoff = time.time() - LOG_RETENTION_DAYS * 24 * 3600
    deleted = 0

    for path in Path(log_dir).glob("*.log*"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                deleted += 1
        except OSError as e:
            logging.error(f"Could not remove old log file {path}: {e}")

    return deleted


def log_transfer(token_symbol: str, amount: str, amount_usd: float, address: str, tx_hash: str):
    """One line in transfers.log per recorded transfer."""
    logging.getLogger('transfers').info(
        f"{amount} {token_symbol} (${amount_usd:,.2f}) -> {address} tx={tx_hash}"
    )


def log_trade(trading_pair: str, order_amount: float, tx_hash: str):
    """One line in trades.log per placed hedge order."""
    logging.getLogger('trades').info(
        f"SELL {trading_pair} amount={order_amount:.8f} trigger_tx={tx_hash}"
    )
