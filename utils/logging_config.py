"""
Logging configuration for the Funding Arbitrage Scanner.

Features:
- Separate log files for system events, errors and committed opportunities
- Rotating file handlers (max 50MB per file, keep 5 backups)
- Automatic cleanup of old logs (keeps last 7 days)
- Console output for real-time monitoring
"""
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Sequence

# Rotation settings
MAX_BYTES = 50 * 1024 * 1024  # 50 MB per file
BACKUP_COUNT = 5

LOG_RETENTION_DAYS = 7

OPPORTUNITIES_LOGGER = "opportunities"


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


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> dict:
    """
    Configure console and rotating file logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for the log files, created if missing

    Returns:
        dict: Dictionary of specialized loggers
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # ===== SYSTEM LOG =====
    system_handler = _rotating_handler(directory / "system.log", level, formatter)

    # ===== ERRORS LOG =====
    # Errors only (easier to monitor)
    errors_handler = _rotating_handler(directory / "errors.log", logging.ERROR, formatter)

    # ===== OPPORTUNITIES LOG =====
    # One line per committed period, for looking back at spreads over time
    opportunities_handler = _rotating_handler(directory / "opportunities.log", logging.INFO, formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(system_handler)
    root_logger.addHandler(errors_handler)

    opportunities_logger = logging.getLogger(OPPORTUNITIES_LOGGER)
    opportunities_logger.handlers.clear()
    opportunities_logger.addHandler(opportunities_handler)
    opportunities_logger.propagate = True

    cleanup_old_logs(directory)

    root_logger.info("=" * 80)
    root_logger.info("Funding Arbitrage Scanner logging initialized")
    root_logger.info(f"Log directory: {directory.absolute()}")
    root_logger.info(f"Log level: {log_level}")
    root_logger.info(f"Rotation: {MAX_BYTES // (1024*1024)} MB per file, {BACKUP_COUNT} backups")
    root_logger.info("=" * 80)

    return {
        'system': root_logger,
        'opportunities': opportunities_logger,
    }


def cleanup_old_logs(log_dir: Path, retention_days: int = LOG_RETENTION_DAYS) -> int:
    """
    Delete log files (and their .1, .2 backups) older than retention_days.

    Returns:
        int: Number of files deleted
    """
    cutoff_time = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0
    total_size_freed = 0

    for pattern in (Path(log_dir) / "*.log", Path(log_dir) / "*.log.*"):
        for log_file in glob.glob(str(pattern)):
            log_path = Path(log_file)
            try:
                stat = log_path.stat()
                if datetime.fromtimestamp(stat.st_mtime) < cutoff_time:
                    log_path.unlink()
                    deleted_count += 1
                    total_size_freed += stat.st_size
            except FileNotFoundError:
                continue
            except OSError as e:
                logging.error(f"Error cleaning up {log_path}: {e}")

    if deleted_count > 0:
        size_mb = total_size_freed / (1024 * 1024)
        logging.info(f"Cleaned up {deleted_count} old log files ({size_mb:.2f} MB freed)")
    return deleted_count


def log_opportunity_summary(period: str, opportunities: Sequence, top: int = 3, logger: Optional[logging.Logger] = None):
    """Log the size and best spreads of a committed opportunity list."""
    logger = logger or logging.getLogger(OPPORTUNITIES_LOGGER)
    if not opportunities:
        logger.info(f"[{period}] no opportunities")
        return

    best = ", ".join(
        f"{opp.symbol} long {opp.long_exchange.value} {opp.net_apr:.2f}%"
        for opp in opportunities[:top]
    )
    logger.info(f"[{period}] {len(opportunities)} opportunities, top: {best}")
