"""
Structured logging for jobstats.

One process-wide logger writes to stdout and to a dated file under logs/.
Keyword context passed to any log call is rendered as JSON after the
message. The logger also counts store traffic for the current invocation
so ingest and rebuild runs can finish with a one-screen summary.
"""

import json
import logging
import sys
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(context)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s%(context)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ContextFormatter(logging.Formatter):
    """Appends ``| Context: {...}`` when a record carries keyword context."""

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "ctx", None)
        record.context = f" | Context: {json.dumps(context, default=str)}" if context else ""
        return super().format(record)


@dataclass
class StoreMetrics:
    store_reads: int = 0
    store_writes: int = 0
    bytes_written: int = 0
    records_inserted: int = 0
    duplicates_skipped: int = 0
    malformed_skipped: int = 0
    errors_by_type: Dict[str, int] = field(default_factory=dict)

    def summary_lines(self) -> List[str]:
        lines = [
            "=== Store Session Metrics ===",
            f"Reads: {self.store_reads}  Writes: {self.store_writes} ({self.bytes_written} bytes)",
            f"Postings: {self.records_inserted} inserted, "
            f"{self.duplicates_skipped} duplicates, {self.malformed_skipped} malformed",
        ]
        if self.errors_by_type:
            lines.append("Error Types:")
            lines.extend(f"  {name}: {count}" for name, count in sorted(self.errors_by_type.items()))
        return lines


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


class StructuredLogger:
    """
    Console and file logger carrying per-invocation store metrics.

    The file handler always records DEBUG and above that pass the logger
    level; ``set_level`` only moves the logger and console thresholds.
    """

    def __init__(
        self,
        name: str = "jobstats",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(_level(level))
        self.logger.handlers.clear()
        self.logger.propagate = False
        self.metrics = StoreMetrics()
        self.log_file: Optional[Path] = None

        if enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(_level(level))
            console.setFormatter(ContextFormatter(CONSOLE_FORMAT, DATE_FORMAT))
            self.logger.addHandler(console)

        if enable_file:
            log_dir = Path(log_dir or "logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = log_dir / f"{name}_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(self.log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(ContextFormatter(FILE_FORMAT, DATE_FORMAT))
            self.logger.addHandler(file_handler)

    def _log(self, level: int, message: str, context: dict):
        self.logger.log(level, message, extra={"ctx": context}, stacklevel=3)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, kwargs)

    def set_level(self, level: str):
        """Change the logger and console threshold."""
        self.logger.setLevel(_level(level))
        for handler in self.logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(_level(level))

    # Store metrics

    def record_store_read(self):
        self.metrics.store_reads += 1

    def record_store_write(self, size: int = 0):
        self.metrics.store_writes += 1
        self.metrics.bytes_written += size

    def record_insert(self):
        self.metrics.records_inserted += 1

    def record_duplicate(self):
        self.metrics.duplicates_skipped += 1

    def record_malformed(self):
        self.metrics.malformed_skipped += 1

    def record_failure(self, error_type: str):
        errors = self.metrics.errors_by_type
        errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Snapshot of the counters as a plain dict."""
        return asdict(self.metrics)

    def reset_metrics(self):
        self.metrics = StoreMetrics()

    def log_metrics_summary(self):
        for line in self.metrics.summary_lines():
            self.info(line)


_global_logger: Optional[StructuredLogger] = None


def get_logger(name: str = "jobstats", level: str = "INFO", **kwargs) -> StructuredLogger:
    """
    Get or create the process-wide logger.

    Arguments only apply on the first call; later calls return the same
    instance unchanged.
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Drop the process-wide logger (tests)."""
    global _global_logger
    _global_logger = None
