"""Logging infrastructure with customer and document context."""
import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional


class DocumentContextFilter(logging.Filter):
    """Add customer and document context to log records."""

    def __init__(self):
        super().__init__()
        self.customer_id: Optional[str] = None
        self.document: Optional[str] = None

    def filter(self, record):
        """Add customer_id and document to record."""
        record.customer_id = self.customer_id or "system"
        record.document = self.document or "-"
        return True


class StatementFlowLogger:
    """Centralized logging manager."""

    def __init__(self, log_level: str = "INFO", log_dir: Optional[Path] = None):
        if log_dir is None:
            home = os.getenv("STATEMENTFLOW_HOME") or str(Path.home() / ".statementflow")
            log_dir = Path(home) / "logs"
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / "service.log"
        self.context_filter = DocumentContextFilter()

        self.logger = logging.getLogger("statementflow")
        self.logger.setLevel(getattr(logging, log_level.upper()))
        self.logger.handlers.clear()

        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] [customer:%(customer_id)s] [doc:%(document)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(self.context_filter)
        self.logger.addHandler(console_handler)

        # File handler with rotation (30 files, 10MB per file)
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                self.log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=30,
                encoding="utf-8"
            )
        except OSError as e:
            self.logger.warning(f"File logging disabled, cannot write to {self.log_dir}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(self.context_filter)
            self.logger.addHandler(file_handler)

    def set_context(self, customer_id: Optional[str], document: Optional[str] = None):
        """Set current customer/document context for logging."""
        self.context_filter.customer_id = customer_id
        self.context_filter.document = document

    def get_logger(self) -> logging.Logger:
        """Get the configured logger."""
        return self.logger


# Global logger instance
_logger_instance: Optional[StatementFlowLogger] = None


def get_logger(log_level: str = "INFO") -> logging.Logger:
    """Get or create global logger instance."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = StatementFlowLogger(log_level)
    return _logger_instance.get_logger()


def set_log_context(customer_id: Optional[str], document: Optional[str] = None):
    """Set customer/document context for logging."""
    if _logger_instance:
        _logger_instance.set_context(customer_id, document)


def configure_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> logging.Logger:
    """Rebuild the global logger with the configured level and directory."""
    global _logger_instance
    _logger_instance = StatementFlowLogger(log_level, log_dir)
    return _logger_instance.get_logger()
