"""Utility modules."""
from .logger import get_logger, set_log_context
from .exceptions import (
    StatementFlowError,
    ConfigError,
    ExtractionUnavailable,
    QuotaExceeded,
    LLMError,
    SchemaViolation,
    RetryableError,
    RetryableLLMError
)
from .retry import retry_with_backoff
from .parsing import parse_amount, parse_date, infer_year

__all__ = [
    "get_logger",
    "set_log_context",
    "StatementFlowError",
    "ConfigError",
    "ExtractionUnavailable",
    "QuotaExceeded",
    "LLMError",
    "SchemaViolation",
    "RetryableError",
    "RetryableLLMError",
    "retry_with_backoff",
    "parse_amount",
    "parse_date",
    "infer_year"
]
