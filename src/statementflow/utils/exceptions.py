"""Custom exception classes for StatementFlow."""


class StatementFlowError(Exception):
    """Base exception for StatementFlow."""
    pass


class ConfigError(StatementFlowError):
    """Configuration-related errors."""
    pass


class ExtractionUnavailable(StatementFlowError):
    """Text extraction produced nothing usable for a document."""
    pass


class QuotaExceeded(ExtractionUnavailable):
    """Daily usage quota for an external service is exhausted."""
    pass


class LLMError(StatementFlowError):
    """LLM processing errors."""
    pass


class SchemaViolation(LLMError):
    """LLM output does not match the transaction contract."""
    pass


# Retryable errors
class RetryableError(StatementFlowError):
    """Base class for errors that should trigger retry."""
    pass


class RetryableLLMError(RetryableError, LLMError):
    """LLM errors that can be retried."""
    pass
