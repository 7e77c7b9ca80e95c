"""StatementFlow: financial document ingestion."""

__version__ = "1.0.0"
