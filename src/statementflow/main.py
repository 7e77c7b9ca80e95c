"""Command-line entry point."""
import argparse
import json
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from .config.manager import ConfigManager
from .config.settings import AppSettings
from .ingest.models import RawDocument
from .orchestrator.ledger import JsonLedgerWriter
from .orchestrator.processor import build_orchestrator
from .storage.installment_store import SqliteInstallmentStore
from .utils.exceptions import ConfigError, StatementFlowError
from .utils.logger import configure_logging, get_logger

logger = get_logger()


def _load_settings(config_path: Optional[str]) -> AppSettings:
    settings = AppSettings.load(Path(config_path) if config_path else None)
    settings.validate()
    configure_logging(settings.log_level, settings.logs_path)
    return settings


def _read_document(path: Path) -> RawDocument:
    mime_type, _ = mimetypes.guess_type(path.name)
    with open(path, "rb") as f:
        data = f.read()
    return RawDocument(data=data, mime_type=mime_type or "application/octet-stream", name=path.name)


def ingest_command(settings: AppSettings, files: List[str], customer_id: Optional[str],
                   output: Optional[str], workers: int) -> int:
    """Ingest files and write their payloads; returns the process exit code."""
    config_manager = ConfigManager(settings.data_path)
    config = config_manager.load_config()
    is_valid, message = config_manager.validate_config(config, llm_required=False)
    if not is_valid:
        logger.critical(f"Invalid configuration: {message}")
        return 2
    customer_id = customer_id or config.default_customer_id

    if output and len(files) > 1:
        logger.critical("--output can only be used with a single file")
        return 2

    writer = JsonLedgerWriter(settings.ledger_path, Path(output) if output else None)
    orchestrator = build_orchestrator(settings, config, ledger_writer=writer)

    documents = []
    for name in files:
        path = Path(name)
        if not path.is_file():
            logger.error(f"File not found: {path}")
            return 1
        documents.append(_read_document(path))

    results = orchestrator.process_many(documents, customer_id, max_workers=workers)
    failed = 0
    for result in results:
        if result.succeeded:
            payload = result.payload
            print(
                f"✓ {result.document_name}: {payload.document_type.value}, "
                f"{len(payload.transactions)} transactions"
                + (" (partial)" if payload.partial else "")
            )
        else:
            failed += 1
            print(f"✗ {result.document_name}: {result.error}")
    return 1 if failed else 0


def list_plans_command(settings: AppSettings, customer_id: Optional[str]) -> None:
    """Print stored installment plans for a customer."""
    customer_id = customer_id or ConfigManager(settings.data_path).load_config().default_customer_id
    store = SqliteInstallmentStore(settings.database_path)
    plans = store.list_plans(customer_id)
    if not plans:
        print(f"No installment plans stored for customer: {customer_id}")
        return
    print(json.dumps([plan.to_dict() for plan in plans], ensure_ascii=False, indent=2))


def clear_plans_command(settings: AppSettings, customer_id: Optional[str]) -> None:
    """Delete stored installment plans for one customer or all customers."""
    store = SqliteInstallmentStore(settings.database_path)
    deleted = store.clear(customer_id)
    if customer_id:
        print(f"✓ Cleared {deleted} installment plans for customer: {customer_id}")
    else:
        print(f"✓ Cleared {deleted} installment plans (all customers)")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for StatementFlow."""
    parser = argparse.ArgumentParser(description="StatementFlow financial document ingestion")
    parser.add_argument("--config", help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Extract transactions from documents")
    ingest.add_argument("files", nargs="+", help="PDF or text files")
    ingest.add_argument("--customer", help="Customer ID (default from config.json)")
    ingest.add_argument("--output", help="Write the payload to this file (single input only)")
    ingest.add_argument("--workers", type=int, default=1, help="Documents processed in parallel")

    list_plans = subparsers.add_parser("list-plans", help="Show stored installment plans")
    list_plans.add_argument("--customer", help="Customer ID (default from config.json)")

    clear_plans = subparsers.add_parser("clear-plans", help="Delete stored installment plans")
    clear_plans.add_argument("--customer", help="Customer ID (default: all customers)")

    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args.config)
        if args.command == "ingest":
            return ingest_command(settings, args.files, args.customer, args.output, args.workers)
        if args.command == "list-plans":
            list_plans_command(settings, args.customer)
        elif args.command == "clear-plans":
            clear_plans_command(settings, args.customer)
        return 0
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        return 2
    except StatementFlowError as e:
        logger.critical(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
