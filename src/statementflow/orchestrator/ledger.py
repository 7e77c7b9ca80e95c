"""Ledger writer that stores payloads as JSON files."""
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..ingest.models import IngestionPayload
from ..utils.logger import get_logger

logger = get_logger()


class JsonLedgerWriter:
    """Writes each payload to its own JSON file for the downstream importer."""

    def __init__(self, output_dir: Path, output_file: Optional[Path] = None):
        """
        Initialize writer.

        Args:
            output_dir: Directory for generated payload files
            output_file: Fixed file to write instead, overwritten on each call
        """
        self.output_dir = Path(output_dir)
        self.output_file = Path(output_file) if output_file else None

    def write(self, payload: IngestionPayload) -> Path:
        """Serialize payload; returns the written path."""
        path = self.output_file or self.output_dir / self._file_name(payload)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload.to_dict(), f, ensure_ascii=False, indent=2)
        logger.info(f"Wrote {len(payload.transactions)} transactions to {path}")
        return path

    @staticmethod
    def _file_name(payload: IngestionPayload) -> str:
        stem = Path(payload.document_name or "document").stem
        stem = re.sub(r"[^\w.-]+", "_", stem)
        return f"{stem}-{datetime.now().strftime('%Y%m%d%H%M%S%f')}.json"
