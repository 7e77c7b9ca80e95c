"""Per-chunk transaction extraction: LLM first, regex fallback."""
import threading
from typing import List, Optional, Protocol

from .categories import CategoryTable
from .fallback import FallbackExtractor
from .models import (
    Chunk,
    Diagnostics,
    DocumentClassification,
    DocumentKind,
    InstallmentInfo,
    ReceiptItem,
    Transaction,
)
from .signs import signed_amount
from ..llm.prompts import build_extraction_prompt
from ..llm.schemas import ReceiptItemSchema, TransactionSchema, parse_response
from ..utils.exceptions import LLMError, SchemaViolation
from ..utils.logger import get_logger

logger = get_logger()

LLM_SERVICE = "llm"
DEFAULT_LLM_CONFIDENCE = 0.8


class ExtractionClient(Protocol):
    def extract(self, prompt_context: str, chunk_text: str) -> str: ...


class QuotaChecker(Protocol):
    def try_acquire(self, service: str) -> bool: ...


class TransactionExtractor:
    """Holds the collaborators shared by every document."""

    def __init__(self, categories: CategoryTable, llm_client: Optional[ExtractionClient] = None,
                 quota: Optional[QuotaChecker] = None, llm_enabled: bool = True,
                 failure_budget: int = 3, fallback: Optional[FallbackExtractor] = None):
        """
        Initialize extractor.

        Args:
            categories: Category table for lookups and the prompt
            llm_client: Client for the model path; None disables it
            quota: Consulted before every model call
            llm_enabled: Switch for the model path
            failure_budget: Model failures tolerated per document before the
                remaining chunks go straight to the fallback
            fallback: Regex extractor
        """
        self.categories = categories
        self.llm_client = llm_client
        self.quota = quota
        self.llm_enabled = llm_enabled and llm_client is not None
        self.failure_budget = failure_budget
        self.fallback = fallback or FallbackExtractor(categories)

    def start_document(self, classification: DocumentClassification, diagnostics: Diagnostics,
                       base_year: Optional[int] = None) -> "DocumentExtraction":
        """Begin extraction for one document; the returned object is safe to share between threads."""
        return DocumentExtraction(self, classification, diagnostics, base_year)


class DocumentExtraction:
    """Extraction state for one document: failure budget and diagnostics."""

    def __init__(self, extractor: TransactionExtractor, classification: DocumentClassification,
                 diagnostics: Diagnostics, base_year: Optional[int]):
        self.extractor = extractor
        self.classification = classification
        self.diagnostics = diagnostics
        self.base_year = base_year
        self._lock = threading.Lock()

    def extract(self, chunk: Chunk) -> List[Transaction]:
        """
        Extract transactions from one chunk.

        Model output that breaks the contract or a failed model call sends
        this chunk, and only this chunk, to the regex fallback.
        """
        if self._llm_available(chunk):
            try:
                transactions = self._extract_with_llm(chunk)
                logger.info(f"LLM extracted {len(transactions)} transactions from '{chunk.label}'")
                return transactions
            except SchemaViolation as e:
                logger.warning(f"Schema violation for '{chunk.label}', using fallback: {e}")
                with self._lock:
                    self.diagnostics.schema_violations += 1
                    self.diagnostics.llm_failures += 1
            except LLMError as e:
                logger.warning(f"LLM extraction failed for '{chunk.label}', using fallback: {e}")
                with self._lock:
                    self.diagnostics.llm_failures += 1

        transactions = self.extractor.fallback.extract(
            chunk.text, self.classification, self.base_year, chunk.label
        )
        with self._lock:
            self.diagnostics.fallback_chunks.append(chunk.label)
        logger.info(f"Fallback extracted {len(transactions)} transactions from '{chunk.label}'")
        return transactions

    def _llm_available(self, chunk: Chunk) -> bool:
        extractor = self.extractor
        if not extractor.llm_enabled:
            return False
        with self._lock:
            if self.diagnostics.llm_failures >= extractor.failure_budget:
                logger.debug(f"LLM failure budget spent; skipping model for '{chunk.label}'")
                return False
        if extractor.quota is not None and not extractor.quota.try_acquire(LLM_SERVICE):
            logger.warning(f"LLM quota exhausted; using fallback for '{chunk.label}'")
            return False
        return True

    def _extract_with_llm(self, chunk: Chunk) -> List[Transaction]:
        prompt = build_extraction_prompt(
            self.classification, chunk.label, self.extractor.categories.categories
        )
        raw = self.extractor.llm_client.extract(prompt, chunk.text)
        response = parse_response(raw)
        transactions = [self._to_transaction(item, chunk) for item in response.transactions]
        if response.items:
            if self.classification.kind == DocumentKind.RECEIPT:
                # Items belong to the receipt total, the first transaction
                transactions[0].items = [self._to_item(item) for item in response.items]
            else:
                logger.debug(f"Ignoring {len(response.items)} receipt items in '{chunk.label}'")
        return transactions

    def _to_item(self, item: ReceiptItemSchema) -> ReceiptItem:
        categories = self.extractor.categories
        category = item.category if categories.is_known_category(item.category) else None
        return ReceiptItem(
            description=item.description.strip(),
            total_price=item.total_price,
            quantity=item.quantity,
            unit_price=item.unit_price,
            category=category or categories.lookup(item.description),
        )

    def _to_transaction(self, item: TransactionSchema, chunk: Chunk) -> Transaction:
        categories = self.extractor.categories
        category = item.category if categories.is_known_category(item.category) else None
        if category is None:
            category = categories.lookup(item.description)

        installment_info = None
        if item.installment_number is not None:
            installment_info = InstallmentInfo(item.installment_number, item.installment_total)

        confidence = item.confidence if item.confidence is not None else DEFAULT_LLM_CONFIDENCE
        return Transaction(
            date=item.date,
            description=item.description.strip(),
            amount=signed_amount(self.classification.kind, item.direction, item.amount),
            currency=item.currency or self.classification.currency,
            category=category,
            installment_info=installment_info,
            confidence=min(max(confidence, 0.0), 1.0),
            source="llm",
            provenance=chunk.label,
        )
