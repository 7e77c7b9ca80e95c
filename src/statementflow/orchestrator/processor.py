"""Ingestion pipeline: text -> classification -> cards/installments -> chunks -> transactions."""
import concurrent.futures
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Protocol

from ..config.manager import Config
from ..config.settings import AppSettings
from ..ingest.cards import CardHolderExtractor
from ..ingest.categories import CategoryTable
from ..ingest.chunker import ChunkingController, ChunkRunner
from ..ingest.classifier import INSTITUTIONS, DocumentClassifier
from ..ingest.extractor import TransactionExtractor
from ..ingest.installments import InstallmentBlock, InstallmentReconstructor, annotate_transactions, merge_plan
from ..ingest.models import (
    Diagnostics,
    ExtractedText,
    IngestionPayload,
    InstallmentPlan,
    RawDocument,
    Transaction,
)
from ..ingest.normalizer import TextNormalizer
from ..llm.gemini_client import GeminiExtractionClient
from ..ocr.pdf_text import GeminiTextReader, PdfTextExtractor
from ..storage.installment_store import InMemoryInstallmentStore, SqliteInstallmentStore
from ..storage.quota import DailyQuota, UnlimitedQuota
from ..utils.exceptions import ExtractionUnavailable, StatementFlowError
from ..utils.logger import get_logger, set_log_context
from ..utils.parsing import infer_year

logger = get_logger()


class TextExtractor(Protocol):
    def extract_text(self, data: bytes, mime_type: str) -> ExtractedText: ...


class LedgerWriter(Protocol):
    def write(self, payload: IngestionPayload): ...


@dataclass
class ProcessingResult:
    document_name: str
    payload: Optional[IngestionPayload] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.payload is not None


class IngestionOrchestrator:
    """Runs one pipeline per document."""

    def __init__(self, settings: AppSettings, text_extractor: TextExtractor,
                 extractor: TransactionExtractor, installment_store=None,
                 ledger_writer: Optional[LedgerWriter] = None,
                 categories: Optional[CategoryTable] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize orchestrator.

        Args:
            settings: Application settings
            text_extractor: Turns document bytes into text
            extractor: Per-chunk transaction extractor
            installment_store: Plan store shared across documents
            ledger_writer: Receives every successful payload
            categories: Category table (its merchants are never holder names)
            clock: Monotonic clock for the extraction time budget
        """
        self.settings = settings
        self.text_extractor = text_extractor
        self.extractor = extractor
        self.installment_store = installment_store or InMemoryInstallmentStore()
        self.ledger_writer = ledger_writer
        self.categories = categories or extractor.categories

        self.normalizer = TextNormalizer()
        self.classifier = DocumentClassifier(default_currency=settings.default_currency)
        institution_names = [name.replace("_", " ") for name, _, _ in INSTITUTIONS]
        self.card_extractor = CardHolderExtractor(
            extra_stopwords=self.categories.merchant_names() + institution_names
        )
        self.amount_tolerance = Decimal(settings.installments_amount_tolerance)
        self.reconstructor = InstallmentReconstructor(
            require_total_count=settings.installments_require_total_count,
            amount_tolerance=self.amount_tolerance,
        )
        self.chunker = ChunkingController(settings.max_chunk_chars)
        self.runner = ChunkRunner(
            max_concurrency=settings.max_concurrency,
            time_budget_seconds=settings.time_budget_seconds,
            clock=clock,
        )

    def process(self, document: RawDocument, customer_id: str = "default") -> IngestionPayload:
        """
        Process one document into a ledger payload.

        Args:
            document: Uploaded document
            customer_id: Owner of the document and its installment plans

        Returns:
            IngestionPayload

        Raises:
            ExtractionUnavailable: If no text could be extracted
        """
        set_log_context(customer_id, document.name)
        logger.info(f"Processing {document.name} ({document.mime_type}, {len(document.data)} bytes)")

        extracted = self.text_extractor.extract_text(document.data, document.mime_type)
        if extracted.is_empty:
            raise ExtractionUnavailable(f"No text extracted from {document.name}")

        text = self.normalizer.normalize(extracted.text)
        if not text:
            raise ExtractionUnavailable(f"Only whitespace extracted from {document.name}")

        diagnostics = Diagnostics()
        classification = self.classifier.classify(text)
        diagnostics.classification_ambiguous = classification.ambiguous
        base_year = infer_year(text)

        cards = []
        blocks: List[InstallmentBlock] = []
        if classification.is_credit_card:
            cards = self.card_extractor.extract(text)
            scan = self.reconstructor.scan(text, base_year)
            blocks = scan.blocks
            diagnostics.dropped_installment_blocks = scan.dropped

        chunks = self.chunker.split(text, classification)
        extraction = self.extractor.start_document(classification, diagnostics, base_year)
        run = self.runner.run(chunks, extraction.extract)

        transactions: List[Transaction] = []
        for _, chunk_transactions in run.outputs:
            transactions.extend(chunk_transactions)
        diagnostics.failed_chunks = [c.label for c in run.failed]
        diagnostics.skipped_chunks = [c.label for c in run.skipped]
        diagnostics.budget_exceeded = run.partial

        plans: Dict[str, InstallmentPlan] = {}
        if blocks:
            transactions = annotate_transactions(transactions, self.reconstructor.group(blocks))
            plans = self._store_plans(customer_id, blocks)

        payload = IngestionPayload(
            document_type=classification.kind,
            detected_institution=classification.institution,
            transactions=transactions,
            credit_cards_info=cards,
            installment_details=plans,
            partial=run.partial,
            diagnostics=diagnostics,
            document_name=document.name,
        )

        logger.info(
            f"Processed {document.name}: {len(transactions)} transactions, {len(cards)} cards, "
            f"{len(plans)} installment plans, {len(chunks)} chunks"
            + (" (partial)" if payload.partial else "")
        )

        if self.ledger_writer is not None:
            self.ledger_writer.write(payload)
        return payload

    def process_many(self, documents: List[RawDocument], customer_id: str = "default",
                     max_workers: int = 1) -> List[ProcessingResult]:
        """Process several documents, each in its own pipeline run."""
        results: Dict[int, ProcessingResult] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            future_to_index = {
                executor.submit(self.process, document, customer_id): index
                for index, document in enumerate(documents)
            }
            for future in concurrent.futures.as_completed(future_to_index):
                index = future_to_index[future]
                document = documents[index]
                try:
                    results[index] = ProcessingResult(document.name, payload=future.result())
                except StatementFlowError as e:
                    logger.error(f"Failed to process {document.name}: {e}")
                    results[index] = ProcessingResult(document.name, error=str(e))
                except Exception as e:
                    logger.error(f"Unexpected error processing {document.name}: {type(e).__name__}: {e}")
                    results[index] = ProcessingResult(document.name, error=f"{type(e).__name__}: {e}")
        return [results[i] for i in sorted(results)]

    def _store_plans(self, customer_id: str, blocks: List[InstallmentBlock]) -> Dict[str, InstallmentPlan]:
        by_reference: Dict[str, List[InstallmentBlock]] = {}
        for block in blocks:
            by_reference.setdefault(block.reference_id, []).append(block)

        plans = {}
        for reference_id, ref_blocks in by_reference.items():
            plans[reference_id] = self.installment_store.update(
                customer_id,
                reference_id,
                lambda existing, ref_blocks=ref_blocks: merge_plan(existing, ref_blocks, self.amount_tolerance),
            )
        return plans


def build_orchestrator(settings: AppSettings, config: Config,
                       ledger_writer: Optional[LedgerWriter] = None,
                       persistent: bool = True) -> IngestionOrchestrator:
    """
    Wire the production collaborators from settings and secrets.

    Args:
        settings: Application settings
        config: Secrets (Gemini API key)
        ledger_writer: Payload consumer
        persistent: Use the SQLite plan store and daily quota

    Returns:
        IngestionOrchestrator
    """
    categories = CategoryTable(fuzzy_threshold=settings.category_fuzzy_threshold)

    if persistent:
        store = SqliteInstallmentStore(settings.database_path)
        quota = DailyQuota(settings.database_path, settings.quota_daily_limit)
    else:
        store = InMemoryInstallmentStore()
        quota = UnlimitedQuota()

    llm_client = None
    if settings.llm_enabled and config.gemini_api_key:
        llm_client = GeminiExtractionClient(
            api_key=config.gemini_api_key,
            model_name=settings.llm_model_name,
            timeout_seconds=settings.llm_timeout_seconds,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            max_retries=settings.llm_max_retries,
            initial_delay=settings.llm_initial_delay_seconds,
            backoff_factor=settings.llm_backoff_factor,
        )
    elif settings.llm_enabled:
        logger.warning("LLM enabled but no Gemini API key configured; using regex extraction only")

    vision_reader = None
    if settings.vision_enabled and config.gemini_api_key:
        vision_reader = GeminiTextReader(config.gemini_api_key, settings.vision_model_name)

    extractor = TransactionExtractor(
        categories=categories,
        llm_client=llm_client,
        quota=quota,
        llm_enabled=settings.llm_enabled,
        failure_budget=settings.llm_failure_budget,
    )
    return IngestionOrchestrator(
        settings=settings,
        text_extractor=PdfTextExtractor(vision_reader=vision_reader, quota=quota),
        extractor=extractor,
        installment_store=store,
        ledger_writer=ledger_writer,
        categories=categories,
    )
