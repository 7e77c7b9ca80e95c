"""End-to-end tests for the ingestion orchestrator."""
import json
import shutil
import tempfile
import time
import unittest
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

from statementflow.config.settings import AppSettings
from statementflow.ingest.categories import CategoryTable
from statementflow.ingest.extractor import TransactionExtractor
from statementflow.ingest.models import DocumentKind, ExtractedText, RawDocument
from statementflow.ocr.pdf_text import PdfTextExtractor
from statementflow.orchestrator.ledger import JsonLedgerWriter
from statementflow.orchestrator.processor import IngestionOrchestrator
from statementflow.storage.installment_store import InMemoryInstallmentStore
from statementflow.utils.exceptions import ExtractionUnavailable


CARD_STATEMENT = """NOVO BANCO
Extrato de Conta Cartão
Fatura do Cartão de Crédito
Limite de crédito: 5.000,00 EUR
N.º Cartão Nome
0342******9766 GOLD 360 ANDRE CRUZ SOUZA
0342******8752 GOLD 360 MARIA CRUZ SOUZA

Cartão n.º 0342******9766
05/01/2024 CONTINENTE CASCAIS 45,32
12/01/2024 WORTEN ALMADA 85,00

Cartão n.º 0342******8752
20/01/2024 PAGAMENTO RECEBIDO 200,00

Pagamento a prestações
Prestações Ref.ª: 00122905
Transação: WORTEN ALMADA
Data: 15/01/2024
N.º Prestação 3/6
Valor: 85,00
"""


class StaticTextExtractor:
    """Returns the same text for every document."""

    def __init__(self, text):
        self.text = text

    def extract_text(self, data, mime_type):
        return ExtractedText(text=self.text, pages=1)


class RecordingWriter:

    def __init__(self):
        self.payloads = []

    def write(self, payload):
        self.payloads.append(payload)


class FailingWriter:
    """Raises for one document name and records the rest."""

    def __init__(self, failing_name):
        self.failing_name = failing_name
        self.payloads = []

    def write(self, payload):
        if payload.document_name == self.failing_name:
            raise OSError("disk full")
        self.payloads.append(payload)


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class SlowExtractor:
    """Regex extraction that advances a fake clock for every chunk."""

    def __init__(self, categories, clock, step):
        self.categories = categories
        self.inner = TransactionExtractor(categories, llm_enabled=False)
        self.clock = clock
        self.step = step

    def start_document(self, classification, diagnostics, base_year=None):
        document = self.inner.start_document(classification, diagnostics, base_year)

        def extract(chunk):
            self.clock.now += self.step
            return document.extract(chunk)

        return SimpleNamespace(extract=extract)


class TestIngestionOrchestrator(unittest.TestCase):
    """Test the full document pipeline with the model path disabled."""

    @classmethod
    def setUpClass(cls):
        cls.categories = CategoryTable()

    def setUp(self):
        self.store = InMemoryInstallmentStore()
        self.writer = RecordingWriter()

    def make_orchestrator(self, text_extractor=None, extractor=None, writer=None, clock=None, **settings):
        settings.setdefault("llm_enabled", False)
        app_settings = AppSettings(**settings)
        return IngestionOrchestrator(
            settings=app_settings,
            text_extractor=text_extractor or PdfTextExtractor(),
            extractor=extractor or TransactionExtractor(self.categories, llm_enabled=False),
            installment_store=self.store,
            ledger_writer=writer or self.writer,
            categories=self.categories,
            clock=clock or time.monotonic,
        )

    def card_document(self):
        return RawDocument(CARD_STATEMENT.encode("utf-8"), "text/plain", "fatura-janeiro.txt")

    def test_card_statement(self):
        payload = self.make_orchestrator().process(self.card_document(), "customer1")

        self.assertEqual(payload.document_type, DocumentKind.CREDIT_CARD_STATEMENT)
        self.assertEqual(payload.detected_institution, "NOVO_BANCO")
        self.assertFalse(payload.partial)

        cards = payload.credit_cards_info
        self.assertEqual([c.holder_name for c in cards], ["ANDRE CRUZ SOUZA", "MARIA CRUZ SOUZA"])
        self.assertEqual([c.is_dependent for c in cards], [False, True])

        amounts = [t.amount for t in payload.transactions]
        self.assertEqual(amounts, [Decimal("45.32"), Decimal("85.00"), Decimal("-200.00")])
        worten = payload.transactions[1]
        self.assertEqual(worten.installment_info.number, 3)
        self.assertEqual(worten.installment_info.total, 6)
        self.assertEqual(worten.category, "Compras")

        plan = payload.installment_details["00122905"]
        self.assertEqual(plan.total_installments, 6)
        self.assertEqual([s.number for s in plan.installments_seen], [3])
        self.assertEqual(plan.original_amount, Decimal("510.00"))
        self.assertEqual(payload.diagnostics.dropped_installment_blocks, 0)

        self.assertEqual(self.writer.payloads, [payload])

    def test_reprocessing_is_idempotent(self):
        orchestrator = self.make_orchestrator()
        orchestrator.process(self.card_document(), "customer1")
        orchestrator.process(self.card_document(), "customer1")

        plans = self.store.list_plans("customer1")
        self.assertEqual(len(plans), 1)
        self.assertEqual(len(plans[0].installments_seen), 1)

    def test_next_statement_extends_plan(self):
        orchestrator = self.make_orchestrator()
        orchestrator.process(self.card_document(), "customer1")
        february = CARD_STATEMENT.replace("3/6", "4/6").replace("/01/2024", "/02/2024")
        orchestrator.process(RawDocument(february.encode("utf-8"), "text/plain", "fevereiro.txt"), "customer1")

        plan = self.store.get("customer1", "00122905")
        self.assertEqual([s.number for s in plan.installments_seen], [3, 4])
        self.assertEqual(plan.remaining_balance, Decimal("340.00"))

    def test_payload_shape(self):
        payload = self.make_orchestrator().process(self.card_document(), "customer1")
        data = payload.to_dict()

        self.assertEqual(data["documentType"], "credit_card")
        self.assertEqual(data["detectedInstitution"], "NOVO_BANCO")
        self.assertIn("creditCardsInfo", data)
        self.assertIn("00122905", data["installmentDetails"])
        self.assertEqual(data["transactions"][2]["amount"], "-200.00")
        # Serializable as-is
        json.dumps(data, ensure_ascii=False)

    def test_chunked_document_matches_single_chunk(self):
        whole = self.make_orchestrator().process(self.card_document(), "customer1")
        chunked = self.make_orchestrator(max_chunk_chars=200).process(self.card_document(), "customer2")

        self.assertEqual(
            [t.natural_key for t in chunked.transactions],
            [t.natural_key for t in whole.transactions],
        )
        self.assertGreater(len(chunked.diagnostics.fallback_chunks), 1)

    def test_bank_statement_has_no_card_fields(self):
        text = (
            "CAIXA GERAL DE DEPÓSITOS\nExtrato de conta à ordem\nSaldo anterior 1.000,00\n"
            "03/01/2024 03/01/2024 TRF RECEBIDA SALARIO 1.500,00 C 2.500,00\n"
            "04/01/2024 04/01/2024 COMPRA PINGO DOCE 32,10 D 2.467,90\n"
        )
        payload = self.make_orchestrator(StaticTextExtractor(text)).process(
            RawDocument(b"%PDF", "application/pdf", "extrato.pdf")
        )

        self.assertEqual(payload.document_type, DocumentKind.BANK_STATEMENT)
        self.assertEqual([t.amount for t in payload.transactions], [Decimal("1500.00"), Decimal("-32.10")])
        self.assertNotIn("creditCardsInfo", payload.to_dict())

    def test_empty_text_raises(self):
        orchestrator = self.make_orchestrator(StaticTextExtractor("   \n\n "))
        with self.assertRaises(ExtractionUnavailable):
            orchestrator.process(RawDocument(b"", "application/pdf", "scan.pdf"))
        self.assertEqual(self.writer.payloads, [])

    def test_process_many_reports_failures(self):
        orchestrator = self.make_orchestrator()
        documents = [
            self.card_document(),
            RawDocument(b"GIF89a", "image/gif", "photo.gif"),
        ]
        results = orchestrator.process_many(documents, "customer1", max_workers=2)

        self.assertEqual([r.document_name for r in results], ["fatura-janeiro.txt", "photo.gif"])
        self.assertTrue(results[0].succeeded)
        self.assertFalse(results[1].succeeded)
        self.assertIn("image/gif", results[1].error)

    def test_card_words_on_bank_statement(self):
        text = (
            "Extrato de conta à ordem\n"
            "IBAN PT50 0035 0000 0000 0000 0000 0\n"
            "Saldo anterior 1.000,00\n"
            "02/01/2024 02/01/2024 PAGAMENTO CARTAO DE CREDITO 300,00 D 700,00\n"
            "03/01/2024 03/01/2024 PREST. 3 CREDITO HABITACAO 450,00 D 250,00\n"
            "04/01/2024 04/01/2024 COMPRA PINGO DOCE 32,10 D 217,90\n"
        )
        payload = self.make_orchestrator(StaticTextExtractor(text)).process(
            RawDocument(b"%PDF", "application/pdf", "extrato-fevereiro.pdf")
        )

        self.assertEqual(payload.document_type, DocumentKind.BANK_STATEMENT)
        self.assertEqual(
            [t.amount for t in payload.transactions],
            [Decimal("-300.00"), Decimal("-450.00"), Decimal("-32.10")],
        )

    def test_process_many_survives_writer_error(self):
        writer = FailingWriter("broken.txt")
        orchestrator = self.make_orchestrator(writer=writer)
        documents = [
            self.card_document(),
            RawDocument(CARD_STATEMENT.encode("utf-8"), "text/plain", "broken.txt"),
            RawDocument(CARD_STATEMENT.encode("utf-8"), "text/plain", "fatura-fevereiro.txt"),
        ]
        results = orchestrator.process_many(documents, "customer1", max_workers=2)

        self.assertEqual([r.succeeded for r in results], [True, False, True])
        self.assertIn("OSError", results[1].error)
        self.assertIn("disk full", results[1].error)
        self.assertEqual(len(writer.payloads), 2)

    def test_time_budget_returns_partial_payload(self):
        clock = FakeClock()
        orchestrator = self.make_orchestrator(
            extractor=SlowExtractor(self.categories, clock, step=30),
            clock=clock,
            max_chunk_chars=250,
            time_budget_seconds=45,
        )
        payload = orchestrator.process(self.card_document(), "customer1")

        # header and card 1 ran; card 2 and installments were never started
        self.assertTrue(payload.partial)
        skipped = payload.diagnostics.skipped_chunks
        self.assertEqual(len(skipped), 2)
        self.assertTrue(skipped[0].startswith("card 2"))
        self.assertEqual(skipped[1], "installments")
        self.assertEqual([t.amount for t in payload.transactions], [Decimal("45.32"), Decimal("85.00")])

        data = payload.to_dict()
        self.assertTrue(data["partial"])
        self.assertEqual(data["diagnostics"]["skippedChunks"], skipped)
        self.assertTrue(data["diagnostics"]["budgetExceeded"])
        self.assertEqual(self.writer.payloads, [payload])


class TestJsonLedgerWriter(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_write_payload(self):
        writer = JsonLedgerWriter(self.test_dir)
        orchestrator = IngestionOrchestrator(
            settings=AppSettings(llm_enabled=False),
            text_extractor=PdfTextExtractor(),
            extractor=TransactionExtractor(CategoryTable(), llm_enabled=False),
            ledger_writer=writer,
        )
        payload = orchestrator.process(RawDocument(CARD_STATEMENT.encode("utf-8"), "text/plain", "fatura.txt"))
        path = writer.write(payload)

        self.assertTrue(path.name.startswith("fatura-"))
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(len(data["transactions"]), 3)
        self.assertEqual(len(data["creditCardsInfo"]), 2)


if __name__ == "__main__":
    unittest.main()
