"""Tests for statement chunking and the budgeted chunk runner."""
import threading
import unittest

from statementflow.ingest.chunker import ChunkingController, ChunkRunner
from statementflow.ingest.models import Chunk, ChunkBoundary


def card_section(number, lines):
    body = "\n".join(f"{day:02d}/01/2024 COMPRA LOJA {day} {day},00" for day in range(1, lines + 1))
    return f"Cartão n.º 0342******{number}\n{body}\n"


STATEMENT = (
    "NOVO BANCO\nExtrato de Conta Cartão\nLimite de crédito: 5.000,00 EUR\n\n"
    + card_section("9766", 12)
    + card_section("8752", 6)
    + "Pagamento a prestações\nPrestações Ref.ª: 00122905\nN.º Prestação 3/6\nValor: 85,00\n"
)


class FakeClock:
    """Monotonic clock advanced by the code under test."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestChunkingController(unittest.TestCase):
    """Test ChunkingController functionality."""

    def assert_exact_cover(self, text, chunks):
        self.assertEqual("".join(c.text for c in chunks), text)
        self.assertEqual(chunks[0].boundary.start, 0)
        self.assertEqual(chunks[-1].boundary.end, len(text))
        for previous, current in zip(chunks, chunks[1:]):
            self.assertEqual(previous.boundary.end, current.boundary.start)
        for chunk in chunks:
            self.assertEqual(text[chunk.boundary.start:chunk.boundary.end], chunk.text)

    def test_small_text_single_chunk(self):
        chunks = ChunkingController(max_chunk_chars=len(STATEMENT)).split(STATEMENT)

        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].label, "document")
        self.assertEqual(chunks[0].text, STATEMENT)

    def test_sections_cover_text(self):
        controller = ChunkingController(max_chunk_chars=400)
        chunks = controller.split(STATEMENT)

        self.assert_exact_cover(STATEMENT, chunks)
        for chunk in chunks:
            self.assertLessEqual(len(chunk.text), 400)
        labels = [c.label for c in chunks]
        self.assertEqual(labels[0], "header")
        self.assertTrue(any(label.startswith("card 1 (0342******9766)") for label in labels))
        self.assertTrue(any(label.startswith("card 2 (0342******8752)") for label in labels))
        self.assertEqual(labels[-1], "installments")

    def test_find_sections(self):
        sections = ChunkingController().find_sections(STATEMENT)

        self.assertEqual(
            [s.label for s in sections],
            ["header", "card 1 (0342******9766)", "card 2 (0342******8752)", "installments"],
        )

    def test_hard_split_at_newlines(self):
        text = "\n".join(f"line {i:03d} with some padding" for i in range(50))
        chunks = ChunkingController(max_chunk_chars=100).split(text)

        self.assert_exact_cover(text, chunks)
        self.assertGreater(len(chunks), 1)
        for chunk in chunks[:-1]:
            self.assertLessEqual(len(chunk.text), 100)
            self.assertTrue(chunk.text.endswith("\n"))
        self.assertEqual(chunks[0].label, "document part 1")

    def test_hard_split_without_newlines(self):
        text = "x" * 250
        chunks = ChunkingController(max_chunk_chars=100).split(text)

        self.assert_exact_cover(text, chunks)
        self.assertEqual([len(c.text) for c in chunks], [100, 100, 50])

    def test_invalid_budget(self):
        with self.assertRaises(ValueError):
            ChunkingController(max_chunk_chars=0)


def make_chunks(count):
    return [Chunk(ChunkBoundary(i, i + 1, f"chunk {i}"), str(i)) for i in range(count)]


class TestChunkRunner(unittest.TestCase):
    """Test ChunkRunner functionality."""

    def test_all_chunks_in_order(self):
        runner = ChunkRunner(max_concurrency=1, time_budget_seconds=45)
        result = runner.run(make_chunks(3), lambda chunk: chunk.text)

        self.assertEqual([output for _, output in result.outputs], ["0", "1", "2"])
        self.assertFalse(result.partial)

    def test_budget_exhausted_marks_partial(self):
        """Chunks not started once the budget is spent are reported as skipped."""
        clock = FakeClock()

        def slow_extract(chunk):
            clock.now += 30
            return chunk.text

        runner = ChunkRunner(max_concurrency=1, time_budget_seconds=45, clock=clock)
        chunks = make_chunks(4)
        result = runner.run(chunks, slow_extract)

        self.assertEqual([output for _, output in result.outputs], ["0", "1"])
        self.assertEqual(result.skipped, chunks[2:])
        self.assertTrue(result.partial)
        self.assertEqual(result.elapsed, 60)

    def test_failed_chunk_does_not_stop_run(self):
        def extract(chunk):
            if chunk.text == "1":
                raise RuntimeError("boom")
            return chunk.text

        result = ChunkRunner().run(make_chunks(3), extract)

        self.assertEqual([output for _, output in result.outputs], ["0", "2"])
        self.assertEqual([c.label for c in result.failed], ["chunk 1"])
        self.assertFalse(result.partial)

    def test_concurrent_results_keep_chunk_order(self):
        release = threading.Event()

        def extract(chunk):
            # First chunk finishes last
            if chunk.text == "0":
                release.wait(timeout=5)
            else:
                release.set()
            return chunk.text

        runner = ChunkRunner(max_concurrency=3, time_budget_seconds=45)
        result = runner.run(make_chunks(5), extract)

        self.assertEqual([output for _, output in result.outputs], ["0", "1", "2", "3", "4"])
        self.assertEqual(result.skipped, [])

    def test_concurrent_budget_stops_new_submissions(self):
        clock = FakeClock()
        lock = threading.Lock()

        def extract(chunk):
            with lock:
                clock.now += 30
            return chunk.text

        runner = ChunkRunner(max_concurrency=2, time_budget_seconds=45, clock=clock)
        chunks = make_chunks(6)
        result = runner.run(chunks, extract)

        self.assertTrue(result.partial)
        started = len(result.outputs)
        self.assertGreaterEqual(started, 1)
        self.assertEqual(result.skipped, chunks[started:])

    def test_invalid_concurrency(self):
        with self.assertRaises(ValueError):
            ChunkRunner(max_concurrency=0)


if __name__ == "__main__":
    unittest.main()
