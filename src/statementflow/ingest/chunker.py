"""Chunking of large statements and budgeted per-chunk extraction."""
import concurrent.futures
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cards import MASKED_NUMBER_PATTERN
from .models import Chunk, ChunkBoundary, DocumentClassification
from .sections import CARD_SECTION_HEADER, INSTALLMENT_SECTION_HEADER
from ..utils.logger import get_logger

logger = get_logger()


class ChunkingController:
    """Splits normalized text into bounded chunks along natural sections."""

    def __init__(self, max_chunk_chars: int = 12000):
        if max_chunk_chars < 1:
            raise ValueError("max_chunk_chars must be positive")
        self.max_chunk_chars = max_chunk_chars

    def split(self, text: str, classification: Optional[DocumentClassification] = None) -> List[Chunk]:
        """
        Split text into chunks that together cover it exactly.

        A text within budget is one chunk. Otherwise it is cut into a header,
        one section per card and a trailing installments section; only a
        section still over budget is cut further, at the last newline before
        the limit where there is one.

        Args:
            text: Normalized document text
            classification: Document classification, used for labelling

        Returns:
            Ordered list of Chunk
        """
        if len(text) <= self.max_chunk_chars:
            return [Chunk(ChunkBoundary(0, len(text), "document"), text)]

        sections = self.find_sections(text)
        chunks = []
        for boundary in sections:
            for piece in self._hard_split(text, boundary):
                chunks.append(Chunk(piece, text[piece.start:piece.end]))

        kind = classification.kind.value if classification else "unknown"
        logger.info(
            f"Split {len(text)} chars of {kind} text into {len(chunks)} chunks "
            f"({len(sections)} sections)"
        )
        return chunks

    def find_sections(self, text: str) -> List[ChunkBoundary]:
        """Contiguous section spans: header, cards, then installments."""
        cuts: List[Tuple[int, str]] = []
        for index, match in enumerate(CARD_SECTION_HEADER.finditer(text), start=1):
            number = MASKED_NUMBER_PATTERN.search(match.group(0))
            label = f"card {index}" + (f" ({number.group(0)})" if number else "")
            cuts.append((match.start(), label))

        last_card = cuts[-1][0] if cuts else -1
        for match in INSTALLMENT_SECTION_HEADER.finditer(text):
            if match.start() > last_card:
                cuts.append((match.start(), "installments"))
                break

        if not cuts:
            return [ChunkBoundary(0, len(text), "document")]

        sections = []
        if cuts[0][0] > 0:
            sections.append(ChunkBoundary(0, cuts[0][0], "header"))
        for index, (start, label) in enumerate(cuts):
            end = cuts[index + 1][0] if index + 1 < len(cuts) else len(text)
            sections.append(ChunkBoundary(start, end, label))
        return sections

    def _hard_split(self, text: str, boundary: ChunkBoundary) -> List[ChunkBoundary]:
        if boundary.length <= self.max_chunk_chars:
            return [boundary]

        pieces = []
        start = boundary.start
        part = 1
        while start < boundary.end:
            limit = min(start + self.max_chunk_chars, boundary.end)
            end = limit
            if limit < boundary.end:
                newline = text.rfind("\n", start, limit)
                if newline > start:
                    end = newline + 1
            pieces.append(ChunkBoundary(start, end, f"{boundary.label} part {part}"))
            start = end
            part += 1
        logger.debug(f"Section '{boundary.label}' hard-split into {len(pieces)} pieces")
        return pieces


@dataclass
class RunResult:
    """Outcome of running extraction over a document's chunks."""
    outputs: List[Tuple[Chunk, Any]] = field(default_factory=list)
    failed: List[Chunk] = field(default_factory=list)
    skipped: List[Chunk] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def partial(self) -> bool:
        return bool(self.skipped)


class ChunkRunner:
    """
    Runs an extraction callable over chunks under an aggregate time budget.

    Once the budget is spent no new call is started. Calls already running
    are allowed to finish and their results are kept.
    """

    def __init__(self, max_concurrency: int = 1, time_budget_seconds: float = 45.0,
                 clock: Callable[[], float] = time.monotonic):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.time_budget_seconds = time_budget_seconds
        self.clock = clock

    def run(self, chunks: List[Chunk], extract_fn: Callable[[Chunk], Any]) -> RunResult:
        """
        Run extract_fn over chunks.

        Args:
            chunks: Chunks in document order
            extract_fn: Called once per started chunk

        Returns:
            RunResult with outputs in chunk order
        """
        start = self.clock()
        if self.max_concurrency == 1:
            result = self._run_sequential(chunks, extract_fn, start)
        else:
            result = self._run_concurrent(chunks, extract_fn, start)
        result.elapsed = self.clock() - start

        if result.partial:
            logger.warning(
                f"Time budget of {self.time_budget_seconds}s exhausted: "
                f"{len(result.skipped)} of {len(chunks)} chunks not started"
            )
        return result

    def _exhausted(self, start: float) -> bool:
        return self.clock() - start >= self.time_budget_seconds

    def _run_sequential(self, chunks, extract_fn, start) -> RunResult:
        result = RunResult()
        for index, chunk in enumerate(chunks):
            if self._exhausted(start):
                result.skipped = list(chunks[index:])
                break
            try:
                result.outputs.append((chunk, extract_fn(chunk)))
            except Exception as e:
                logger.error(f"Extraction failed for chunk '{chunk.label}': {e}")
                result.failed.append(chunk)
        return result

    def _run_concurrent(self, chunks, extract_fn, start) -> RunResult:
        result = RunResult()
        outputs: Dict[int, Any] = {}
        failed: Dict[int, Chunk] = {}
        in_flight: Dict[concurrent.futures.Future, int] = {}
        next_index = 0

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_concurrency) as executor:
            while True:
                while (next_index < len(chunks) and len(in_flight) < self.max_concurrency
                       and not self._exhausted(start)):
                    future = executor.submit(extract_fn, chunks[next_index])
                    in_flight[future] = next_index
                    next_index += 1

                if not in_flight:
                    break

                done, _ = concurrent.futures.wait(in_flight, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    index = in_flight.pop(future)
                    try:
                        outputs[index] = future.result()
                    except Exception as e:
                        logger.error(f"Extraction failed for chunk '{chunks[index].label}': {e}")
                        failed[index] = chunks[index]

        result.outputs = [(chunks[i], outputs[i]) for i in sorted(outputs)]
        result.failed = [failed[i] for i in sorted(failed)]
        result.skipped = list(chunks[next_index:])
        return result
