"""Installment plan reconstruction from statement text."""
import re
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence

from .models import InstallmentInfo, InstallmentPlan, InstallmentSighting, Transaction
from .sections import CARD_SECTION_HEADER, INSTALLMENT_ANCHOR
from ..utils.logger import get_logger
from ..utils.parsing import DATE_PATTERN, parse_amount, parse_date

logger = get_logger()

AMOUNT = r"(\d{1,3}(?:[.\s]\d{3})*,\d{2}|\d{1,3}(?:,\d{3})*\.\d{2}|\d+[.,]\d{2})"

# Top-of-statement line: "PREST.3 - PAG. A PREST. REF.00122905"
TOP_REFERENCE = re.compile(
    r"PREST\.\s*(\d{1,2})\s*-\s*PAG\.\s*A\s*PREST\.\s*REF\.?\s*[ºª°]?\s*(\d{5,})",
    re.IGNORECASE,
)

REFERENCE = re.compile(
    r"\bref(?:er[eê]ncia|erence)?\.?\s*[ºª°]?\s*[.:]?\s*(\d{5,})",
    re.IGNORECASE,
)

COUNTERS = [
    re.compile(r"n\.?\s*[ºo°]?\s*(?:da\s*)?presta[cç][aã]o\s*:?\s*(\d{1,2})\s*/\s*(\d{1,3})", re.IGNORECASE),
    re.compile(r"(?<![\d/])(\d{1,2})\s*/\s*(\d{1,3})\s*(?:presta[cç][oõ]es|parcelas?|installments?)", re.IGNORECASE),
    re.compile(r"(?:presta[cç][aã]o|parcela|installment)\s*(\d{1,2})\s*(?:de|of)\s*(\d{1,3})", re.IGNORECASE),
]

# Bare "3/6"; never part of a date
BARE_COUNTER = re.compile(r"(?<![\d/.])(\d{1,2})\s*/\s*(\d{1,2})(?![\d/.])")

MERCHANT = re.compile(
    r"(?:transa[cç][aã]o|comerciante|estabelecimento|merchant)\s*:\s*([^\n]+)",
    re.IGNORECASE,
)

INSTALLMENT_AMOUNT = re.compile(
    r"(?:valor(?!\s*(?:total|financiado|da\s*compra|original))(?:\s*da\s*presta[cç][aã]o)?"
    r"|montante\s*da\s*presta[cç][aã]o|installment\s*amount)"
    rf"\s*:?\s*(?:EUR|€)?\s*{AMOUNT}",
    re.IGNORECASE,
)

ORIGINAL_AMOUNT = re.compile(
    r"(?:valor\s*(?:total|financiado|da\s*compra|original)|montante\s*(?:total|financiado)"
    r"|original\s*amount|total\s*amount)"
    rf"\s*:?\s*(?:EUR|€)?\s*{AMOUNT}",
    re.IGNORECASE,
)

INTEREST_RATES = [
    re.compile(r"\bTAN\b\s*:?\s*(\d+(?:[.,]\d+)?)\s*%", re.IGNORECASE),
    re.compile(r"\bTAEG\b\s*:?\s*(\d+(?:[.,]\d+)?)\s*%", re.IGNORECASE),
    re.compile(r"(?:taxa\s*de\s*juro|interest\s*rate)\s*:?\s*(\d+(?:[.,]\d+)?)\s*%", re.IGNORECASE),
]

DATE_LABEL = re.compile(
    r"(?:data(?:\s*da\s*(?:transa[cç][aã]o|compra|opera[cç][aã]o))?|date)\s*:?\s*"
    + DATE_PATTERN.pattern,
    re.IGNORECASE,
)

# Dates that carry a year; a bare "3/6" is an installment counter, not a date
DATED = re.compile(r"(?<!\d)(\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}-\d{1,2}-\d{1,2})(?!\d)")

MIN_INSTALLMENTS = 2
MAX_INSTALLMENTS = 60


@dataclass(frozen=True)
class InstallmentBlock:
    """Fields read from one installment block of a statement."""
    reference_id: str
    number: Optional[int] = None
    total: Optional[int] = None
    merchant_name: Optional[str] = None
    amount: Optional[Decimal] = None
    original_amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    transaction_date: Optional[date] = None


@dataclass
class ScanResult:
    blocks: List[InstallmentBlock] = field(default_factory=list)
    dropped: int = 0


class InstallmentReconstructor:
    """Finds installment blocks and folds them into plans keyed by reference."""

    def __init__(self, require_total_count: bool = True, amount_tolerance: Decimal = Decimal("0.05")):
        """
        Initialize reconstructor.

        Args:
            require_total_count: Drop blocks without an N/M counter. When False
                such blocks are kept with an unknown total.
            amount_tolerance: Per-installment rounding tolerance when checking
                the stated original amount
        """
        self.require_total_count = require_total_count
        self.amount_tolerance = amount_tolerance

    def scan(self, text: str, base_year: Optional[int] = None) -> ScanResult:
        """
        Parse every installment block in the text.

        Blocks without a reference number are dropped and counted. So are
        blocks without an N/M counter when require_total_count is set.

        Args:
            text: Normalized statement text
            base_year: Year for dates printed without one

        Returns:
            ScanResult with parsed blocks in text order and the dropped count
        """
        result = ScanResult()
        top_numbers = {ref: int(number) for number, ref in TOP_REFERENCE.findall(text)}

        for segment in self._split_blocks(text):
            block = self._parse_block(segment, top_numbers, base_year)
            if block is None:
                result.dropped += 1
                continue
            result.blocks.append(block)

        if result.dropped:
            logger.info(f"Dropped {result.dropped} unparseable installment block(s)")
        logger.debug(f"Parsed {len(result.blocks)} installment block(s)")
        return result

    def reconstruct(self, text: str, base_year: Optional[int] = None) -> tuple:
        """
        Build plans from a single document.

        Returns:
            (dict of reference_id -> InstallmentPlan, dropped block count)
        """
        result = self.scan(text, base_year)
        return self.group(result.blocks), result.dropped

    def group(self, blocks: Sequence[InstallmentBlock]) -> Dict[str, InstallmentPlan]:
        """Group blocks by reference, whichever card section they came from."""
        by_reference: Dict[str, List[InstallmentBlock]] = {}
        for block in blocks:
            by_reference.setdefault(block.reference_id, []).append(block)
        return {
            ref: merge_plan(None, ref_blocks, self.amount_tolerance)
            for ref, ref_blocks in by_reference.items()
        }

    def _split_blocks(self, text: str) -> List[str]:
        """
        Cut the text at installment anchors.

        A block ends at the next anchor, the next card section header or the
        end of the text. A bare heading directly followed by another anchor
        is folded into the block that follows.
        """
        starts = [m.start() for m in INSTALLMENT_ANCHOR.finditer(text)]
        if not starts:
            return []

        section_starts = [m.start() for m in CARD_SECTION_HEADER.finditer(text)]
        segments = []
        pending_start = None
        for index, start in enumerate(starts):
            block_start = pending_start if pending_start is not None else start
            next_anchor = starts[index + 1] if index + 1 < len(starts) else len(text)
            end = min([s for s in section_starts if start < s < next_anchor] or [next_anchor])
            segment = text[start:end]

            if end == next_anchor and index + 1 < len(starts) and self._is_heading_only(segment):
                pending_start = block_start
                continue

            segments.append(text[block_start:end])
            pending_start = None
        return segments

    @staticmethod
    def _is_heading_only(segment: str) -> bool:
        return not (
            REFERENCE.search(segment)
            or MERCHANT.search(segment)
            or INSTALLMENT_AMOUNT.search(segment)
            or any(p.search(segment) for p in COUNTERS)
        )

    def _parse_block(self, block: str, top_numbers: Dict[str, int],
                     base_year: Optional[int]) -> Optional[InstallmentBlock]:
        ref_match = REFERENCE.search(block)
        if not ref_match:
            logger.debug(f"Installment block without reference: {block[:80]!r}")
            return None
        reference_id = ref_match.group(1)

        counter = self._find_counter(block)
        if counter is None and self.require_total_count:
            logger.debug(f"Installment block {reference_id} without N/M counter")
            return None

        number, total = counter if counter else (None, None)
        if number is None:
            number = top_numbers.get(reference_id)

        merchant = None
        merchant_match = MERCHANT.search(block)
        if merchant_match:
            merchant = merchant_match.group(1).strip() or None

        amount_match = INSTALLMENT_AMOUNT.search(block)
        original_match = ORIGINAL_AMOUNT.search(block)

        return InstallmentBlock(
            reference_id=reference_id,
            number=number,
            total=total,
            merchant_name=merchant,
            amount=parse_amount(amount_match.group(1)) if amount_match else None,
            original_amount=parse_amount(original_match.group(1)) if original_match else None,
            interest_rate=self._find_interest(block),
            transaction_date=self._find_date(block, base_year),
        )

    @staticmethod
    def _find_counter(block: str) -> Optional[tuple]:
        candidates = []
        for pattern in COUNTERS:
            candidates.extend(pattern.findall(block))
        for line in block.split("\n"):
            if DATE_LABEL.search(line):
                continue
            candidates.extend(BARE_COUNTER.findall(line))

        for number, total in candidates:
            number, total = int(number), int(total)
            if 1 <= number <= total and MIN_INSTALLMENTS <= total <= MAX_INSTALLMENTS:
                return number, total
        return None

    @staticmethod
    def _find_interest(block: str) -> Optional[Decimal]:
        for pattern in INTEREST_RATES:
            match = pattern.search(block)
            if match:
                try:
                    return Decimal(match.group(1).replace(",", "."))
                except InvalidOperation:
                    return None
        return None

    @staticmethod
    def _find_date(block: str, base_year: Optional[int]) -> Optional[date]:
        match = DATE_LABEL.search(block) or DATED.search(block)
        if not match:
            return None
        return parse_date(match.group(1), base_year)


def merge_plan(existing: Optional[InstallmentPlan], blocks: Sequence[InstallmentBlock],
               tolerance: Decimal = Decimal("0.05")) -> InstallmentPlan:
    """
    Fold newly seen blocks into a plan without mutating the existing one.

    Sightings are unique by installment number; a repeated number takes the
    newer amount and date when the newer block has them. Scalar fields take
    the newest non-empty value.

    Args:
        existing: Plan from earlier statements, or None
        blocks: Blocks for the same reference, oldest first
        tolerance: Per-installment rounding tolerance

    Returns:
        New InstallmentPlan
    """
    if existing is None and not blocks:
        raise ValueError("merge_plan needs an existing plan or at least one block")

    reference_id = existing.reference_id if existing else blocks[0].reference_id
    merchant = existing.merchant_name if existing else None
    total = existing.total_installments if existing else None
    per_amount = existing.per_installment_amount if existing else None
    interest = existing.interest_rate if existing else None
    stated_original = None

    sightings: Dict[int, InstallmentSighting] = {}
    if existing:
        for sighting in existing.installments_seen:
            sightings[sighting.number] = sighting

    for block in blocks:
        if block.reference_id != reference_id:
            raise ValueError(f"Block {block.reference_id} does not belong to plan {reference_id}")
        merchant = block.merchant_name or merchant
        total = block.total or total
        per_amount = block.amount if block.amount is not None else per_amount
        interest = block.interest_rate if block.interest_rate is not None else interest
        if block.original_amount is not None:
            stated_original = block.original_amount
        if block.number is not None:
            previous = sightings.get(block.number)
            sightings[block.number] = InstallmentSighting(
                number=block.number,
                transaction_date=block.transaction_date or (previous.transaction_date if previous else None),
                amount=block.amount if block.amount is not None else (previous.amount if previous else None),
            )

    plan = InstallmentPlan(
        reference_id=reference_id,
        merchant_name=merchant,
        total_installments=total,
        per_installment_amount=per_amount,
        interest_rate=interest,
        installments_seen=[sightings[n] for n in sorted(sightings)],
    )

    original = stated_original
    if original is None and existing is not None and existing.original_amount is not None:
        if replace(plan, original_amount=existing.original_amount).is_consistent(tolerance):
            original = existing.original_amount
    if original is None and per_amount is not None and total:
        original = (per_amount * total).quantize(Decimal("0.01"))
    plan.original_amount = original

    if not plan.is_consistent(tolerance):
        logger.warning(
            f"Installment plan {reference_id}: {per_amount} x {total} does not match "
            f"original amount {original}"
        )
    return plan


def annotate_transactions(transactions: Sequence[Transaction],
                          plans: Dict[str, InstallmentPlan]) -> List[Transaction]:
    """
    Attach installment counters to transactions that belong to a plan.

    A transaction matches when its description carries the plan reference,
    or when it names the plan merchant for exactly the installment amount.
    Transactions that already carry installment info are left alone.
    """
    annotated = []
    for tx in transactions:
        info = tx.installment_info
        if info is None:
            plan = _match_plan(tx, plans)
            if plan is not None and plan.latest_number is not None:
                info = InstallmentInfo(number=plan.latest_number, total=plan.total_installments)
        annotated.append(replace(tx, installment_info=info) if info is not tx.installment_info else tx)
    return annotated


def _match_plan(tx: Transaction, plans: Dict[str, InstallmentPlan]) -> Optional[InstallmentPlan]:
    description = " ".join(tx.description.upper().split())
    for ref, plan in plans.items():
        if ref in description:
            return plan
    for plan in plans.values():
        if not plan.merchant_name or plan.per_installment_amount is None:
            continue
        merchant = " ".join(plan.merchant_name.upper().split())
        if merchant in description and abs(tx.amount) == plan.per_installment_amount:
            return plan
    return None
