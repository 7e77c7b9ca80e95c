"""Deterministic regex extraction used when the LLM path is unavailable."""
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from .categories import CategoryTable
from .models import DocumentClassification, DocumentKind, ReceiptItem, Transaction
from .signs import DEBIT, infer_direction, signed_amount
from ..utils.logger import get_logger
from ..utils.parsing import AMOUNT_PATTERN, DATE_PATTERN, parse_amount, parse_date

logger = get_logger()

SINGLE_LINE_CONFIDENCE = 0.95
MULTI_LINE_CONFIDENCE = 0.7
RECEIPT_CONFIDENCE = 0.8

LINE_DATE = re.compile(r"^" + DATE_PATTERN.pattern)

# Installment detail rows and headers that are never transactions
LABEL_LINE = re.compile(
    r"^(?:valor|data|date|n\.?\s*[ºo°]?\s*presta|presta[cç][oõ]es\s*ref|pag\.\s*a\s*presta|ref\b|"
    r"transa[cç][aã]o\s*:|comerciante|estabelecimento|merchant|tan\b|taeg\b|montante|limite|"
    r"cart[aã]o\s*n|card\s*number|={2,})",
    re.IGNORECASE,
)

SUMMARY_LINE = re.compile(
    r"\b(?:saldo|sub-?total|total|pagamento\s*m[ií]nimo|minimum\s*payment|limite|balance)\b",
    re.IGNORECASE,
)

MARKER_TOKEN = re.compile(r"^(?:D|C|DB|CR|DEB|CRED|DR)$", re.IGNORECASE)
CURRENCY_TOKEN = re.compile(r"^(?:EUR|USD|BRL|€|R\$|US\$|\$)$", re.IGNORECASE)

RECEIPT_TOTAL = re.compile(
    r"^(?!.*\bsub-?total\b)(?!.*\btotal\s*(?:de\s*)?iva\b).*?"
    r"\b(?:total(?:\s*(?:geral|a\s*pagar|c/\s*iva))?|valor\s*total|montante)\b[^\d\n]*"
    r"(\d{1,3}(?:\.\d{3})*,\d{2}|\d{1,3}(?:,\d{3})*\.\d{2}|\d+[.,]\d{2})",
    re.IGNORECASE | re.MULTILINE,
)

# Largest believable receipt total
MAX_RECEIPT_TOTAL = Decimal("10000")

# "LEITE 1,20", "PAO 2 x 0,45 0,90", "BANANA 0,532 kg x 1,29 0,69 A"
RECEIPT_ITEM = re.compile(
    r"(?P<description>[^\d\s].*?)\s+"
    r"(?:(?P<quantity>\d+(?:[.,]\d{1,3})?)\s*(?:kg|un|x|\*)\s*(?:x\s*)?(?P<unit_price>\d+[.,]\d{2})\s+)?"
    r"(?P<total>\d{1,3}(?:\.\d{3})*[.,]\d{2})(?:\s+[A-E])?",
    re.IGNORECASE,
)

# Receipt lines that carry a number but are not products
RECEIPT_NON_ITEM = re.compile(
    r"\b(?:total|sub-?total|iva|nif|contribuinte|troco|multibanco|dinheiro|numer[aá]rio|pagamento|"
    r"cart[aã]o|visa|mastercard|mb\s*way|desconto|poupan[cç]a|saldo|tal[aã]o|fatura|terminal)\b",
    re.IGNORECASE,
)


@dataclass
class FallbackContext:
    """Everything a strategy needs besides the chunk text."""
    classification: DocumentClassification
    categories: CategoryTable
    base_year: Optional[int] = None
    provenance: Optional[str] = None


Predicate = Callable[[DocumentClassification], bool]
Strategy = Callable[[str, FallbackContext], List[Transaction]]


def _parse_line(line: str, ctx: FallbackContext) -> Optional[Transaction]:
    """Parse "DATE [DATE] DESCRIPTION AMOUNT [D|C] [AMOUNT]" into a transaction."""
    line = line.strip()
    if not line or LABEL_LINE.match(line) or SUMMARY_LINE.search(line):
        return None

    date_match = LINE_DATE.match(line)
    if not date_match:
        return None
    tx_date = parse_date(date_match.group(1), ctx.base_year)
    if tx_date is None:
        return None

    rest = line[date_match.end():].strip()
    # Value date column
    second_date = LINE_DATE.match(rest)
    if second_date and parse_date(second_date.group(1), ctx.base_year):
        rest = rest[second_date.end():].strip()

    amounts = list(AMOUNT_PATTERN.finditer(rest))
    if not amounts:
        return None

    kind = ctx.classification.kind
    # Bank lines may carry a running balance after the amount; card lines may
    # carry an original-currency amount before it
    chosen = amounts[-1] if kind == DocumentKind.CREDIT_CARD_STATEMENT else amounts[0]

    description = rest[:amounts[0].start()].strip()
    tokens = description.split()
    while tokens and (MARKER_TOKEN.match(tokens[-1]) or CURRENCY_TOKEN.match(tokens[-1])):
        tokens.pop()
    description = " ".join(tokens).strip(" -")
    if not description:
        return None

    marker = None
    trailing = rest[chosen.end():].split()
    if trailing and MARKER_TOKEN.match(trailing[0]):
        marker = trailing[0]
    elif description != rest[:amounts[0].start()].strip():
        last = rest[:amounts[0].start()].split()[-1]
        if MARKER_TOKEN.match(last):
            marker = last

    raw_amount = chosen.group(0).strip()
    magnitude = parse_amount(raw_amount)
    if magnitude is None or magnitude == 0:
        return None

    explicit_sign = None
    if raw_amount.startswith("-") or raw_amount.startswith("("):
        explicit_sign = "-"
    elif raw_amount.startswith("+"):
        explicit_sign = "+"

    direction = infer_direction(kind, description, explicit_sign, marker)
    return Transaction(
        date=tx_date,
        description=description,
        amount=signed_amount(kind, direction, magnitude),
        currency=ctx.classification.currency,
        category=ctx.categories.lookup(description),
        confidence=SINGLE_LINE_CONFIDENCE,
        source="regex",
        provenance=ctx.provenance,
    )


def dated_lines(text: str, ctx: FallbackContext) -> List[Transaction]:
    """Generic scanner: one transaction per line starting with a date and carrying an amount."""
    transactions = []
    for line in text.split("\n"):
        tx = _parse_line(line, ctx)
        if tx is not None:
            transactions.append(tx)
    return transactions


def novo_banco_card_lines(text: str, ctx: FallbackContext) -> List[Transaction]:
    """
    Card statement layout where OCR breaks a movement over several lines.

    A line that starts with a date but has no amount is joined with up to two
    following lines, stopping at the next dated line.
    """
    lines = [line.strip() for line in text.split("\n")]
    transactions = []
    index = 0
    while index < len(lines):
        line = lines[index]
        tx = _parse_line(line, ctx)
        if tx is not None:
            transactions.append(tx)
            index += 1
            continue

        date_match = LINE_DATE.match(line)
        if (date_match and not AMOUNT_PATTERN.search(line) and not LABEL_LINE.match(line)
                and parse_date(date_match.group(1), ctx.base_year)):
            joined = line
            for offset in (1, 2):
                if index + offset >= len(lines):
                    break
                following = lines[index + offset]
                if not following or LINE_DATE.match(following) or LABEL_LINE.match(following):
                    break
                joined = f"{joined} {following}"
                if AMOUNT_PATTERN.search(following):
                    tx = _parse_line(joined, ctx)
                    if tx is not None:
                        tx.confidence = MULTI_LINE_CONFIDENCE
                        transactions.append(tx)
                        index += offset
                    break
        index += 1
    return transactions


def receipt_items(text: str, ctx: FallbackContext) -> List[ReceiptItem]:
    """Product lines of a receipt: description, optional quantity and unit price, line total."""
    items = []
    for line in text.split("\n"):
        line = line.strip()
        if not line or RECEIPT_NON_ITEM.search(line):
            continue
        match = RECEIPT_ITEM.fullmatch(line)
        if not match:
            continue
        total = parse_amount(match.group("total"))
        if total is None or total <= 0:
            continue
        description = match.group("description").strip()
        quantity = Decimal("1")
        unit_price = None
        if match.group("quantity"):
            quantity = Decimal(match.group("quantity").replace(",", "."))
            unit_price = parse_amount(match.group("unit_price"))
        items.append(ReceiptItem(
            description=description,
            total_price=total,
            quantity=quantity,
            unit_price=unit_price,
            category=ctx.categories.lookup(description),
        ))
    return items


def receipt_total(text: str, ctx: FallbackContext) -> List[Transaction]:
    """
    A receipt becomes a single debit for its total, carrying its product lines.

    Without a printed total the product lines are summed.
    """
    items = receipt_items(text, ctx)
    totals = []
    for match in RECEIPT_TOTAL.finditer(text):
        value = parse_amount(match.group(1))
        if value is not None and Decimal("0") < value < MAX_RECEIPT_TOTAL:
            totals.append(value)
    if not totals and items:
        totals.append(sum((item.total_price for item in items), Decimal("0")))
    if not totals:
        return []

    date_match = DATE_PATTERN.search(text)
    tx_date = parse_date(date_match.group(1), ctx.base_year) if date_match else None
    if tx_date is None:
        logger.debug("Receipt total found but no date")
        return []

    store = ctx.classification.institution
    if store == "unknown":
        store = next((line.strip() for line in text.split("\n") if line.strip()), "Receipt")

    return [Transaction(
        date=tx_date,
        description=store,
        amount=signed_amount(DocumentKind.RECEIPT, DEBIT, max(totals)),
        currency=ctx.classification.currency,
        category=ctx.categories.lookup(store),
        confidence=RECEIPT_CONFIDENCE,
        source="regex",
        provenance=ctx.provenance,
        items=items,
    )]


# Ordered (name, predicate, strategy); new layouts are added here
STRATEGIES: List[Tuple[str, Predicate, Strategy]] = [
    ("novo_banco_card", lambda c: c.institution == "NOVO_BANCO" and c.is_credit_card, novo_banco_card_lines),
    ("receipt_total", lambda c: c.kind == DocumentKind.RECEIPT, receipt_total),
    ("dated_lines", lambda c: True, dated_lines),
]


class FallbackExtractor:
    """Runs the first matching strategy, moving down the table while strategies find nothing."""

    def __init__(self, categories: CategoryTable,
                 strategies: Optional[List[Tuple[str, Predicate, Strategy]]] = None):
        self.categories = categories
        self.strategies = strategies if strategies is not None else STRATEGIES

    def extract(self, text: str, classification: DocumentClassification,
                base_year: Optional[int] = None, provenance: Optional[str] = None) -> List[Transaction]:
        """
        Extract transactions from one chunk with regex strategies.

        Args:
            text: Chunk text
            classification: Document classification
            base_year: Year for dates printed without one
            provenance: Chunk label recorded on each transaction

        Returns:
            List of Transaction
        """
        ctx = FallbackContext(classification, self.categories, base_year, provenance)
        for name, predicate, strategy in self.strategies:
            if not predicate(classification):
                continue
            transactions = strategy(text, ctx)
            if transactions:
                logger.debug(f"Fallback strategy '{name}' found {len(transactions)} transactions")
                return transactions
        return []
