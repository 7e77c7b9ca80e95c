"""Sign conventions shared by the LLM and regex extraction paths."""
import re
from decimal import Decimal
from typing import Optional

from .models import DocumentKind

DEBIT = "debit"
CREDIT = "credit"

# Card statements: money paid back to the card
CARD_CREDIT_VOCABULARY = re.compile(
    r"\b(?:pagamento|pagto|payment|reembolso|refund|devolu[cç][aã]o|estorno|"
    r"anula[cç][aã]o|cr[eé]dito|cashback)\b",
    re.IGNORECASE,
)

# Bank statements: money entering the account
BANK_CREDIT_VOCABULARY = re.compile(
    r"\b(?:dep[oó]sito|deposit|sal[aá]rio|vencimento|ordenado|salary|reembolso|refund|"
    r"devolu[cç][aã]o|estorno|juros\s*credores|transf(?:er[eê]ncia)?\.?\s*(?:recebida|de)|"
    r"trf\.?\s*(?:recebida|de)|incoming|received|cr[eé]dito)\b",
    re.IGNORECASE,
)

DEBIT_MARKER = re.compile(r"^(?:D|DB|DEB|DR)$", re.IGNORECASE)
CREDIT_MARKER = re.compile(r"^(?:C|CR|CRED)$", re.IGNORECASE)


def signed_amount(kind: DocumentKind, direction: str, magnitude: Decimal) -> Decimal:
    """
    Apply the document's sign convention to an absolute amount.

    Bank statements and receipts: debit negative, credit positive.
    Credit-card statements: purchase (debit) positive, payment (credit) negative.
    """
    if direction not in (DEBIT, CREDIT):
        raise ValueError(f"Unknown direction: {direction}")
    magnitude = abs(magnitude)
    if kind == DocumentKind.CREDIT_CARD_STATEMENT:
        return magnitude if direction == DEBIT else -magnitude
    return -magnitude if direction == DEBIT else magnitude


def infer_direction(kind: DocumentKind, description: str, explicit_sign: Optional[str] = None,
                    marker: Optional[str] = None) -> str:
    """
    Decide debit or credit for a statement line.

    Args:
        kind: Document kind
        description: Line description
        explicit_sign: "-" or "+" printed with the amount, if any
        marker: D/C column marker printed next to the amount, if any

    Returns:
        DEBIT or CREDIT
    """
    if marker:
        if CREDIT_MARKER.match(marker):
            return CREDIT
        if DEBIT_MARKER.match(marker):
            return DEBIT

    if kind == DocumentKind.CREDIT_CARD_STATEMENT:
        # Card statements print payments and refunds with a minus
        if explicit_sign == "-":
            return CREDIT
        return CREDIT if CARD_CREDIT_VOCABULARY.search(description) else DEBIT

    if explicit_sign == "-":
        return DEBIT
    if explicit_sign == "+":
        return CREDIT
    return CREDIT if BANK_CREDIT_VOCABULARY.search(description) else DEBIT
