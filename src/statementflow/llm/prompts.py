"""Prompt construction for transaction extraction."""
from typing import Iterable

from ..ingest.models import DocumentClassification, DocumentKind

KIND_GUIDANCE = {
    DocumentKind.CREDIT_CARD_STATEMENT: (
        "This is a credit-card statement. Purchases, fees, interest and installment "
        "charges are \"debit\". Payments to the card and refunds are \"credit\". "
        "For an installment charge use only the installment value and keep the "
        "reference (REF.) in the description."
    ),
    DocumentKind.BANK_STATEMENT: (
        "This is a bank account statement. Money leaving the account is \"debit\"; "
        "money entering the account is \"credit\". Do not report opening or closing balances."
    ),
    DocumentKind.RECEIPT: (
        "This is a purchase receipt. Report a single \"debit\" transaction with the "
        "receipt total, dated with the receipt date, described by the store name. "
        "List every product line in \"items\"; leave out totals, taxes, discounts and payment lines."
    ),
}

RECEIPT_ITEMS_FORMAT = (
    'Next to "transactions" add "items": [{"description": "...", "quantity": 1, '
    '"unit_price": 1.20, "total_price": 1.20, "category": "..."}], with positive prices.'
)


def build_extraction_prompt(classification: DocumentClassification, section_label: str,
                            categories: Iterable[str]) -> str:
    """Instruction text sent ahead of one chunk of statement text."""
    category_list = "\n".join(f"- {c}" for c in categories)
    items_format = f"\n{RECEIPT_ITEMS_FORMAT}" if classification.kind == DocumentKind.RECEIPT else ""
    return f"""
You extract financial transactions from statement text.
{KIND_GUIDANCE[classification.kind]}
Institution: {classification.institution}. Default currency: {classification.currency}.
Section: {section_label}.

Return ONLY a single JSON object, with no markdown and no commentary, of the form:
{{"transactions": [{{"date": "YYYY-MM-DD", "description": "...", "amount": 12.34,
"direction": "debit" or "credit", "category": "...", "currency": "EUR",
"installment_number": null, "installment_total": null, "confidence": 0.9}}]}}{items_format}

Rules:
- "amount" is always the positive absolute value; the sign is given by "direction".
- "category" must be one of the categories below, or null when unsure.
- Only report lines that are present in the text. If there are none, return {{"transactions": []}}.

Categories:
{category_list}
""".strip()
