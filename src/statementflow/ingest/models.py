"""Data models for the ingestion pipeline."""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class DocumentKind(str, Enum):
    CREDIT_CARD_STATEMENT = "credit_card"
    BANK_STATEMENT = "bank_statement"
    RECEIPT = "receipt"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class RawDocument:
    """Uploaded document bytes with their declared MIME type."""
    data: bytes
    mime_type: str
    name: str = "document"


@dataclass
class ExtractedText:
    """Text produced by the text extractor, with page and entity metadata."""
    text: str
    pages: int = 0
    entities: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text or not self.text.strip()


@dataclass(frozen=True)
class DocumentClassification:
    """Document kind and issuing institution, derived once per document."""
    kind: DocumentKind
    institution: str = "unknown"
    confidence: Confidence = Confidence.LOW
    currency: str = "EUR"
    ambiguous: bool = False

    @property
    def is_credit_card(self) -> bool:
        return self.kind == DocumentKind.CREDIT_CARD_STATEMENT


@dataclass(frozen=True)
class CardHolderRecord:
    """One card on a statement and the person it was issued to."""
    card_number_masked: str
    holder_name: str
    is_dependent: bool
    shared_credit_limit: Optional[Decimal] = None
    plan_name: Optional[str] = None

    @property
    def last_four(self) -> str:
        digits = "".join(c for c in self.card_number_masked if c.isdigit())
        return digits[-4:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cardNumberMasked": self.card_number_masked,
            "lastFour": self.last_four,
            "holderName": self.holder_name,
            "isDependent": self.is_dependent,
            "sharedCreditLimit": _money(self.shared_credit_limit),
            "planName": self.plan_name,
        }


@dataclass(frozen=True)
class InstallmentSighting:
    """A single installment observed on a statement."""
    number: int
    transaction_date: Optional[date]
    amount: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "transactionDate": self.transaction_date.isoformat() if self.transaction_date else None,
            "amount": _money(self.amount),
        }


@dataclass
class InstallmentPlan:
    """
    A purchase split into periodic installments, tracked across statements.

    installments_seen holds at most one sighting per installment number,
    ordered by number.
    """
    reference_id: str
    merchant_name: Optional[str] = None
    original_amount: Optional[Decimal] = None
    total_installments: Optional[int] = None
    per_installment_amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    installments_seen: List[InstallmentSighting] = field(default_factory=list)

    @property
    def paid_amount(self) -> Decimal:
        return sum((s.amount for s in self.installments_seen if s.amount is not None), Decimal("0"))

    @property
    def remaining_balance(self) -> Optional[Decimal]:
        if self.original_amount is None:
            return None
        return self.original_amount - self.paid_amount

    @property
    def latest_number(self) -> Optional[int]:
        if not self.installments_seen:
            return None
        return self.installments_seen[-1].number

    def is_consistent(self, tolerance: Decimal = Decimal("0.05")) -> bool:
        """Check per-installment amount times count against the original amount."""
        if None in (self.per_installment_amount, self.total_installments, self.original_amount):
            return True
        expected = self.per_installment_amount * self.total_installments
        # Rounding accumulates per installment
        return abs(expected - self.original_amount) <= tolerance * self.total_installments

    def to_dict(self) -> Dict[str, Any]:
        return {
            "referenceId": self.reference_id,
            "merchantName": self.merchant_name,
            "originalAmount": _money(self.original_amount),
            "totalInstallments": self.total_installments,
            "perInstallmentAmount": _money(self.per_installment_amount),
            "interestRate": _money(self.interest_rate),
            "remainingBalance": _money(self.remaining_balance),
            "installmentsSeen": [s.to_dict() for s in self.installments_seen],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstallmentPlan":
        """Rebuild a plan from its to_dict() form."""
        def dec(value):
            return Decimal(str(value)) if value is not None else None

        seen = [
            InstallmentSighting(
                number=int(s["number"]),
                transaction_date=date.fromisoformat(s["transactionDate"]) if s.get("transactionDate") else None,
                amount=dec(s.get("amount")),
            )
            for s in data.get("installmentsSeen", [])
        ]
        return cls(
            reference_id=data["referenceId"],
            merchant_name=data.get("merchantName"),
            original_amount=dec(data.get("originalAmount")),
            total_installments=data.get("totalInstallments"),
            per_installment_amount=dec(data.get("perInstallmentAmount")),
            interest_rate=dec(data.get("interestRate")),
            installments_seen=seen,
        )


@dataclass(frozen=True)
class InstallmentInfo:
    number: int
    total: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {"number": self.number, "total": self.total}


@dataclass
class ReceiptItem:
    """One product line of a receipt; prices are positive."""
    description: str
    total_price: Decimal
    quantity: Decimal = Decimal("1")
    unit_price: Optional[Decimal] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "quantity": format(self.quantity, "f"),
            "unitPrice": _money(self.unit_price),
            "totalPrice": _money(self.total_price),
            "category": self.category,
        }


@dataclass
class Transaction:
    """
    Extracted transaction before reconciliation.

    Amount is signed: bank statements use negative for debits, card
    statements use positive for purchases and negative for payments.
    """
    date: date
    description: str
    amount: Decimal
    currency: str = "EUR"
    category: Optional[str] = None
    installment_info: Optional[InstallmentInfo] = None
    confidence: float = 0.0
    source: str = "regex"
    provenance: Optional[str] = None
    items: List[ReceiptItem] = field(default_factory=list)

    @property
    def natural_key(self) -> Tuple[str, str, str]:
        """Stable key the ledger writer can deduplicate on."""
        return (self.date.isoformat(), " ".join(self.description.upper().split()), str(self.amount))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": _money(self.amount),
            "currency": self.currency,
            "category": self.category,
            "installmentInfo": self.installment_info.to_dict() if self.installment_info else None,
            "confidence": round(self.confidence, 2),
            "source": self.source,
            "provenance": self.provenance,
            "naturalKey": "|".join(self.natural_key),
        }
        if self.items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


@dataclass(frozen=True)
class ChunkBoundary:
    """Half-open span [start, end) of the normalized text."""
    start: int
    end: int
    label: str

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class Chunk:
    boundary: ChunkBoundary
    text: str

    @property
    def label(self) -> str:
        return self.boundary.label


@dataclass
class Diagnostics:
    """Non-fatal conditions observed while processing one document."""
    classification_ambiguous: bool = False
    dropped_installment_blocks: int = 0
    schema_violations: int = 0
    llm_failures: int = 0
    fallback_chunks: List[str] = field(default_factory=list)
    failed_chunks: List[str] = field(default_factory=list)
    skipped_chunks: List[str] = field(default_factory=list)
    budget_exceeded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classificationAmbiguous": self.classification_ambiguous,
            "droppedInstallmentBlocks": self.dropped_installment_blocks,
            "schemaViolations": self.schema_violations,
            "llmFailures": self.llm_failures,
            "fallbackChunks": list(self.fallback_chunks),
            "failedChunks": list(self.failed_chunks),
            "skippedChunks": list(self.skipped_chunks),
            "budgetExceeded": self.budget_exceeded,
        }


@dataclass
class IngestionPayload:
    """Merged result handed to the ledger writer."""
    document_type: DocumentKind
    detected_institution: str
    transactions: List[Transaction] = field(default_factory=list)
    credit_cards_info: List[CardHolderRecord] = field(default_factory=list)
    installment_details: Dict[str, InstallmentPlan] = field(default_factory=dict)
    partial: bool = False
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    document_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "documentType": self.document_type.value,
            "detectedInstitution": self.detected_institution,
            "transactions": [t.to_dict() for t in self.transactions],
            "partial": self.partial,
            "diagnostics": self.diagnostics.to_dict(),
        }
        if self.document_type == DocumentKind.CREDIT_CARD_STATEMENT:
            payload["creditCardsInfo"] = [c.to_dict() for c in self.credit_cards_info]
            payload["installmentDetails"] = {
                ref: plan.to_dict() for ref, plan in self.installment_details.items()
            }
        return payload


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None
