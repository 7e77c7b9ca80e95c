"""Document classification: kind, issuing institution and currency."""
import re
from typing import List, Optional, Pattern, Tuple

from .models import Confidence, DocumentClassification, DocumentKind
from ..utils.logger import get_logger

logger = get_logger()


def _patterns(*sources: str) -> List[Pattern]:
    return [re.compile(s, re.IGNORECASE) for s in sources]


# Ordered (name, patterns, kind hint); first match wins
INSTITUTIONS: List[Tuple[str, List[Pattern], Optional[DocumentKind]]] = [
    ("NOVO_BANCO", _patterns(
        r"novo\s*banco",
        r"extrato\s*de\s*conta[\s_-]?cart[aã]o",
    ), DocumentKind.CREDIT_CARD_STATEMENT),
    ("CGD", _patterns(
        r"caixa\s*geral\s*de\s*dep[oó]sitos",
        r"\bcgd\b",
        r"caixadirecta",
    ), DocumentKind.BANK_STATEMENT),
    ("MILLENNIUM", _patterns(
        r"millennium",
        r"\bbcp\b",
        r"banco\s*comercial\s*portugu[eê]s",
    ), DocumentKind.BANK_STATEMENT),
    ("ITAU", _patterns(
        r"banco\s*ita[uú]",
        r"\bita[uú]\b",
    ), DocumentKind.BANK_STATEMENT),
    ("NUBANK", _patterns(
        r"nubank",
        r"nu\s*pagamentos",
    ), DocumentKind.CREDIT_CARD_STATEMENT),
]

# Stores only name the institution of receipts
STORES: List[Tuple[str, List[Pattern]]] = [
    ("CONTINENTE", _patterns(r"continente", r"\bsonae\b")),
    ("PINGO_DOCE", _patterns(r"pingo\s*doce", r"jer[oó]nimo\s*martins")),
    ("LIDL", _patterns(r"\blidl\b")),
    ("AUCHAN", _patterns(r"auchan", r"\bjumbo\b")),
    ("EL_CORTE_INGLES", _patterns(r"corte\s*ingl[eé]s")),
    ("WORTEN", _patterns(r"worten")),
    ("FNAC", _patterns(r"\bfnac\b")),
    ("MEDIA_MARKT", _patterns(r"media\s*markt")),
    ("FARMACIA", _patterns(r"farm[aá]cia")),
    ("GASOLINEIRA", _patterns(r"\bgalp\b", r"\brepsol\b", r"\bcepsa\b", r"petrogal")),
]

CREDIT_CARD_MARKERS = _patterns(
    r"fatura\s*(?:do\s*)?cart[aã]o",
    r"cart[aã]o\s*de\s*cr[eé]dito",
    r"credit\s*card",
    r"limite\s*(?:de\s*cr[eé]dito|dispon[ií]vel)",
    r"pagamento\s*m[ií]nimo",
    r"minimum\s*payment",
    r"data\s*(?:limite\s*)?de\s*(?:vencimento|pagamento)",
    r"\bprest\.\s*\d",
    r"pagamento\s*a\s*presta[cç][oõ]es",
    r"parcelamento",
    r"n\.?\s*[ºo°]\s*cart[aã]o",
    r"cart[aã]o\s*n\.?\s*[ºo°]",
    r"card\s*number",
    r"\binvoice\b",
)

BANK_STATEMENT_MARKERS = _patterns(
    r"\biban\b",
    r"\bnib\b",
    r"saldo\s*(?:anterior|inicial|final|dispon[ií]vel)",
    r"conta\s*(?:corrente|[aà]\s*ordem)",
    r"extrato\s*(?:de\s*conta|banc[aá]rio|integrado)",
    r"account\s*statement",
    r"opening\s*balance",
    r"\bd[eé]bito\b.*\bcr[eé]dito\b",
)

RECEIPT_MARKERS = _patterns(
    r"nif\s*(?:do\s*)?(?:consumidor|adquirente)",
    r"consumidor\s*final",
    r"fatura[\s-]*(?:simplificada|recibo)",
    r"\brecibo\b",
    r"obrigado\s*pela\s*(?:sua\s*)?(?:visita|prefer[eê]ncia)",
    r"\biva\b.*\btotal\b",
    r"\bsubtotal\b",
)

CURRENCY_MARKERS: List[Tuple[str, Pattern]] = [
    ("BRL", re.compile(r"R\$|\bBRL\b")),
    ("USD", re.compile(r"US\$|\bUSD\b")),
    ("EUR", re.compile(r"€|\bEUR\b|\beuros?\b", re.IGNORECASE)),
    ("USD", re.compile(r"\$")),
]


class DocumentClassifier:
    """Decides document kind and institution from lexical signatures."""

    def __init__(self, default_currency: str = "EUR"):
        self.default_currency = default_currency

    def classify(self, text: str) -> DocumentClassification:
        """
        Classify normalized text.

        Never raises. Falls back to a low-confidence bank statement when no
        vocabulary or institution matched.

        Args:
            text: Normalized document text

        Returns:
            DocumentClassification
        """
        text = text or ""
        institution, kind_hint = self.detect_institution(text)

        card_score = self._score(text, CREDIT_CARD_MARKERS)
        bank_score = self._score(text, BANK_STATEMENT_MARKERS)
        receipt_score = self._score(text, RECEIPT_MARKERS)

        vocabulary_matched = True
        if receipt_score and not card_score and not bank_score:
            kind = DocumentKind.RECEIPT
            if institution is None:
                institution = self.detect_store(text)
        elif card_score > bank_score or (
                card_score and card_score == bank_score and kind_hint == DocumentKind.CREDIT_CARD_STATEMENT):
            # Ties go to the bank unless the institution issues card statements
            kind = DocumentKind.CREDIT_CARD_STATEMENT
        elif bank_score:
            kind = DocumentKind.BANK_STATEMENT
        elif kind_hint is not None:
            kind = kind_hint
            vocabulary_matched = False
        else:
            kind = DocumentKind.BANK_STATEMENT
            vocabulary_matched = False

        if institution is not None:
            confidence = Confidence.HIGH
        elif vocabulary_matched:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW

        classification = DocumentClassification(
            kind=kind,
            institution=institution or "unknown",
            confidence=confidence,
            currency=self.detect_currency(text),
            ambiguous=confidence == Confidence.LOW,
        )
        logger.info(
            f"Classified document as {kind.value} "
            f"(institution={classification.institution}, confidence={confidence.value}, "
            f"card={card_score}, bank={bank_score}, receipt={receipt_score})"
        )
        return classification

    @staticmethod
    def detect_institution(text: str) -> Tuple[Optional[str], Optional[DocumentKind]]:
        """Return the first institution whose pattern matches, with its kind hint."""
        for name, patterns, kind_hint in INSTITUTIONS:
            for pattern in patterns:
                if pattern.search(text):
                    logger.debug(f"Institution detected: {name} via {pattern.pattern}")
                    return name, kind_hint
        return None, None

    @staticmethod
    def detect_store(text: str) -> Optional[str]:
        for name, patterns in STORES:
            if any(p.search(text) for p in patterns):
                return name
        return None

    def detect_currency(self, text: str) -> str:
        for code, pattern in CURRENCY_MARKERS:
            if pattern.search(text):
                return code
        return self.default_currency

    @staticmethod
    def _score(text: str, markers: List[Pattern]) -> int:
        return sum(1 for marker in markers if marker.search(text))
