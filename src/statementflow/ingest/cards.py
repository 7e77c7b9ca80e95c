"""Card and holder extraction for credit-card statements."""
import re
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from .models import CardHolderRecord
from ..utils.logger import get_logger
from ..utils.parsing import parse_amount

logger = get_logger()

# 0342******9766 / ****1234 / 1234 **** **** 5678
MASKED_NUMBER = (
    r"(?:\d{4,6}[ -]?[*xX•]{4,12}[ -]?\d{4}"
    r"|(?:[*xX•]{4}[ -]?){1,3}\d{4}"
    r"|\d{4}(?:[ -][*xX•]{4}){2}[ -]\d{4})"
)
MASKED_NUMBER_PATTERN = re.compile(rf"(?<![\w*•]){MASKED_NUMBER}(?![\w*])")

TABLE_ANCHOR = re.compile(
    r"^.*(?:\bn\.?\s*[ºo°]?\s*(?:do\s*)?cart[aã]o|card\s*(?:number|no\.?)).*\b(?:nome|name|titular|holder)\b.*$",
    re.IGNORECASE | re.MULTILINE,
)

TABLE_ROW = re.compile(rf"^(?P<number>{MASKED_NUMBER})\s+(?P<rest>.+)$")

PLAN_WORDS = {
    "GOLD", "PLATINUM", "CLASSIC", "BLACK", "SILVER", "PREMIUM", "INFINITE",
    "SIGNATURE", "VISA", "MASTERCARD", "MAESTRO", "AMEX", "ELECTRON", "BUSINESS",
    "STANDARD", "PLUS", "CASHBACK", "DEBIT", "CREDIT",
}

HOLDER_WORD = r"[A-ZÀ-Ý][A-ZÀ-Ý'.-]*"
HOLDER_NAME = re.compile(rf"^{HOLDER_WORD}(?:\s+{HOLDER_WORD}){{1,4}}$")

# Words that rule a line out as a holder name
NAME_STOPWORDS = {
    "BANCO", "NOVO", "BANK", "EXTRATO", "CARTÃO", "CARTAO", "CARD", "CAMPUS",
    "AVENIDA", "AV.", "RUA", "PRAÇA", "LISBOA", "PORTO", "LIMITE", "TOTAL",
    "SALDO", "PAGAMENTO", "PAGAMENTOS", "MOVIMENTOS", "DATA", "VALOR", "FATURA",
    "CRÉDITO", "CREDITO", "DÉBITO", "DEBITO", "PRESTAÇÕES", "PRESTACOES",
    "PRESTAÇÃO", "RESUMO", "CONTA", "DESCRIÇÃO", "DESCRICAO", "MONTANTE",
    "JUROS", "IMPOSTO", "COMISSÃO", "COMISSAO", "TAXA", "STATEMENT", "BALANCE",
    "PAYMENT", "INSTALLMENT", "NIF", "IBAN", "SWIFT", "BIC", "SA", "S.A.",
    "LDA", "LDA.", "EUR", "USD", "BRL", "MB", "TRF", "COMPRA", "COMPRAS",
} | PLAN_WORDS

LIMIT_PATTERN = re.compile(
    r"(?:limite\s*de\s*cr[eé]dito(?:\s*da\s*conta)?|limite\s*da\s*conta"
    r"|limite\s*(?:partilhado|compartilhado)|account\s*credit\s*limit|credit\s*limit)"
    r"\s*:?\s*(?:EUR|USD|BRL|R\$|US\$|€|\$)?\s*"
    r"(\d+(?:[.,\s]\d{3})*(?:[.,]\d{2})?)",
    re.IGNORECASE,
)

UNKNOWN_HOLDER = "UNKNOWN"


class CardHolderExtractor:
    """Finds every card on a statement and who holds it."""

    def __init__(self, extra_stopwords: Optional[Iterable[str]] = None):
        """
        Initialize extractor.

        Args:
            extra_stopwords: Additional names (merchants, institutions) that must
                never be taken as a holder name
        """
        self.stopwords = set(NAME_STOPWORDS)
        self.stop_phrases: List[str] = []
        for word in extra_stopwords or []:
            word = word.upper().strip()
            if " " in word:
                self.stop_phrases.append(word)
            elif word:
                self.stopwords.add(word)

    def extract(self, text: str) -> List[CardHolderRecord]:
        """
        Extract card holder records in statement order.

        The first record is the primary holder, every other record is a
        dependent. An empty list means no masked card number was found.

        Args:
            text: Normalized statement text

        Returns:
            List of CardHolderRecord
        """
        credit_limit = self.extract_credit_limit(text)

        rows = self._parse_table(text)
        if rows:
            logger.info(f"Card table found with {len(rows)} rows")
        else:
            rows = self._pair_positionally(text)
            if rows:
                logger.info(f"No card table; paired {len(rows)} cards positionally")

        if not rows:
            logger.warning("No masked card numbers found in credit-card statement")
            return []

        return [
            CardHolderRecord(
                card_number_masked=number,
                holder_name=holder,
                is_dependent=index > 0,
                shared_credit_limit=credit_limit,
                plan_name=plan,
            )
            for index, (number, plan, holder) in enumerate(rows)
        ]

    def _parse_table(self, text: str) -> List[tuple]:
        anchor = TABLE_ANCHOR.search(text)
        if not anchor:
            return []

        rows = []
        for line in text[anchor.end():].split("\n"):
            line = line.strip()
            if not line:
                if rows:
                    break
                continue
            match = TABLE_ROW.match(line)
            if not match:
                break
            parsed = self._split_row(match.group("rest"))
            if parsed is None:
                break
            plan, holder = parsed
            rows.append((match.group("number"), plan, holder))
        return rows

    @staticmethod
    def _split_row(rest: str) -> Optional[tuple]:
        """Split "GOLD 360 ANDRE CRUZ SOUZA" into plan name and holder name."""
        tokens = rest.split()
        if len(tokens) < 2:
            return None
        plan_tokens = [tokens[0]]
        index = 1
        while index < len(tokens) and (
            tokens[index].upper() in PLAN_WORDS or any(c.isdigit() for c in tokens[index])
        ):
            plan_tokens.append(tokens[index])
            index += 1
        holder_tokens = tokens[index:]
        if not holder_tokens:
            return None
        holder = " ".join(holder_tokens)
        if not re.fullmatch(rf"{HOLDER_WORD}(?:\s+{HOLDER_WORD})*", holder):
            return None
        return " ".join(plan_tokens), holder

    def _pair_positionally(self, text: str) -> List[tuple]:
        numbers = self.find_card_numbers(text)
        if not numbers:
            return []
        names = self.find_candidate_names(text)
        logger.debug(f"Fallback pairing: {len(numbers)} numbers, {len(names)} candidate names")

        rows = []
        for index, number in enumerate(numbers):
            if index < len(names):
                holder = names[index]
            elif names:
                holder = names[0]
            else:
                holder = UNKNOWN_HOLDER
            rows.append((number, None, holder))
        return rows

    @staticmethod
    def find_card_numbers(text: str) -> List[str]:
        """Distinct masked card numbers in order of first appearance."""
        seen = set()
        numbers = []
        for match in MASKED_NUMBER_PATTERN.finditer(text):
            number = match.group(0)
            key = re.sub(r"[ -]", "", number).upper()
            if key not in seen:
                seen.add(key)
                numbers.append(number)
        return numbers

    def find_candidate_names(self, text: str) -> List[str]:
        """All-caps multi-word lines that look like a person's name."""
        seen = set()
        names = []
        for raw_line in text.split("\n"):
            line = MASKED_NUMBER_PATTERN.sub(" ", raw_line)
            line = " ".join(line.split())
            if len(line) <= 5 or not HOLDER_NAME.match(line):
                continue
            if self._is_stop_line(line.split()):
                continue
            if line not in seen:
                seen.add(line)
                names.append(line)
        return names

    def _is_stop_line(self, words: Sequence[str]) -> bool:
        if any(word in self.stopwords for word in words):
            return True
        padded = f" {' '.join(words)} "
        return any(f" {phrase} " in padded for phrase in self.stop_phrases)

    @staticmethod
    def extract_credit_limit(text: str) -> Optional[Decimal]:
        """Shared account credit limit, or None when not stated."""
        match = LIMIT_PATTERN.search(text)
        if not match:
            return None
        value = parse_amount(match.group(1))
        if value is not None:
            logger.debug(f"Shared credit limit: {value}")
        return value
