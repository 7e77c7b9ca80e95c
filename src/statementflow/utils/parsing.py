"""Money and date parsing for statement text."""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

# 1.234,56 / 1,234.56 / 123,45 / 85.00, optionally signed or in parentheses
AMOUNT_PATTERN = re.compile(
    r"(?<![\d/.,])[+\-]?\(?\s*\d{1,3}(?:[.,]\d{3})*[.,]\d{2}\s*\)?(?![\d/])"
)

DATE_PATTERN = re.compile(
    r"(?<!\d)(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{1,2}/\d{1,2}"
    r"|\d{1,2}\s+[A-Za-zÀ-ÿ]{3,}\.?(?:\s+(?:\d{4}|\d{2})(?![\d.,]))?)(?![\d])"
)

FULL_YEAR_DATE = re.compile(r"(?<!\d)(?:\d{1,2}[./-]\d{1,2}[./-](\d{4})|(\d{4})-\d{1,2}-\d{1,2})(?!\d)")

MONTHS = {
    "jan": 1, "janeiro": 1, "january": 1,
    "fev": 2, "fevereiro": 2, "feb": 2, "february": 2,
    "mar": 3, "marco": 3, "março": 3, "march": 3,
    "abr": 4, "abril": 4, "apr": 4, "april": 4,
    "mai": 5, "maio": 5, "may": 5,
    "jun": 6, "junho": 6, "june": 6,
    "jul": 7, "julho": 7, "july": 7,
    "ago": 8, "agosto": 8, "aug": 8, "august": 8,
    "set": 9, "setembro": 9, "sep": 9, "sept": 9, "september": 9,
    "out": 10, "outubro": 10, "oct": 10, "october": 10,
    "nov": 11, "novembro": 11, "november": 11,
    "dez": 12, "dezembro": 12, "dec": 12, "december": 12,
}


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Parse a European or US formatted amount into a Decimal.

    Parentheses and a leading minus produce a negative value. Returns None
    when the text holds no number.
    """
    if not text or not isinstance(text, str):
        return None

    negative = "(" in text or text.strip().startswith("-")
    cleaned = re.sub(r"[^\d.,]", "", text)
    if not cleaned:
        return None

    if re.fullmatch(r"\d{1,3}(\.\d{3})*,\d{1,2}", cleaned):
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(,\d{3})*\.\d{1,2}", cleaned):
        cleaned = cleaned.replace(",", "")
    else:
        last_comma = cleaned.rfind(",")
        last_dot = cleaned.rfind(".")
        if last_comma > last_dot:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return -value if negative else value


def parse_date(date_str: str, base_year: Optional[int] = None) -> Optional[date]:
    """Try the statement date formats seen in the wild; two-digit years map to 2000s."""
    if not date_str or not isinstance(date_str, str):
        return None
    s = date_str.strip().rstrip(".")

    fmt_candidates = [
        "%Y-%m-%d",
        "%d/%m/%Y",
        "%d/%m/%y",
        "%d-%m-%Y",
        "%d.%m.%Y",
        "%d.%m.%y",
    ]
    for fmt in fmt_candidates:
        try:
            dt = datetime.strptime(s, fmt)
        except ValueError:
            continue
        if fmt.endswith("%y") and dt.year < 2000:
            dt = dt.replace(year=dt.year + 2000)
        return dt.date()

    year = base_year or date.today().year

    m = re.fullmatch(r"(\d{1,2})[./](\d{1,2})", s)
    if m:
        return _safe_date(year, int(m.group(2)), int(m.group(1)))

    m = re.fullmatch(r"(\d{1,2})\s+([A-Za-zÀ-ÿ]{3,})\.?(?:\s+(\d{2,4}))?", s)
    if m:
        month = MONTHS.get(m.group(2).lower())
        if not month:
            return None
        if m.group(3):
            year = int(m.group(3))
            if year < 100:
                year += 2000
        return _safe_date(year, month, int(m.group(1)))

    return None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def infer_year(text: str) -> Optional[int]:
    """Most frequent four-digit year among full dates in the text."""
    counts = {}
    for match in FULL_YEAR_DATE.finditer(text or ""):
        year = int(match.group(1) or match.group(2))
        if 1990 <= year <= 2100:
            counts[year] = counts.get(year, 0) + 1
    if not counts:
        return None
    return max(counts, key=lambda y: (counts[y], y))
