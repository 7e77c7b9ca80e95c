"""Section markers shared by the chunker and the installment reconstructor."""
import re

# "Cartão n.º 0342******9766", "Card number ****1234", "=== CARTÃO 2 ==="
CARD_SECTION_HEADER = re.compile(
    r"^(?:=+\s*cart[aã]o\s*\d+\s*=+|cart[aã]o\s*n\.?\s*[ºo°]\.?\s*:?\s*[\d*xX•].*|card\s*number\s*:?\s*[\d*xX•].*)$",
    re.IGNORECASE | re.MULTILINE,
)

# Start of a "payment in installments" block
INSTALLMENT_ANCHOR = re.compile(
    r"pagamento\s*a\s*presta[cç][oõ]es"
    r"|pag\.\s*a\s*presta[cç][oõ]es"
    r"|presta[cç][oõ]es\s*ref"
    r"|installment\s*plan"
    r"|payment\s*in\s*installments"
    r"|parcelamento",
    re.IGNORECASE,
)

# Heading of the trailing installments section of a statement
INSTALLMENT_SECTION_HEADER = re.compile(
    r"^(?:=+\s*presta[cç][oõ]es\s*=+|pagamento\s*a\s*presta[cç][oõ]es|installment\s*plans?|parcelamentos?)\b.*$",
    re.IGNORECASE | re.MULTILINE,
)
