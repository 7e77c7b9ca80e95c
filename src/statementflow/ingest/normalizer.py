"""Text normalization for OCR and PDF extractions."""
import re

from ..utils.logger import get_logger

logger = get_logger()


class TextNormalizer:
    """Cleans raw extracted text before pattern extraction."""

    # Control characters other than tab and newline
    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

    # Non-breaking and exotic spaces map onto a plain space
    UNICODE_SPACES = re.compile(r"[\u00a0\u2000-\u200a\u202f\u205f\u3000]")

    HORIZONTAL_WS = re.compile(r"[ \t]+")

    # "ESTABELECI-\nMENTO" style breaks; only rejoined before a lowercase letter
    HYPHEN_BREAK = re.compile(r"(?<=[A-Za-zÀ-ÿ])-\n(?=[a-zà-ÿ])")

    BLANK_RUNS = re.compile(r"\n{3,}")

    def normalize(self, text: str) -> str:
        """
        Normalize extracted text.

        Decimal commas, currency symbols and reference numbers are left
        untouched. The result is never longer than the input.

        Args:
            text: Raw extracted text

        Returns:
            Normalized text
        """
        if not text:
            return ""

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = self.UNICODE_SPACES.sub(" ", text)
        text = self.CONTROL_CHARS.sub("", text)
        text = self.HORIZONTAL_WS.sub(" ", text)
        text = "\n".join(line.strip() for line in text.split("\n"))
        text = self.HYPHEN_BREAK.sub("", text)
        text = self.BLANK_RUNS.sub("\n\n", text)
        text = text.strip()

        logger.debug(f"Normalized text to {len(text)} characters")
        return text


def normalize_text(text: str) -> str:
    """Module-level shortcut for TextNormalizer().normalize."""
    return TextNormalizer().normalize(text)
