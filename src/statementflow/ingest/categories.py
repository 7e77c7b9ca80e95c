"""Static merchant-to-category lookup with fuzzy matching."""
import json
import re
import unicodedata
from pathlib import Path
from typing import Dict, List, Optional

import Levenshtein

from ..utils.exceptions import ConfigError
from ..utils.logger import get_logger

logger = get_logger()

DEFAULT_CATEGORIES_PATH = Path(__file__).parent.parent / "resources" / "categories.json"


class CategoryTable:
    """Maps merchant descriptions onto the fixed category list."""

    def __init__(self, categories_path: Optional[Path] = None, fuzzy_threshold: int = 85):
        """
        Initialize category table.

        Args:
            categories_path: Path to categories.json
            fuzzy_threshold: Minimum Levenshtein similarity (0-100) for a fuzzy match
        """
        self.fuzzy_threshold = fuzzy_threshold
        data = self._load(categories_path or DEFAULT_CATEGORIES_PATH)
        self.categories: List[str] = data.get("categories", [])
        self.merchants: Dict[str, str] = {
            self._normalize(name): category for name, category in data.get("merchants", {}).items()
        }
        # Longer keys first so "UBER EATS" wins over "UBER"
        self._ordered_keys = sorted(self.merchants, key=len, reverse=True)

    def lookup(self, description: str) -> Optional[str]:
        """
        Look up the category for a transaction description.

        Args:
            description: Merchant or transaction description

        Returns:
            Category name or None if unknown
        """
        if not description:
            return None
        normalized = self._normalize(description)
        padded = f" {normalized} "

        for key in self._ordered_keys:
            if f" {key} " in padded:
                return self.merchants[key]

        # Fuzzy match against the leading words, where OCR damage tends to leave the merchant name
        words = normalized.split()
        for size in (3, 2, 1):
            if len(words) < size:
                continue
            candidate = " ".join(words[:size])
            for key in self._ordered_keys:
                if len(key) < 4:
                    continue
                score = Levenshtein.ratio(candidate, key) * 100
                if score >= self.fuzzy_threshold:
                    logger.debug(f"Fuzzy category match: {description} -> {key} ({score:.0f})")
                    return self.merchants[key]

        return None

    def is_known_category(self, category: Optional[str]) -> bool:
        return category in self.categories

    def merchant_names(self) -> List[str]:
        """Normalized merchant keys, used to reject merchant lines as holder names."""
        return list(self._ordered_keys)

    @staticmethod
    def _load(path: Path) -> dict:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load categories from {path}: {e}")

    @staticmethod
    def _normalize(text: str) -> str:
        """Uppercase, strip accents and punctuation other than dots."""
        text = unicodedata.normalize("NFKD", text)
        text = "".join(c for c in text if not unicodedata.combining(c))
        text = re.sub(r"[^A-Za-z0-9. ]+", " ", text.upper())
        return " ".join(text.split())
