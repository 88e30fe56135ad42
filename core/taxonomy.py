"""
taxonomy.py
------------
Utility category lookup layer.

Loads utility_keywords from config.yaml and answers one question for a
transaction's (category, subcategory) pair: is this a utility bill? Utility
bills fluctuate seasonally, so the detector relaxes its amount tolerance for
them and gives them a second, fuzzier grouping pass.

Keyword updates happen in config.yaml, no code changes required.
"""

from typing import Iterable, Optional

from config.config_loader import get_utility_keywords
from core.models import Transaction


class UtilityTaxonomy:
    """
    Case-insensitive substring match of category/subcategory against the
    configured utility keywords.

    Built once at init from config. Results are memoized per label since
    the same handful of categories repeat across thousands of transactions.
    """

    def __init__(self, keywords: Optional[Iterable[str]] = None):
        if keywords is None:
            keywords = get_utility_keywords()
        self._keywords: tuple[str, ...] = tuple(k.lower() for k in keywords)
        self._cache: dict[str, bool] = {}

    def _label_matches(self, label: Optional[str]) -> bool:
        if not label:
            return False
        label = label.lower()
        if label not in self._cache:
            self._cache[label] = any(k in label for k in self._keywords)
        return self._cache[label]

    def is_utility_label(self, category: Optional[str], subcategory: Optional[str] = None) -> bool:
        """True if either label contains a utility keyword."""
        return self._label_matches(category) or self._label_matches(subcategory)

    def is_utility(self, tx: Transaction) -> bool:
        """Shortcut for a whole transaction."""
        return self.is_utility_label(tx.category, tx.subcategory)

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def __len__(self) -> int:
        return len(self._keywords)

    def __repr__(self) -> str:
        return f"UtilityTaxonomy(keywords={len(self)})"
