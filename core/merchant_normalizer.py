"""
merchant_normalizer.py
-----------------------
Converts raw bank-feed descriptions into comparable merchant keys.

Two keys are derived:
    - normalize(): the exact merchant key. Used for Pass 1 grouping,
      override matching and de-duplication.
    - prefix_key(): the first few characters of the merchant key. Used only
      by the utility fallback pass to tolerate suffix drift such as
      "duke energy" vs "duke energy pmt".
"""

import re

# Keys shorter than this are too ambiguous to group. Not configurable.
MIN_KEY_LENGTH = 3

DEFAULT_PREFIX_LENGTH = 8

_SEPARATORS = re.compile(r"[*#@]")
_REFERENCE_NUMBERS = re.compile(r"\b\d{5,}\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(description: str | None) -> str:
    """
    Normalize a raw description into a merchant key.

    Steps (order matters):
        1. Lowercase.
        2. Bank-feed field separators (*, #, @) become spaces.
        3. Standalone digit runs of 5+ characters (reference numbers) are dropped.
        4. Any other punctuation is dropped.
        5. Whitespace is collapsed and trimmed.

    Examples:
        "NETFLIX.COM #12345678"  -> "netflixcom"
        "SQ *Blue Bottle Coffee" -> "sq blue bottle coffee"
    """
    if not description:
        return ""

    text = description.lower()
    text = _SEPARATORS.sub(" ", text)
    text = _REFERENCE_NUMBERS.sub("", text)
    text = _NON_ALNUM.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def prefix_key(description: str | None, length: int = DEFAULT_PREFIX_LENGTH) -> str:
    """First `length` characters of the normalized description, right-trimmed."""
    return normalize(description)[:length].rstrip()


def is_groupable(key: str) -> bool:
    """True if a merchant key is long enough to group on."""
    return len(key) >= MIN_KEY_LENGTH
