"""
Math Expression Normalizer
Rewrites spoken math vocabulary into symbolic notation after transcription.
"""

import re
from typing import List, Tuple


# Applied in order; multi-word phrases come before the single words they contain
_SPOKEN_REWRITES: List[Tuple[str, str]] = [
    (r"\bsquare root of\b", "√"),
    (r"\bsqrt of\b", "√"),
    (r"\bto the power of (\d+)\b", r"^\1"),
    (r"\bintegral of\b", "∫"),
    (r"\bsum of\b", "Σ"),
    (r"\bsquared\b", "²"),
    (r"\bcubed\b", "³"),
    (r"\bpi\b", "π"),
    (r"\btheta\b", "θ"),
    (r"\balpha\b", "α"),
    (r"\bbeta\b", "β"),
    (r"\binfinity\b", "∞"),
    (r"\bdelta\b", "Δ"),
]

_COMPILED_REWRITES = [
    (re.compile(pattern, re.IGNORECASE), replacement)
    for pattern, replacement in _SPOKEN_REWRITES
]


class MathNormalizer:
    """
    Normalizes transcribed math for display and solving.
    """

    @staticmethod
    def spoken_to_symbols(text: str) -> str:
        """
        Replace spoken math terms with symbols.

        "x squared plus pi" -> "x ² plus π". Whole words only, case-insensitive,
        deterministic.
        """
        if not text:
            return ""

        for pattern, replacement in _COMPILED_REWRITES:
            text = pattern.sub(replacement, text)

        return text

    @staticmethod
    def normalize_whitespace(text: str) -> str:
        return " ".join(text.split()).strip()
