"""
Content fingerprints for duplicate detection.

Two items with the same fingerprint are the same item for acceptance
purposes. Option order is part of the content.
"""

import hashlib
import re
import unicodedata
from typing import Iterable, Optional

SEPARATOR = "\x1f"

_WHITESPACE = re.compile(r"\s+")


def normalize(s: Optional[str]) -> str:
    """NFKC-normalize, casefold, collapse whitespace runs, trim."""
    if not s:
        return ""
    s = unicodedata.normalize("NFKC", s).casefold()
    # casefold output is not always NFKC
    s = unicodedata.normalize("NFKC", s)
    return _WHITESPACE.sub(" ", s).strip()


def fingerprint(subject: Optional[str], stem: Optional[str], options: Iterable[str]) -> str:
    """SHA-256 hex digest over normalized subject, stem and options, in order."""
    parts = [normalize(subject), normalize(stem)]
    parts.extend(normalize(o) for o in options)
    return hashlib.sha256(SEPARATOR.join(parts).encode("utf-8")).hexdigest()
