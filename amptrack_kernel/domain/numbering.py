"""
Document number formatting.

Numbers read ``{PREFIX}-{year}-{seq:04d}``, e.g. ``INV-2024-0007``.  The
sequence widens past four digits rather than wrapping.  Allocation (the
locked counter) lives in amptrack_kernel.services.numbering_service.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

DEFAULT_PREFIXES: dict[str, str] = {
    "estimate": "EST",
    "invoice": "INV",
    "change_order": "CO",
}

_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z][A-Z0-9]*)-(?P<year>\d{4})-(?P<seq>\d{4,})$")


@dataclass(frozen=True)
class DocumentNumber:
    prefix: str
    year: int
    seq: int

    def __str__(self) -> str:
        return format_document_number(self.prefix, self.year, self.seq)


def prefix_for(document_type: str, prefixes: Mapping[str, str] | None = None) -> str:
    table = prefixes or DEFAULT_PREFIXES
    key = getattr(document_type, "value", document_type)
    try:
        return table[key]
    except KeyError:
        raise ValueError(f"No number prefix configured for {key!r}") from None


def format_document_number(prefix: str, year: int, seq: int) -> str:
    if seq < 1:
        raise ValueError(f"Sequence must be positive, got {seq}")
    if not 1000 <= year <= 9999:
        raise ValueError(f"Year must have four digits, got {year}")
    return f"{prefix}-{year}-{seq:04d}"


def parse_document_number(value: str) -> DocumentNumber:
    """Split a formatted number back into its parts.

    Raises:
        ValueError: If ``value`` is not a well-formed document number.
    """
    match = _NUMBER_RE.match(value or "")
    if match is None:
        raise ValueError(f"Not a document number: {value!r}")
    return DocumentNumber(
        prefix=match.group("prefix"),
        year=int(match.group("year")),
        seq=int(match.group("seq")),
    )
