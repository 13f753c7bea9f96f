"""
Sequential, per-year document numbers in the form QUO-2025-001.

The sequence restarts every calendar year and always continues from the
highest number already issued, so gaps left by deleted documents are never
reused.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from mzansi_books.enums import DocumentType
from mzansi_books.errors import NumberGenerationError

logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 3
_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*$")


def _resolve_prefix(document_type: Union[DocumentType, str, Any]) -> str:
    if isinstance(document_type, DocumentType):
        return document_type.prefix
    prefix = str(document_type or "").strip().upper()
    if not _PREFIX_RE.match(prefix):
        raise NumberGenerationError(f"unusable document type prefix: {document_type!r}")
    return prefix


def _current_year(today: Optional[Union[date, datetime]]) -> int:
    return (today or date.today()).year


def parse_number(number: Any, prefix: str) -> Optional[tuple]:
    """Return ``(year, sequence)`` for a well-formed number, else None."""
    if not isinstance(number, str):
        return None
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d{{4}})-(\d+)", number.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def format_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:0{SEQUENCE_WIDTH}d}"


def _max_sequence(existing_numbers: Iterable[Any], prefix: str, year: int) -> int:
    if existing_numbers is None:
        return 0
    if isinstance(existing_numbers, (str, bytes)):
        raise NumberGenerationError("existing numbers must be a collection, not a single string")
    try:
        candidates = list(existing_numbers)
    except TypeError as exc:
        raise NumberGenerationError(f"existing numbers are not iterable: {exc}") from exc

    highest = 0
    for candidate in candidates:
        parsed = parse_number(candidate, prefix)
        if parsed is None:
            logger.debug("Ignoring malformed document number %r", candidate)
            continue
        parsed_year, sequence = parsed
        if parsed_year == year and sequence > highest:
            highest = sequence
    return highest


def fallback_number(prefix: str, year: int, existing_numbers: Iterable[Any] = ()) -> str:
    """Timestamp-suffixed number used when the regular sequence cannot be derived."""
    try:
        taken = {str(number) for number in existing_numbers or ()}
    except TypeError:
        taken = set()
    stamp = int(time.time() * 1000)
    candidate = f"{prefix}-{year}-T{stamp}"
    while candidate in taken:
        stamp += 1
        candidate = f"{prefix}-{year}-T{stamp}"
    return candidate


def next_number(
    document_type: Union[DocumentType, str],
    existing_numbers: Iterable[Any] = (),
    today: Optional[Union[date, datetime]] = None,
) -> str:
    """Return the next number for ``document_type`` in the current year. Never raises."""
    year = _current_year(today)
    try:
        prefix = _resolve_prefix(document_type)
    except NumberGenerationError as exc:
        logger.warning("Falling back to timestamp document number: %s", exc)
        return fallback_number("DOC", year, ())

    try:
        highest = _max_sequence(existing_numbers, prefix, year)
    except NumberGenerationError as exc:
        logger.warning("Falling back to timestamp document number: %s", exc)
        return fallback_number(prefix, year, ())
    return format_number(prefix, year, highest + 1)
