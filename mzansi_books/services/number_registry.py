"""
Persistence of issued document numbers.

``assign_number`` is the single place where a document receives its number.
A document keeps the number it was first given; later calls return it
unchanged.
"""
from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Dict, List, Optional, Protocol, Tuple, Union

from psycopg import errors as pg_errors
from psycopg_pool import ConnectionPool

from mzansi_books.enums import DocumentType
from mzansi_books.errors import DuplicateNumberError, NumberGenerationError
from mzansi_books.services.document_numbering import fallback_number, next_number

logger = logging.getLogger(__name__)

MAX_ASSIGN_ATTEMPTS = 5


class NumberRegistry(Protocol):
    def issued_numbers(self, document_type: DocumentType) -> List[str]:
        ...

    def number_for(self, document_type: DocumentType, document_id: str) -> Optional[str]:
        ...

    def record(self, document_type: DocumentType, number: str, document_id: Optional[str]) -> None:
        """Store a number. Raises DuplicateNumberError if it is taken."""
        ...

    def release(self, document_type: DocumentType, number: str) -> None:
        """Forget a number whose document was never produced."""
        ...


class InMemoryNumberRegistry:
    """Process-local registry, used when no database is configured."""

    def __init__(self, issued: Optional[Dict[DocumentType, Dict[str, Optional[str]]]] = None):
        self._lock = threading.Lock()
        self._issued: Dict[DocumentType, Dict[str, Optional[str]]] = {
            doc_type: dict(numbers) for doc_type, numbers in (issued or {}).items()
        }

    def issued_numbers(self, document_type: DocumentType) -> List[str]:
        with self._lock:
            return list(self._issued.get(document_type, {}))

    def number_for(self, document_type: DocumentType, document_id: str) -> Optional[str]:
        if not document_id:
            return None
        with self._lock:
            for number, owner in self._issued.get(document_type, {}).items():
                if owner == document_id:
                    return number
        return None

    def record(self, document_type: DocumentType, number: str, document_id: Optional[str]) -> None:
        with self._lock:
            numbers = self._issued.setdefault(document_type, {})
            if number in numbers:
                raise DuplicateNumberError(number)
            numbers[number] = document_id or None

    def release(self, document_type: DocumentType, number: str) -> None:
        with self._lock:
            self._issued.get(document_type, {}).pop(number, None)


class PostgresNumberRegistry:
    """Registry backed by ``app.document_number``."""

    SCHEMA_SQL = """
        CREATE SCHEMA IF NOT EXISTS app;
        CREATE TABLE IF NOT EXISTS app.document_number (
            id BIGSERIAL PRIMARY KEY,
            document_type TEXT NOT NULL,
            number TEXT NOT NULL,
            document_id TEXT,
            issued_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (document_type, number)
        );
        CREATE UNIQUE INDEX IF NOT EXISTS document_number_owner_uq
            ON app.document_number (document_type, document_id)
            WHERE document_id IS NOT NULL;
    """

    def __init__(self, dsn: Optional[str] = None, pool=None, min_size: int = 1, max_size: int = 4):
        if pool is None:
            if not dsn:
                raise ValueError("PostgresNumberRegistry needs a DSN or a connection pool")
            pool = ConnectionPool(conninfo=dsn, min_size=min_size, max_size=max_size)
        self.pool = pool

    def ensure_schema(self) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(self.SCHEMA_SQL)
            conn.commit()

    def issued_numbers(self, document_type: DocumentType) -> List[str]:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT number FROM app.document_number WHERE document_type = %s",
                    (document_type.value,),
                )
                return [row[0] for row in cur.fetchall()]

    def number_for(self, document_type: DocumentType, document_id: str) -> Optional[str]:
        if not document_id:
            return None
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT number FROM app.document_number WHERE document_type = %s AND document_id = %s",
                    (document_type.value, document_id),
                )
                row = cur.fetchone()
                return row[0] if row else None

    def record(self, document_type: DocumentType, number: str, document_id: Optional[str]) -> None:
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "INSERT INTO app.document_number (document_type, number, document_id) VALUES (%s, %s, %s)",
                        (document_type.value, number, document_id or None),
                    )
                conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateNumberError(number) from exc

    def release(self, document_type: DocumentType, number: str) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM app.document_number WHERE document_type = %s AND number = %s",
                    (document_type.value, number),
                )
            conn.commit()

    def close(self) -> None:
        self.pool.close()


def assign_number(
    registry: NumberRegistry,
    document_type: Union[DocumentType, str],
    document_id: Optional[str] = None,
    today: Optional[Union[date, datetime]] = None,
) -> Tuple[str, bool]:
    """
    Return ``(number, newly_assigned)`` for a document.

    A document that already owns a number gets it back. Otherwise the next
    number is computed from the registry and recorded; when another writer
    records the same number first, the issued list is re-read and the next
    free number is tried. After that a timestamp number is used; if even
    those collide NumberGenerationError is raised.
    """
    document_type = DocumentType.parse(document_type)
    existing = registry.number_for(document_type, document_id) if document_id else None
    if existing:
        return existing, False

    issued: List[str] = []
    for attempt in range(1, MAX_ASSIGN_ATTEMPTS + 1):
        issued = registry.issued_numbers(document_type)
        number = next_number(document_type, issued, today=today)
        try:
            registry.record(document_type, number, document_id)
        except DuplicateNumberError as exc:
            logger.warning("Attempt %d: %s, retrying", attempt, exc)
            continue
        logger.info("Assigned %s to document %s", number, document_id or "-")
        return number, True

    year = (today or date.today()).year
    taken = set(issued)
    for _ in range(MAX_ASSIGN_ATTEMPTS):
        number = fallback_number(document_type.prefix, year, taken)
        try:
            registry.record(document_type, number, document_id)
        except DuplicateNumberError:
            taken.add(number)
            continue
        logger.warning("Assigned fallback number %s to document %s", number, document_id or "-")
        return number, True
    raise NumberGenerationError(
        f"no free {document_type.prefix} number after {2 * MAX_ASSIGN_ATTEMPTS} attempts"
    )
