from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Union

from mzansi_books.models import Document, DocumentTotals, LineItem

ZERO = Decimal("0")
ONE_HUNDRED = Decimal("100")
DEFAULT_TAX_RATE = Decimal("15")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return default
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return parsed


def _as_line_item(item: Union[LineItem, Mapping[str, Any]]) -> LineItem:
    return item if isinstance(item, LineItem) else LineItem.from_record(item)


def compute_subtotal(line_items: Iterable[Union[LineItem, Mapping[str, Any]]]) -> Decimal:
    subtotal = ZERO
    for item in line_items:
        subtotal += _as_line_item(item).resolved_amount()
    return subtotal


def compute_totals(
    line_items: Iterable[Union[LineItem, Mapping[str, Any]]],
    tax_rate_percent: Any = None,
) -> DocumentTotals:
    """
    Derive subtotal, tax and total from line items.

    ``subtotal`` sums each item's own amount (computed only when absent),
    ``tax_amount = subtotal * rate / 100`` and ``total = subtotal + tax_amount``.
    No intermediate rounding is applied.
    """
    rate = to_decimal(tax_rate_percent, DEFAULT_TAX_RATE)
    subtotal = compute_subtotal(line_items)
    tax_amount = subtotal * rate / ONE_HUNDRED
    return DocumentTotals(
        subtotal=subtotal,
        tax_rate=rate,
        tax_amount=tax_amount,
        total=subtotal + tax_amount,
    )


def resolve_document_totals(document: Document, default_tax_rate: Any = DEFAULT_TAX_RATE) -> DocumentTotals:
    """
    Totals for display: declared values are trusted, missing ones are derived.

    A declared total is shown as given even when it disagrees with the line
    items.
    """
    rate = to_decimal(document.tax_rate, None)
    if rate is None:
        rate = to_decimal(default_tax_rate, DEFAULT_TAX_RATE)

    declared_subtotal = to_decimal(document.subtotal)
    declared_tax = to_decimal(document.tax_amount)
    declared_total = to_decimal(document.total)
    discount = to_decimal(document.discount, ZERO)

    for item in document.items:
        item.checked()

    if declared_subtotal is not None and declared_tax is not None and declared_total is not None:
        return DocumentTotals(
            subtotal=declared_subtotal,
            tax_rate=rate,
            tax_amount=declared_tax,
            total=declared_total,
            discount=discount,
        )

    computed = compute_totals(document.items, rate)
    subtotal = declared_subtotal if declared_subtotal is not None else computed.subtotal
    tax_amount = declared_tax if declared_tax is not None else subtotal * rate / ONE_HUNDRED
    total = declared_total if declared_total is not None else subtotal + tax_amount - discount
    return DocumentTotals(
        subtotal=subtotal,
        tax_rate=rate,
        tax_amount=tax_amount,
        total=total,
        discount=discount,
    )
