"""
Centralised enums for document types, party kinds and layout states.
"""

from enum import Enum


class DocumentType(str, Enum):
    """Rendered document types. The value is the numbering prefix."""
    QUOTATION = "QUO"
    INVOICE = "INV"

    @property
    def prefix(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return "Quotation" if self is DocumentType.QUOTATION else "Invoice"

    @property
    def heading(self) -> str:
        return self.label.upper()

    @property
    def date_label(self) -> str:
        return f"{self.label} Date"

    @property
    def expiry_label(self) -> str:
        return "Valid Until" if self is DocumentType.QUOTATION else "Due Date"

    @property
    def recipient_label(self) -> str:
        return "Quote To:" if self is DocumentType.QUOTATION else "Bill To:"

    @classmethod
    def parse(cls, value) -> "DocumentType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        for member in cls:
            if text in (member.value, member.name, member.label.upper()):
                return member
        raise ValueError(f"Unknown document type: {value!r}")


class PartyKind(str, Enum):
    CLIENT = "CLIENT"
    COMPANY = "COMPANY"

    @property
    def placeholder_name(self) -> str:
        return "Unknown Client" if self is PartyKind.CLIENT else "Unknown Company"


class AssetKind(str, Enum):
    LOGO = "logo"
    STAMP = "stamp"
    SIGNATURE = "signature"


class LayoutState(str, Enum):
    """States of the page layout engine, in drawing order."""
    HEADER = "HEADER"
    TABLE_HEADER = "TABLE_HEADER"
    ROWS = "ROWS"
    TOTALS = "TOTALS"
    NOTES_TERMS = "NOTES_TERMS"
    SIGNATURE = "SIGNATURE"
