"""
Input records and view models for document rendering.

Records arrive from the CRUD layer as dictionaries in several historical
shapes (camelCase from the browser store, snake_case from the database).
The ``from_record`` constructors accept both and keep every alternate field
so that the normalizers can apply their priority rules.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from mzansi_books.enums import DocumentType, PartyKind
from mzansi_books.services.number_locale import parse_locale_number

ZERO = Decimal("0")

DateValue = Union[str, date, datetime, None]
AssetSource = Union[str, bytes, None]


def _pick(record: Mapping[str, Any], *keys: str) -> str:
    """Return the first non-empty string value found under ``keys``."""
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return ""


def _optional_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_locale_number(value)
    if parsed is None:
        raise ValueError(f"{field_name} is not a number: {value!r}")
    return parsed


def _required_decimal(value: Any, field_name: str, default: Decimal = ZERO) -> Decimal:
    parsed = _optional_decimal(value, field_name)
    return default if parsed is None else parsed


def _finite(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"line item {field_name} is not a number: {value!r}")
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        parsed: Optional[Decimal] = value
    elif isinstance(value, (int, float, str)):
        parsed = parse_locale_number(value)
    else:
        parsed = None
    if parsed is None or not parsed.is_finite():
        raise ValueError(f"line item {field_name} is not a finite number: {value!r}")
    return parsed


@dataclass(frozen=True)
class LineItem:
    description: str = ""
    quantity: Decimal = ZERO
    unit: str = ""
    rate: Decimal = ZERO
    discount: Decimal = ZERO
    amount: Optional[Decimal] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LineItem":
        rate_value = record.get("rate")
        if rate_value in (None, "", 0) and record.get("unitPrice") not in (None, ""):
            rate_value = record.get("unitPrice")
        return cls(
            description=str(record.get("description") or ""),
            quantity=_required_decimal(record.get("quantity"), "quantity"),
            unit=_pick(record, "unit", "unitLabel", "unit_label"),
            rate=_required_decimal(rate_value, "rate"),
            discount=_required_decimal(record.get("discount"), "discount"),
            amount=_optional_decimal(record.get("amount"), "amount"),
        )

    def checked(self) -> "LineItem":
        """Return a copy holding finite Decimals; corrupt numbers raise ValueError."""
        quantity = _finite(self.quantity, "quantity")
        if quantity < ZERO:
            raise ValueError(f"line item quantity is negative: {quantity}")
        return replace(
            self,
            quantity=quantity,
            rate=_finite(self.rate, "rate"),
            discount=_finite(self.discount, "discount"),
            amount=None if self.amount is None else _finite(self.amount, "amount"),
        )

    def resolved_amount(self) -> Decimal:
        """Supplied amount as given, otherwise quantity*rate - discount floored at zero."""
        item = self.checked()
        if item.amount is not None:
            return item.amount
        computed = item.quantity * item.rate - item.discount
        return computed if computed > ZERO else ZERO


@dataclass(frozen=True)
class Party:
    kind: PartyKind = PartyKind.CLIENT
    id: str = ""
    company_name: str = ""
    contact_person: str = ""
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    billing_street: str = ""
    billing_city: str = ""
    billing_state: str = ""
    billing_postal: str = ""
    billing_country: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    country: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any], kind: PartyKind = PartyKind.CLIENT) -> "Party":
        preformatted = _pick(record, "billingAddress", "billing_address", "address", "clientAddress")
        legacy: Dict[str, str] = {
            "address_line1": _pick(record, "addressLine1", "address_line1"),
            "address_line2": _pick(record, "addressLine2", "address_line2"),
            "city": _pick(record, "city"),
            "province": _pick(record, "province"),
            "postal_code": _pick(record, "postalCode", "postal_code"),
            "country": _pick(record, "country"),
        }
        # Structured address objects carry the legacy line fields.
        for key in ("billingAddress", "address"):
            nested = record.get(key)
            if isinstance(nested, Mapping):
                preformatted = preformatted or _pick(nested, "formatted")
                if not any(legacy.values()):
                    legacy = {
                        "address_line1": _pick(nested, "line1"),
                        "address_line2": _pick(nested, "line2"),
                        "city": _pick(nested, "city"),
                        "province": _pick(nested, "province"),
                        "postal_code": _pick(nested, "postalCode", "postal_code"),
                        "country": _pick(nested, "country"),
                    }
        return cls(
            kind=kind,
            id=_pick(record, "id"),
            company_name=_pick(record, "companyName", "company_name", "organizationName", "organization"),
            contact_person=_pick(record, "contactPerson", "contact_person"),
            display_name=_pick(record, "name", "clientName"),
            first_name=_pick(record, "firstName", "first_name"),
            last_name=_pick(record, "lastName", "last_name"),
            email=_pick(record, "email", "clientEmail"),
            phone=_pick(record, "phone", "clientPhone"),
            address=preformatted,
            billing_street=_pick(record, "billingStreet", "billing_street"),
            billing_city=_pick(record, "billingCity", "billing_city"),
            billing_state=_pick(record, "billingState", "billing_state"),
            billing_postal=_pick(record, "billingPostal", "billing_postal"),
            billing_country=_pick(record, "billingCountry", "billing_country"),
            **legacy,
        )


@dataclass(frozen=True)
class CompanyAssets:
    logo: AssetSource = None
    stamp: AssetSource = None
    signature: AssetSource = None

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]]) -> "CompanyAssets":
        record = record or {}

        def source(*keys: str) -> AssetSource:
            for key in keys:
                value = record.get(key)
                if isinstance(value, Mapping):
                    value = value.get("dataUrl") or value.get("path")
                if value:
                    return value
            return None

        return cls(
            logo=source("Logo", "logo"),
            stamp=source("Stamp", "stamp"),
            signature=source("Signature", "signature"),
        )


@dataclass(frozen=True)
class CompanyDetails:
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    address_lines: Tuple[str, ...] = ()
    vat_number: str = ""
    reg_number: str = ""
    website: str = ""
    contact_name: str = ""
    contact_surname: str = ""
    bank_name: str = ""
    account_holder: str = ""
    account_number: str = ""
    branch_code: str = ""
    account_type: str = ""
    assets: CompanyAssets = field(default_factory=CompanyAssets)

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]], assets: Optional[Mapping[str, Any]] = None) -> "CompanyDetails":
        record = record or {}
        lines = tuple(
            line
            for line in (_pick(record, f"addressLine{idx}", f"address_line{idx}") for idx in range(1, 5))
            if line
        )
        return cls(
            name=_pick(record, "name", "companyName", "company_name"),
            email=_pick(record, "email"),
            phone=_pick(record, "phone"),
            address=_pick(record, "address"),
            address_lines=lines,
            vat_number="" if record.get("vatNumberNotApplicable") else _pick(record, "vatNumber", "vat_number"),
            reg_number=_pick(record, "regNumber", "reg_number", "registrationNumber"),
            website="" if record.get("websiteNotApplicable") else _pick(record, "website"),
            contact_name=_pick(record, "contactName", "contact_name"),
            contact_surname=_pick(record, "contactSurname", "contact_surname"),
            bank_name=_pick(record, "bankName", "bank_name"),
            account_holder=_pick(record, "accountHolder", "account_holder"),
            account_number=_pick(record, "accountNumber", "account_number", "bankAccount", "bank_account"),
            branch_code=_pick(record, "branchCode", "branch_code"),
            account_type=_pick(record, "accountType", "account_type"),
            assets=CompanyAssets.from_record(assets),
        )

    def as_party(self) -> Party:
        return Party(
            kind=PartyKind.COMPANY,
            company_name=self.name,
            first_name=self.contact_name,
            last_name=self.contact_surname,
            email=self.email,
            phone=self.phone,
            address=", ".join(self.address_lines) or self.address,
        )

    def banking_lines(self) -> Tuple[str, ...]:
        pairs = (
            ("Bank Name", self.bank_name),
            ("Account Holder", self.account_holder),
            ("Account Number", self.account_number),
            ("Branch Code", self.branch_code),
            ("Account Type", self.account_type),
        )
        return tuple(f"{label}: {value}" for label, value in pairs if value)


ClientRef = Union[Party, Mapping[str, Any], str, None]


@dataclass(frozen=True)
class Document:
    document_type: DocumentType
    id: str = ""
    number: str = ""
    issue_date: DateValue = None
    expiry_date: DateValue = None
    reference: str = ""
    currency: str = "ZAR"
    notes: str = ""
    terms: str = ""
    items: Tuple[LineItem, ...] = ()
    client: ClientRef = None
    tax_rate: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    total: Optional[Decimal] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any], document_type: Any = None) -> "Document":
        number = _pick(record, "number")
        if document_type is None:
            document_type = record.get("documentType") or record.get("type")
        if document_type is None:
            prefix = number.split("-")[0] if number else ""
            if prefix:
                document_type = prefix
            else:
                document_type = DocumentType.QUOTATION if "validUntil" in record else DocumentType.INVOICE
        client = record.get("client")
        if not client:
            client = _pick(record, "clientId", "client_id") or None
        return cls(
            document_type=DocumentType.parse(document_type),
            id=_pick(record, "id"),
            number=number,
            issue_date=record.get("date") or record.get("issueDate"),
            expiry_date=record.get("validUntil") or record.get("dueDate") or record.get("expiryDate"),
            reference=_pick(record, "reference"),
            currency=_pick(record, "currency") or "ZAR",
            notes=str(record.get("notes") or ""),
            terms=str(record.get("terms") or ""),
            items=tuple(LineItem.from_record(item) for item in record.get("items") or ()),
            client=client,
            tax_rate=_optional_decimal(record.get("vatRate", record.get("taxRate")), "tax rate"),
            subtotal=_optional_decimal(record.get("subtotal"), "subtotal"),
            tax_amount=_optional_decimal(record.get("vatTotal", record.get("taxAmount")), "tax amount"),
            discount=_optional_decimal(record.get("discount"), "discount"),
            total=_optional_decimal(record.get("totalAmount", record.get("total")), "total"),
        )


@dataclass(frozen=True)
class PartyView:
    display_name: str
    address_lines: str
    email: str = ""
    phone: str = ""
    attention: str = ""


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    discount: Decimal = ZERO


def as_items(items: Sequence[Union[LineItem, Mapping[str, Any]]]) -> Tuple[LineItem, ...]:
    return tuple(item if isinstance(item, LineItem) else LineItem.from_record(item) for item in items)


@dataclass(frozen=True)
class LoadedImage:
    """A decoded company image ready to be placed on a page."""
    kind: str
    data: bytes
    width_px: int
    height_px: int
    image_format: str = "PNG"

    def fit(self, max_width: float, max_height: float) -> Tuple[float, float]:
        """Largest size inside the box that keeps the aspect ratio."""
        if self.width_px <= 0 or self.height_px <= 0:
            return max_width, max_height
        scale = min(max_width / self.width_px, max_height / self.height_px)
        return self.width_px * scale, self.height_px * scale
