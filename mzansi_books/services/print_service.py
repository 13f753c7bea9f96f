"""
Print service for quotations and invoices.

``DocumentAssembler`` runs the whole pipeline for one document: resolve and
normalize the client and company, work out totals, load the company images,
lay the pages out and write the PDF. It is the only caller of
``assign_number``, so a document is numbered here the first time it is
rendered for real and keeps that number afterwards. A render that fails
after numbering gives the number back to the registry.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Tuple, Union

from mzansi_books.config import AppConfig
from mzansi_books.enums import DocumentType, PartyKind
from mzansi_books.errors import RenderFailure
from mzansi_books.models import CompanyDetails, Document, DocumentTotals, Party, PartyView
from mzansi_books.services.asset_loader import LoadedAssets, load_company_assets
from mzansi_books.services.document_totals import DEFAULT_TAX_RATE, ZERO, resolve_document_totals
from mzansi_books.services.number_locale import (
    DEFAULT_CURRENCY_SYMBOL,
    format_currency,
    format_date,
    format_percent,
    format_quantity,
)
from mzansi_books.services.number_registry import (
    InMemoryNumberRegistry,
    NumberRegistry,
    PostgresNumberRegistry,
    assign_number,
)
from mzansi_books.services.page_layout import (
    HeaderContent,
    LayoutInput,
    LayoutSettings,
    PageLayoutEngine,
    RenderedPage,
    TableRow,
    TotalsLine,
)
from mzansi_books.services.party_normalizer import normalize
from mzansi_books.services.pdf_writer import PdfMetadata, write_pdf
from mzansi_books.services.text_metrics import TextMeasurer

logger = logging.getLogger(__name__)

DEFAULT_INVOICE_TERMS = "Payment due within 30 days of invoice date."
DRAFT_NUMBER = "DRAFT"

Notifier = Callable[[str, str], None]
ClientDirectory = Mapping[str, Union[Party, Mapping[str, Any]]]

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class RenderResult:
    number: str
    filename: str
    pdf: bytes
    pages: Tuple[RenderedPage, ...]
    totals: DocumentTotals
    client: PartyView
    company: PartyView
    newly_numbered: bool = False
    path: Optional[str] = None

    @property
    def page_count(self) -> int:
        return len(self.pages)


def document_filename(document_type: Union[DocumentType, str], number: str) -> str:
    """``Quotation-QUO-2025-001.pdf``"""
    label = DocumentType.parse(document_type).label
    safe_number = _UNSAFE_FILENAME_RE.sub("-", str(number or DRAFT_NUMBER)).strip("-") or DRAFT_NUMBER
    return f"{label}-{safe_number}.pdf"


def _log_notification(message: str, kind: str = "info") -> None:
    level = logging.ERROR if kind == "error" else logging.INFO
    logger.log(level, "%s", message)


class DocumentAssembler:
    def __init__(
        self,
        company: Union[CompanyDetails, Mapping[str, Any], None],
        *,
        registry: Optional[NumberRegistry] = None,
        clients: Optional[ClientDirectory] = None,
        settings: Optional[LayoutSettings] = None,
        measurer: Optional[TextMeasurer] = None,
        currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
        default_tax_rate: Decimal = DEFAULT_TAX_RATE,
        notify: Optional[Notifier] = None,
    ):
        if not isinstance(company, CompanyDetails):
            record = company or {}
            company = CompanyDetails.from_record(record, record.get("assets"))
        self.company = company
        self.registry = registry if registry is not None else InMemoryNumberRegistry()
        self.clients = clients or {}
        self.settings = settings or LayoutSettings()
        self.measurer = measurer or TextMeasurer()
        self.currency_symbol = currency_symbol
        self.default_tax_rate = default_tax_rate
        self.notify = notify or _log_notification

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        company: Union[CompanyDetails, Mapping[str, Any], None],
        **kwargs: Any,
    ) -> "DocumentAssembler":
        if "registry" not in kwargs:
            if config.database_url:
                kwargs["registry"] = PostgresNumberRegistry(
                    config.database_url,
                    min_size=config.db_pool_min,
                    max_size=config.db_pool_max,
                )
            else:
                kwargs["registry"] = InMemoryNumberRegistry()
        kwargs.setdefault("settings", config.layout_settings())
        kwargs.setdefault("currency_symbol", config.currency_symbol)
        kwargs.setdefault("default_tax_rate", config.default_tax_rate)
        return cls(company, **kwargs)

    # -- entry points -----------------------------------------------------

    def render(
        self,
        document: Union[Document, Mapping[str, Any]],
        *,
        assign: bool = True,
        save_to: Optional[str] = None,
    ) -> RenderResult:
        return asyncio.run(self.render_async(document, assign=assign, save_to=save_to))

    async def render_async(
        self,
        document: Union[Document, Mapping[str, Any]],
        *,
        assign: bool = True,
        save_to: Optional[str] = None,
    ) -> RenderResult:
        """
        Render ``document`` to PDF.

        With ``assign=False`` a document without a number is rendered as a
        draft and nothing is recorded in the registry.

        Raises RenderFailure; every other error is converted to it.
        """
        document_id = document.id if isinstance(document, Document) else (document or {}).get("id")
        try:
            if not isinstance(document, Document):
                document = Document.from_record(document)
            result = await self._render(document, assign, save_to)
        except RenderFailure as exc:
            logger.error("Render failed: %s", exc, exc_info=True)
            self._emit(f"Could not generate document: {exc.cause}", "error")
            raise
        except Exception as exc:
            failure = RenderFailure(document_id, str(exc) or type(exc).__name__)
            logger.error("Render failed: %s", failure, exc_info=True)
            self._emit(f"Could not generate document: {failure.cause}", "error")
            raise failure from exc

        self._emit(f"{result.filename} generated", "success")
        return result

    # -- pipeline ---------------------------------------------------------

    async def _render(self, document: Document, assign: bool, save_to: Optional[str]) -> RenderResult:
        client_view = normalize(self._resolve_client(document.client), PartyKind.CLIENT)
        company_view = normalize(self.company.as_party(), PartyKind.COMPANY)
        totals = resolve_document_totals(document, self.default_tax_rate)
        assets = await load_company_assets(self.company.assets)

        number, newly_numbered = self._resolve_number(document, assign)
        try:
            return self._produce(document, number, newly_numbered, client_view, company_view, totals, assets, save_to)
        except Exception:
            if newly_numbered:
                self._release_number(document.document_type, number)
            raise

    def _produce(
        self,
        document: Document,
        number: str,
        newly_numbered: bool,
        client_view: PartyView,
        company_view: PartyView,
        totals: DocumentTotals,
        assets: LoadedAssets,
        save_to: Optional[str],
    ) -> RenderResult:
        content = self._layout_input(document, number, client_view, company_view, totals, assets)
        pages = PageLayoutEngine(self.measurer, self.settings).layout(content)

        label = document.document_type.label
        metadata = PdfMetadata(
            title=f"{label}-{number}",
            subject=f"{label} for {client_view.display_name}",
            author=company_view.display_name,
        )
        pdf = write_pdf(pages, self.settings, metadata)
        filename = document_filename(document.document_type, number)

        path = None
        if save_to:
            os.makedirs(save_to, exist_ok=True)
            path = os.path.join(save_to, filename)
            with open(path, "wb") as handle:
                handle.write(pdf)
            logger.info("Saved %s (%d page(s))", path, len(pages))

        return RenderResult(
            number=number,
            filename=filename,
            pdf=pdf,
            pages=tuple(pages),
            totals=totals,
            client=client_view,
            company=company_view,
            newly_numbered=newly_numbered,
            path=path,
        )

    def _resolve_client(self, client: Any) -> Union[Party, Mapping[str, Any], None]:
        if client is None or isinstance(client, (Party, Mapping)):
            return client
        client_id = str(client).strip()
        found = self.clients.get(client_id)
        if found is None:
            logger.warning("Client %s not found in the client directory", client_id or "-")
        return found

    def _resolve_number(self, document: Document, assign: bool) -> Tuple[str, bool]:
        if document.number:
            return document.number, False
        if not assign:
            return DRAFT_NUMBER, False
        return assign_number(self.registry, document.document_type, document.id or None)

    def _release_number(self, document_type: DocumentType, number: str) -> None:
        try:
            self.registry.release(document_type, number)
        except Exception:
            logger.warning("Could not release %s after a failed render", number, exc_info=True)
        else:
            logger.info("Released %s after a failed render", number)

    def _money(self, value: Any) -> str:
        return format_currency(value, self.currency_symbol)

    def _layout_input(
        self,
        document: Document,
        number: str,
        client_view: PartyView,
        company_view: PartyView,
        totals: DocumentTotals,
        assets: LoadedAssets,
    ) -> LayoutInput:
        company = self.company
        company_lines = tuple(
            line
            for line in (
                f"VAT No: {company.vat_number}" if company.vat_number else "",
                f"Reg No: {company.reg_number}" if company.reg_number else "",
                company.website,
            )
            if line
        )
        header = HeaderContent(
            document_type=document.document_type,
            number=number,
            company=company_view,
            client=client_view,
            issue_date=format_date(document.issue_date),
            expiry_date=format_date(document.expiry_date),
            reference=document.reference,
            company_lines=company_lines,
            banking_lines=company.banking_lines(),
            logo=assets.logo,
        )

        rows = []
        for position, item in enumerate(document.items, start=1):
            item = item.checked()
            quantity = format_quantity(item.quantity)
            rows.append(
                TableRow(
                    index=str(position),
                    description=item.description,
                    quantity=f"{quantity} {item.unit}".strip(),
                    rate=self._money(item.rate),
                    discount=self._money(item.discount) if item.discount else "-",
                    amount=self._money(item.resolved_amount()),
                )
            )

        totals_lines = [TotalsLine("Subtotal", self._money(totals.subtotal))]
        if totals.discount > ZERO:
            totals_lines.append(TotalsLine("Discount", self._money(-totals.discount)))
        totals_lines.append(TotalsLine(f"VAT ({format_percent(totals.tax_rate)})", self._money(totals.tax_amount)))
        totals_lines.append(TotalsLine(f"Total ({document.currency})", self._money(totals.total), emphasis=True))

        terms = document.terms
        if not terms.strip() and document.document_type is DocumentType.INVOICE:
            terms = DEFAULT_INVOICE_TERMS

        return LayoutInput(
            header=header,
            rows=tuple(rows),
            totals=tuple(totals_lines),
            notes=document.notes,
            terms=terms,
            stamp=assets.stamp,
            signature=assets.signature,
            signatory=company_view.display_name,
            document_id=document.id,
        )

    def _emit(self, message: str, kind: str) -> None:
        try:
            self.notify(message, kind)
        except Exception:
            logger.debug("Notification callback failed.", exc_info=True)


async def render_document_async(
    document: Union[Document, Mapping[str, Any]],
    company: Union[CompanyDetails, Mapping[str, Any], None],
    *,
    clients: Optional[ClientDirectory] = None,
    registry: Optional[NumberRegistry] = None,
    config: Optional[AppConfig] = None,
    notify: Optional[Notifier] = None,
    assign: bool = True,
    save_to: Optional[str] = None,
) -> RenderResult:
    if config is not None:
        options: dict = {"clients": clients, "notify": notify}
        if registry is not None:
            options["registry"] = registry
        assembler = DocumentAssembler.from_config(config, company, **options)
        save_to = save_to or config.pdf_output_dir
    else:
        assembler = DocumentAssembler(company, registry=registry, clients=clients, notify=notify)
    return await assembler.render_async(document, assign=assign, save_to=save_to)


def render_document(
    document: Union[Document, Mapping[str, Any]],
    company: Union[CompanyDetails, Mapping[str, Any], None],
    **kwargs: Any,
) -> RenderResult:
    """Blocking wrapper around ``render_document_async``."""
    return asyncio.run(render_document_async(document, company, **kwargs))
