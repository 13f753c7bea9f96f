import base64
import io
import os
import tempfile
import unittest
from datetime import date
from decimal import Decimal

import psycopg
from PIL import Image

from mzansi_books.config import AppConfig
from mzansi_books.enums import DocumentType
from mzansi_books.errors import DuplicateNumberError, RenderFailure
from mzansi_books.services.number_registry import InMemoryNumberRegistry
from mzansi_books.services.page_layout import LayoutSettings
from mzansi_books.services.print_service import (
    DEFAULT_INVOICE_TERMS,
    DocumentAssembler,
    document_filename,
    render_document,
)

YEAR = date.today().year

COMPANY = {
    "name": "Acme Trading",
    "email": "hi@acme.co.za",
    "phone": "021 555 0100",
    "addressLine1": "1 Main Rd",
    "addressLine2": "Cape Town",
    "vatNumber": "4123456789",
    "bankName": "FNB",
    "bankAccount": "6200012345",
    "branchCode": "250655",
}


def _png_data_url(size=(60, 30)):
    buffer = io.BytesIO()
    Image.new("RGB", size, "black").save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _quotation(**overrides):
    record = {
        "id": "q-1",
        "documentType": "QUO",
        "date": "2025-03-01",
        "validUntil": "2025-03-31",
        "client": {
            "companyName": "Beta Builders",
            "contactPerson": "Jane Doe",
            "billingStreet": "2 Side St",
            "billingCity": "Durban",
        },
        "items": [
            {"description": "Design", "quantity": 1, "rate": 100},
            {"description": "Build", "quantity": 1, "rate": 200},
            {"description": "Support", "quantity": 1, "rate": 300},
        ],
        "vatRate": 15,
    }
    record.update(overrides)
    return record


def _all_texts(result):
    return [text for page in result.pages for text in page.texts()]


class _UnreachableRegistry(InMemoryNumberRegistry):
    def __init__(self, error):
        super().__init__()
        self.error = error

    def issued_numbers(self, document_type):
        raise self.error


class _ExhaustedRegistry(InMemoryNumberRegistry):
    def record(self, document_type, number, document_id):
        raise DuplicateNumberError(number)


class DocumentAssemblerTests(unittest.TestCase):
    def setUp(self):
        self.notifications = []
        self.registry = InMemoryNumberRegistry()
        self.assembler = DocumentAssembler(
            COMPANY,
            registry=self.registry,
            notify=lambda message, kind: self.notifications.append((kind, message)),
        )

    def test_renders_quotation_end_to_end(self):
        result = self.assembler.render(_quotation())
        self.assertTrue(result.pdf.startswith(b"%PDF"))
        self.assertEqual(result.number, f"QUO-{YEAR}-001")
        self.assertEqual(result.filename, f"Quotation-QUO-{YEAR}-001.pdf")
        self.assertTrue(result.newly_numbered)
        self.assertEqual(result.totals.subtotal, Decimal("600"))
        self.assertEqual(result.totals.tax_amount, Decimal("90"))
        self.assertEqual(result.totals.total, Decimal("690"))
        self.assertEqual(result.client.display_name, "Beta Builders")
        self.assertEqual(result.client.attention, "Jane Doe")
        self.assertEqual(result.client.address_lines, "2 Side St, Durban")
        self.assertEqual(result.company.address_lines, "1 Main Rd, Cape Town")
        self.assertEqual(self.notifications, [("success", f"{result.filename} generated")])

        texts = _all_texts(result)
        self.assertIn("R 690.00", texts)
        self.assertIn("VAT (15%)", texts)
        self.assertIn("Total (ZAR)", texts)
        self.assertIn("Quote To:", texts)
        self.assertIn("Attn: Jane Doe", texts)
        self.assertIn("Account Number: 6200012345", texts)
        self.assertIn("Quotation Date: 01/03/2025", texts)

    def test_second_quotation_gets_next_number(self):
        first = self.assembler.render(_quotation())
        second = self.assembler.render(_quotation(id="q-2"))
        self.assertEqual(first.number, f"QUO-{YEAR}-001")
        self.assertEqual(second.number, f"QUO-{YEAR}-002")

    def test_rerendering_keeps_the_assigned_number(self):
        first = self.assembler.render(_quotation())
        again = self.assembler.render(_quotation())
        self.assertEqual(again.number, first.number)
        self.assertFalse(again.newly_numbered)

    def test_draft_renders_are_idempotent_until_numbered(self):
        draft_a = self.assembler.render(_quotation(), assign=False)
        draft_b = self.assembler.render(_quotation(), assign=False)
        self.assertEqual(draft_a.number, "DRAFT")
        self.assertEqual(self.registry.issued_numbers(DocumentType.QUOTATION), [])
        self.assertEqual((draft_a.totals, draft_a.client, draft_a.company), (draft_b.totals, draft_b.client, draft_b.company))

        final = self.assembler.render(_quotation())
        self.assertEqual(final.number, f"QUO-{YEAR}-001")
        self.assertEqual((final.totals, final.client, final.company), (draft_a.totals, draft_a.client, draft_a.company))

    def test_existing_number_is_never_changed(self):
        result = self.assembler.render(_quotation(number="QUO-2024-010"))
        self.assertEqual(result.number, "QUO-2024-010")
        self.assertFalse(result.newly_numbered)

    def test_invoice_gets_default_terms_and_due_date(self):
        record = _quotation(documentType="INV", dueDate="2025-04-01", id="i-1")
        del record["validUntil"]
        result = self.assembler.render(record)
        texts = _all_texts(result)
        self.assertEqual(result.filename, f"Invoice-INV-{YEAR}-001.pdf")
        self.assertIn(DEFAULT_INVOICE_TERMS, texts)
        self.assertIn("Due Date: 01/04/2025", texts)
        self.assertIn("Bill To:", texts)

    def test_client_resolved_from_directory(self):
        assembler = DocumentAssembler(
            COMPANY,
            clients={"c-7": {"firstName": "Sipho", "lastName": "Dlamini", "address": "9 Loop St, Cape Town"}},
        )
        result = assembler.render(_quotation(client=None, clientId="c-7"))
        self.assertEqual(result.client.display_name, "Sipho Dlamini")
        self.assertEqual(result.client.address_lines, "9 Loop St, Cape Town")

    def test_unknown_client_id_uses_placeholder(self):
        with self.assertLogs("mzansi_books.services.print_service", level="WARNING"):
            result = self.assembler.render(_quotation(client="missing"))
        self.assertEqual(result.client.display_name, "Unknown Client")
        self.assertEqual(result.client.address_lines, "")

    def test_long_document_is_paginated(self):
        items = [{"description": f"Item {index} " + "detail " * 10, "quantity": 2, "rate": 15} for index in range(80)]
        result = self.assembler.render(_quotation(items=items))
        self.assertGreater(result.page_count, 1)
        for page in result.pages:
            self.assertIn(f"Page {page.number} of {result.page_count}", page.texts())

    def test_company_images_are_placed(self):
        company = dict(COMPANY, assets={"logo": _png_data_url(), "stamp": _png_data_url((40, 40)), "signature": _png_data_url()})
        result = DocumentAssembler(company).render(_quotation())
        self.assertTrue(result.pdf.startswith(b"%PDF"))
        self.assertIn("signature", [unit.name for unit in result.pages[-1].units])
        self.assertIn("Authorized Signature", result.pages[-1].texts())

    def test_corrupt_line_item_raises_render_failure(self):
        record = _quotation(id="q-bad", items=[{"description": "Broken", "quantity": "abc", "rate": 10}])
        with self.assertLogs("mzansi_books.services.print_service", level="ERROR"):
            with self.assertRaises(RenderFailure) as ctx:
                self.assembler.render(record)
        self.assertEqual(ctx.exception.document_id, "q-bad")
        self.assertIsInstance(ctx.exception.__cause__, ValueError)
        self.assertEqual(self.notifications[-1][0], "error")
        self.assertIn("quantity", self.notifications[-1][1])
        self.assertEqual(self.registry.issued_numbers(DocumentType.QUOTATION), [])

    def test_layout_failure_is_reported(self):
        assembler = DocumentAssembler(
            COMPANY,
            settings=LayoutSettings(page_height=100, footer_reserved_height=50),
            notify=lambda message, kind: self.notifications.append((kind, message)),
        )
        with self.assertLogs("mzansi_books.services.print_service", level="ERROR"):
            with self.assertRaises(RenderFailure):
                assembler.render(_quotation())
        self.assertEqual(self.notifications[-1][0], "error")

    def test_registry_errors_become_render_failures(self):
        errors = (psycopg.OperationalError("connection refused"), RuntimeError("connection refused"))
        for error in errors:
            with self.subTest(error=type(error).__name__):
                notifications = []
                assembler = DocumentAssembler(
                    COMPANY,
                    registry=_UnreachableRegistry(error),
                    notify=lambda message, kind: notifications.append((kind, message)),
                )
                with self.assertLogs("mzansi_books.services.print_service", level="ERROR"):
                    with self.assertRaises(RenderFailure) as ctx:
                        assembler.render(_quotation())
                self.assertEqual(ctx.exception.document_id, "q-1")
                self.assertIs(ctx.exception.__cause__, error)
                self.assertEqual(notifications[-1][0], "error")

    def test_exhausted_numbering_becomes_render_failure(self):
        assembler = DocumentAssembler(COMPANY, registry=_ExhaustedRegistry())
        with self.assertLogs("mzansi_books.services.print_service", level="ERROR"):
            with self.assertRaises(RenderFailure) as ctx:
                assembler.render(_quotation())
        self.assertIn("no free QUO number", ctx.exception.cause)

    def test_failed_render_gives_its_number_back(self):
        with tempfile.TemporaryDirectory() as tmp:
            blocker = os.path.join(tmp, "not-a-directory")
            with open(blocker, "w") as handle:
                handle.write("x")
            with self.assertLogs("mzansi_books.services.print_service", level="ERROR"):
                with self.assertRaises(RenderFailure):
                    self.assembler.render(_quotation(), save_to=blocker)
        self.assertEqual(self.registry.issued_numbers(DocumentType.QUOTATION), [])

        result = self.assembler.render(_quotation(id="q-2"))
        self.assertEqual(result.number, f"QUO-{YEAR}-001")
        self.assertTrue(result.newly_numbered)

    def test_corrupt_stamp_is_omitted(self):
        noise = Image.frombytes("RGB", (200, 200), os.urandom(200 * 200 * 3))
        buffer = io.BytesIO()
        noise.save(buffer, format="PNG")
        truncated = buffer.getvalue()[: len(buffer.getvalue()) // 2]
        company = dict(COMPANY, assets={"stamp": truncated, "signature": _png_data_url()})
        registry = InMemoryNumberRegistry()
        with self.assertLogs("mzansi_books.services.asset_loader", level="WARNING"):
            result = DocumentAssembler(company, registry=registry).render(_quotation())
        self.assertTrue(result.pdf.startswith(b"%PDF"))
        self.assertEqual(result.number, f"QUO-{YEAR}-001")
        self.assertEqual(registry.issued_numbers(DocumentType.QUOTATION), [result.number])

    def test_save_to_writes_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = self.assembler.render(_quotation(), save_to=os.path.join(tmp, "out"))
            self.assertEqual(result.path, os.path.join(tmp, "out", result.filename))
            with open(result.path, "rb") as handle:
                self.assertEqual(handle.read(), result.pdf)


class RenderDocumentTests(unittest.TestCase):
    def test_render_document_with_config(self):
        config = AppConfig(currency_symbol="ZAR", default_tax_rate=Decimal("10"))
        record = _quotation()
        del record["vatRate"]
        result = render_document(record, COMPANY, config=config)
        self.assertEqual(result.totals.tax_rate, Decimal("10"))
        self.assertIn("ZAR 660.00", _all_texts(result))

    def test_document_filename(self):
        self.assertEqual(document_filename("INV", "INV-2025-003"), "Invoice-INV-2025-003.pdf")
        self.assertEqual(document_filename("quotation", "QUO/2025/001"), "Quotation-QUO-2025-001.pdf")


if __name__ == "__main__":
    unittest.main()
