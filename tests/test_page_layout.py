import unittest
from dataclasses import replace

from mzansi_books.enums import DocumentType
from mzansi_books.errors import RenderFailure
from mzansi_books.models import LoadedImage, PartyView
from mzansi_books.services.page_layout import (
    Cursor,
    HeaderContent,
    LayoutInput,
    LayoutSettings,
    PageLayoutEngine,
    TableRow,
    TotalsLine,
)
from mzansi_books.services.text_metrics import TextMeasurer, sanitize

SETTINGS = LayoutSettings()
STAMP = LoadedImage(kind="stamp", data=b"", width_px=200, height_px=200)
SIGNATURE = LoadedImage(kind="signature", data=b"", width_px=300, height_px=100)


def _header(**overrides):
    values = dict(
        document_type=DocumentType.QUOTATION,
        number="QUO-2025-001",
        company=PartyView("Acme Trading", "1 Main Rd, Cape Town", email="hi@acme.co.za", phone="021 555 0100"),
        client=PartyView("Beta Builders", "2 Side St, Durban", attention="Jane Doe"),
        issue_date="01/05/2025",
        expiry_date="31/05/2025",
        banking_lines=("Bank Name: FNB", "Account Number: 6200012345"),
    )
    values.update(overrides)
    return HeaderContent(**values)


def _rows(count, description="Consulting services"):
    return tuple(
        TableRow(str(index), f"{description} {index}", "1", "R 100.00", "-", "R 100.00")
        for index in range(1, count + 1)
    )


def _content(rows=(), **overrides):
    values = dict(
        header=_header(),
        rows=rows,
        totals=(
            TotalsLine("Subtotal", "R 600.00"),
            TotalsLine("VAT (15%)", "R 90.00"),
            TotalsLine("Total (ZAR)", "R 690.00", emphasis=True),
        ),
        document_id="q-1",
        signatory="Acme Trading",
    )
    values.update(overrides)
    return LayoutInput(**values)


def _unit_names(pages):
    return [unit.name for page in pages for unit in page.units]


class PageLayoutEngineTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.measurer = TextMeasurer()

    def layout(self, content, settings=SETTINGS):
        return PageLayoutEngine(self.measurer, settings).layout(content)

    def test_short_document_fits_on_one_page(self):
        pages = self.layout(_content(_rows(3)))
        self.assertEqual(len(pages), 1)
        self.assertEqual(pages[0].total_pages, 1)
        self.assertIn("Page 1 of 1", pages[0].texts())
        self.assertEqual(_unit_names(pages), ["row 1", "row 2", "row 3", "totals"])

    def test_long_item_list_spans_pages_with_identical_headers(self):
        pages = self.layout(_content(_rows(120)))
        self.assertGreater(len(pages), 2)
        for page in pages:
            self.assertEqual(page.header_ops, pages[0].header_ops)
            self.assertIn(f"Page {page.number} of {len(pages)}", page.texts())
            self.assertIn("Description", page.texts())
            self.assertIn("QUOTATION", page.texts())

    def test_every_row_is_placed_once_and_in_order(self):
        pages = self.layout(_content(_rows(120)))
        rows = [name for name in _unit_names(pages) if name.startswith("row ")]
        self.assertEqual(rows, [f"row {index}" for index in range(1, 121)])

    def test_no_unit_crosses_into_the_footer_band(self):
        rows = _rows(40) + tuple(
            TableRow(str(index), "Long description " * 25, "2 hrs", "R 450.00", "R 10.00", "R 890.00")
            for index in range(41, 61)
        )
        pages = self.layout(_content(rows, notes="Delivery within ten days. " * 30, terms="Deposit required. " * 40))
        for page in pages:
            for unit in page.units:
                self.assertLessEqual(unit.bottom, SETTINGS.body_limit, unit.name)
                self.assertGreaterEqual(unit.top, SETTINGS.margin, unit.name)

    def test_wrapped_description_makes_row_taller(self):
        rows = (TableRow("1", "word " * 80, "1", "R 1.00", "-", "R 1.00"),) + _rows(1)
        pages = self.layout(_content(rows))
        units = {unit.name: unit for unit in pages[0].units}
        single_line = SETTINGS.line_height + 2 * SETTINGS.cell_padding
        self.assertGreater(units["row 1"].height, single_line * 2)
        self.assertAlmostEqual(units["row 2"].height, single_line)
        self.assertAlmostEqual(units["row 2"].top, units["row 1"].bottom)

    def test_unit_taller_than_a_page_is_truncated(self):
        notes = "line\n" * 400
        with self.assertLogs("mzansi_books.services.page_layout", level="WARNING") as captured:
            pages = self.layout(_content(_rows(2), notes=notes))
        self.assertTrue(any("Truncating notes" in message for message in captured.output))
        notes_pages = [page for page in pages if any(unit.name == "notes" for unit in page.units)]
        self.assertEqual(len(notes_pages), 1)
        self.assertTrue(any(text.endswith("...") for text in notes_pages[0].texts()))
        for unit in notes_pages[0].units:
            self.assertLessEqual(unit.bottom, SETTINGS.body_limit)

    def test_signature_block_on_last_page_only(self):
        pages = self.layout(_content(_rows(70), stamp=STAMP, signature=SIGNATURE))
        signature_pages = [page.number for page in pages if any(unit.name == "signature" for unit in page.units)]
        self.assertEqual(signature_pages, [len(pages)])
        signature = [unit for unit in pages[-1].units if unit.name == "signature"][0]
        self.assertAlmostEqual(signature.bottom, SETTINGS.body_limit)
        self.assertIn("Authorized Signature", pages[-1].texts())

    def test_signature_block_moves_to_new_page_when_cursor_is_past_it(self):
        content = _content(_rows(5))
        plain = self.layout(content)
        body_top = plain[0].units[0].top
        settings = replace(SETTINGS, signature_block_height=SETTINGS.body_limit - body_top - 1)

        pages = self.layout(replace(content, stamp=STAMP), settings)
        self.assertEqual(len(pages), len(plain) + 1)
        self.assertEqual([unit.name for unit in pages[-1].units], ["signature"])
        self.assertEqual(pages[-1].header_ops, pages[0].header_ops)

    def test_signature_block_skipped_without_images(self):
        pages = self.layout(_content(_rows(3)))
        self.assertNotIn("signature", _unit_names(pages))
        self.assertNotIn("Authorized Signature", pages[-1].texts())

    def test_empty_item_list_draws_placeholder_row(self):
        pages = self.layout(_content(()))
        self.assertIn("No items", pages[0].texts())
        self.assertEqual(_unit_names(pages)[0], "row empty")

    def test_notes_and_terms_are_separate_units(self):
        pages = self.layout(_content(_rows(2), notes="Thanks for your business.", terms="Valid for 30 days."))
        self.assertEqual(_unit_names(pages), ["row 1", "row 2", "totals", "notes", "terms"])
        self.assertIn("Terms & Conditions", pages[0].texts())

    def test_page_too_small_for_any_row_fails(self):
        settings = LayoutSettings(page_height=120, footer_reserved_height=60)
        with self.assertRaises(RenderFailure) as ctx:
            self.layout(_content(_rows(1)), settings)
        self.assertEqual(ctx.exception.document_id, "q-1")

    def test_oversized_header_entries_are_clipped(self):
        header = _header(
            company=PartyView("Acme Trading", "Unit 4, Industrial Park " * 150),
            client=PartyView("Beta Builders", "2 Side St, Durban " * 200, attention="Jane Doe"),
        )
        with self.assertLogs("mzansi_books.services.page_layout", level="WARNING") as captured:
            pages = self.layout(_content(_rows(3), header=header))
        self.assertTrue(any("Clipping header entry" in message for message in captured.output))
        self.assertEqual(_unit_names(pages), ["row 1", "row 2", "row 3", "totals"])
        clipped = [text for text in pages[0].texts() if text.endswith("...")]
        self.assertEqual(len(clipped), 2)

    def test_layout_is_repeatable(self):
        content = _content(_rows(45), notes="Some notes")
        first = self.layout(content)
        second = self.layout(content)
        self.assertEqual(first, second)


class CursorTests(unittest.TestCase):
    def test_advance_returns_new_cursor(self):
        cursor = Cursor(page=0, y=10.0)
        moved = cursor.advance(5.5)
        self.assertEqual(moved, Cursor(page=0, y=15.5))
        self.assertEqual(cursor.y, 10.0)


class TextMeasurerTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.measurer = TextMeasurer()

    def test_wrap_respects_width(self):
        lines = self.measurer.wrap("The quick brown fox jumps over the lazy dog " * 10, 50)
        self.assertGreater(len(lines), 1)
        for line in lines:
            self.assertLessEqual(self.measurer.width(line), 50)

    def test_wrap_keeps_explicit_newlines(self):
        self.assertEqual(self.measurer.wrap("first\nsecond", 100), ["first", "second"])

    def test_wrap_splits_words_longer_than_column(self):
        lines = self.measurer.wrap("x" * 200, 20)
        self.assertGreater(len(lines), 1)
        self.assertEqual("".join(lines), "x" * 200)

    def test_truncate_and_ellipsize(self):
        text = "A fairly long description that will not fit"
        clipped = self.measurer.truncate(text, 30)
        self.assertTrue(clipped.endswith("..."))
        self.assertLessEqual(self.measurer.width(clipped), 30)
        self.assertEqual(self.measurer.truncate("short", 30), "short")
        self.assertEqual(self.measurer.ellipsize("short", 30), "short...")

    def test_sanitize_replaces_unsupported_characters(self):
        self.assertEqual(sanitize("Smith’s “quote” — done…"), "Smith's \"quote\" - done...")
        self.assertEqual(sanitize("Zoë"), "Zoë")
        self.assertEqual(sanitize("日本"), "??")
        self.assertEqual(sanitize(None), "")


if __name__ == "__main__":
    unittest.main()
