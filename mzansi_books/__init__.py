"""Paginated quotation and invoice rendering for Mzansi Books."""

__version__ = "1.0.0"
