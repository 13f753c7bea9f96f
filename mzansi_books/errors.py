"""
Error taxonomy for document rendering.

Only RenderFailure reaches callers. The other errors are raised inside a
component and recovered there with a defined degradation.
"""

from typing import Any, Optional


class DocumentRenderError(Exception):
    """Base class for every rendering error."""


class InvalidPartyDataError(DocumentRenderError):
    """A party record yields no usable name."""


class NumberGenerationError(DocumentRenderError):
    """Existing numbers could not be parsed into a safe next sequence."""


class AssetLoadError(DocumentRenderError):
    """An image asset could not be read or decoded."""

    def __init__(self, kind: str, cause: str):
        super().__init__(f"Could not load {kind}: {cause}")
        self.kind = kind
        self.cause = cause


class LayoutOverflowError(DocumentRenderError):
    """An atomic content unit does not fit on an empty page."""

    def __init__(self, unit: str, required: float, available: float):
        super().__init__(f"{unit} needs {required:.1f}mm but a page offers {available:.1f}mm")
        self.unit = unit
        self.required = required
        self.available = available


class RenderFailure(DocumentRenderError):
    """Fatal rendering failure, surfaced to the caller."""

    def __init__(self, document_id: Optional[Any], cause: str):
        super().__init__(f"Document {document_id or '-'} could not be rendered: {cause}")
        self.document_id = document_id
        self.cause = cause


class DuplicateNumberError(NumberGenerationError):
    """A number was issued concurrently by another writer."""

    def __init__(self, number: str):
        super().__init__(f"Document number {number} is already issued")
        self.number = number
