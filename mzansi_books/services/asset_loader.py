"""
Concurrent loading of company logo, stamp and signature images.

Assets are referenced as data URLs, filesystem paths or raw bytes. Each one
is read and decoded in a worker thread; a broken asset is logged and left
out of the document instead of failing the render.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image

from mzansi_books.enums import AssetKind
from mzansi_books.errors import AssetLoadError
from mzansi_books.models import CompanyAssets, LoadedImage

logger = logging.getLogger(__name__)

_SUPPORTED_FORMATS = {"PNG", "JPEG", "GIF"}


@dataclass(frozen=True)
class LoadedAssets:
    logo: Optional[LoadedImage] = None
    stamp: Optional[LoadedImage] = None
    signature: Optional[LoadedImage] = None


def _read_data_url(kind: str, source: str) -> bytes:
    header, sep, payload = source.partition(",")
    if not sep or ";base64" not in header:
        raise AssetLoadError(kind, "only base64 data URLs are supported")
    try:
        return base64.b64decode(payload.strip(), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise AssetLoadError(kind, f"invalid base64 payload ({exc})") from exc


def _read_source(kind: str, source: Union[str, bytes]) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if not isinstance(source, str):
        raise AssetLoadError(kind, f"unsupported reference type {type(source).__name__}")
    text = source.strip()
    if text.startswith("data:"):
        return _read_data_url(kind, text)
    if not os.path.isfile(text):
        raise AssetLoadError(kind, f"file not found: {text}")
    try:
        with open(text, "rb") as handle:
            return handle.read()
    except OSError as exc:
        raise AssetLoadError(kind, str(exc)) from exc


def load_asset(kind: Union[AssetKind, str], source: Union[str, bytes]) -> LoadedImage:
    """Read and decode one asset. Raises AssetLoadError."""
    kind = AssetKind(kind).value
    data = _read_source(kind, source)
    if not data:
        raise AssetLoadError(kind, "empty image")
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            width, height = image.size
            image_format = (image.format or "").upper()
            if image_format not in _SUPPORTED_FORMATS:
                buffer = io.BytesIO()
                image.convert("RGBA").save(buffer, format="PNG")
                data = buffer.getvalue()
                image_format = "PNG"
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise AssetLoadError(kind, f"cannot decode image ({exc})") from exc
    return LoadedImage(kind=kind, data=data, width_px=width, height_px=height, image_format=image_format)


async def _load_optional(kind: AssetKind, source: Union[str, bytes, None]) -> Optional[LoadedImage]:
    if not source:
        return None
    try:
        return await asyncio.to_thread(load_asset, kind, source)
    except AssetLoadError as exc:
        logger.warning("Omitting company %s: %s", kind.value, exc)
        return None


async def load_company_assets(assets: Optional[CompanyAssets]) -> LoadedAssets:
    """Load logo, stamp and signature concurrently."""
    assets = assets or CompanyAssets()
    logo, stamp, signature = await asyncio.gather(
        _load_optional(AssetKind.LOGO, assets.logo),
        _load_optional(AssetKind.STAMP, assets.stamp),
        _load_optional(AssetKind.SIGNATURE, assets.signature),
    )
    return LoadedAssets(logo=logo, stamp=stamp, signature=signature)
