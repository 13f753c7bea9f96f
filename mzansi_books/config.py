import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv

from mzansi_books.services.page_layout import LayoutSettings

LOG_FORMAT = "%(levelname)s: %(name)s: %(message)s"


@dataclass(frozen=True)
class AppConfig:
    database_url: Optional[str] = None
    db_pool_min: int = 1
    db_pool_max: int = 4
    pdf_output_dir: Optional[str] = None
    default_tax_rate: Decimal = Decimal("15")
    currency_symbol: str = "R"
    footer_reserved_mm: float = 20.0
    log_level: str = "INFO"

    def layout_settings(self) -> LayoutSettings:
        return LayoutSettings(footer_reserved_height=self.footer_reserved_mm)


def _build_url_from_components() -> Optional[str]:
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME")
    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASSWORD")

    if not host:
        return None
    missing = [
        var for var, val in (
            ("DB_NAME", name),
            ("DB_USER", user),
            ("DB_PASSWORD", password),
        )
        if not val
    ]
    if missing:
        raise EnvironmentError(
            "When DATABASE_URL is not set, DB_HOST requires "
            "DB_PORT (optional), DB_NAME, DB_USER and DB_PASSWORD. "
            f"Missing: {', '.join(missing)}"
        )

    user_part = quote_plus(user)
    password_part = quote_plus(password)
    return f"postgresql://{user_part}:{password_part}@{host}:{port}/{name}"


def _read_int_env(name: str, default: int, *, min_value: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= min_value else default


def _read_float_env(name: str, default: float, *, min_value: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= min_value else default


def _read_decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        return default
    return value if value.is_finite() and value >= 0 else default


def load_config() -> AppConfig:
    load_dotenv()
    database_url = os.getenv("DATABASE_URL") or _build_url_from_components()
    db_pool_min = _read_int_env("DB_POOL_MIN", 1, min_value=1)
    db_pool_max = _read_int_env("DB_POOL_MAX", 4, min_value=1)
    if db_pool_max < db_pool_min:
        db_pool_max = db_pool_min

    return AppConfig(
        database_url=database_url,
        db_pool_min=db_pool_min,
        db_pool_max=db_pool_max,
        pdf_output_dir=os.getenv("PDF_OUTPUT_DIR") or None,
        default_tax_rate=_read_decimal_env("DEFAULT_TAX_RATE", Decimal("15")),
        currency_symbol=os.getenv("CURRENCY_SYMBOL", "R").strip() or "R",
        footer_reserved_mm=_read_float_env("PAGE_FOOTER_RESERVED_MM", 20.0, min_value=12.0),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
