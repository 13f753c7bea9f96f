from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


_NON_DIGIT_RE = re.compile(r"[^\d]")
_CURRENCY_TOKENS = ("ZAR", "R", "$")

DEFAULT_CURRENCY_SYMBOL = "R"
DATE_FORMAT = "%d/%m/%Y"


def _infer_decimal_separator(text: str) -> Optional[str]:
    last_dot = text.rfind(".")
    last_comma = text.rfind(",")

    if last_dot >= 0 and last_comma >= 0:
        return "." if last_dot > last_comma else ","

    if last_dot >= 0:
        return _infer_single_separator(text, ".")
    if last_comma >= 0:
        return _infer_single_separator(text, ",")
    return None


def _infer_single_separator(text: str, sep: str) -> Optional[str]:
    positions = [idx for idx, ch in enumerate(text) if ch == sep]
    if not positions:
        return None

    if len(positions) == 1:
        pos = positions[0]
        digits_before = len(_NON_DIGIT_RE.sub("", text[:pos]))
        digits_after = len(_NON_DIGIT_RE.sub("", text[pos + 1 :]))
        if digits_after == 0:
            return None
        if digits_after == 3 and digits_before >= 1 and sep == ",":
            return None
        return sep

    groups = [_NON_DIGIT_RE.sub("", part) for part in text.split(sep)]
    if all(len(group) == 3 for group in groups[1:] if group):
        return None
    if len(groups[-1]) <= 2:
        return sep
    return None


def _to_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    return parse_locale_number(value)


def _quantize(value: Decimal, decimals: int) -> Decimal:
    safe_decimals = max(int(decimals), 0)
    quantum = Decimal(1).scaleb(-safe_decimals)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def _group_thousands(integer_part: str, separator: str = ",") -> str:
    digits = integer_part.lstrip("-")
    if not digits:
        return "0"
    chunks = []
    while digits:
        chunks.append(digits[-3:])
        digits = digits[:-3]
    return separator.join(reversed(chunks))


def parse_locale_number(text: Any) -> Optional[Decimal]:
    """Parse user-entered numbers such as "1,234.50", "R 99" or "12,5"."""
    if isinstance(text, (Decimal, int, float)) and not isinstance(text, bool):
        return _to_decimal(text)
    if text is None or isinstance(text, bool):
        return None

    raw = str(text).strip()
    if not raw:
        return None

    normalized = raw.replace(" ", "").replace(" ", "").replace("%", "")
    for token in _CURRENCY_TOKENS:
        normalized = normalized.replace(token, "")

    negative = False
    if normalized.startswith("(") and normalized.endswith(")"):
        negative = True
        normalized = normalized[1:-1]
    if normalized.startswith("-"):
        negative = True
    normalized = normalized.lstrip("+-")

    if not normalized or not all(ch.isdigit() or ch in ".," for ch in normalized):
        return None

    decimal_sep = _infer_decimal_separator(normalized)
    if decimal_sep:
        int_raw, frac_raw = normalized.rsplit(decimal_sep, 1)
        int_digits = _NON_DIGIT_RE.sub("", int_raw) or "0"
        frac_digits = _NON_DIGIT_RE.sub("", frac_raw)
        decimal_text = int_digits if not frac_digits else f"{int_digits}.{frac_digits}"
    else:
        digits = _NON_DIGIT_RE.sub("", normalized)
        if not digits:
            return None
        decimal_text = digits

    if negative and decimal_text != "0":
        decimal_text = f"-{decimal_text}"

    try:
        return Decimal(decimal_text)
    except InvalidOperation:
        return None


def format_decimal(value: Any, decimals: int = 2) -> str:
    parsed = _to_decimal(value)
    if parsed is None:
        return "-" if value is None else str(value)

    safe_decimals = max(int(decimals), 0)
    quantized = _quantize(parsed, safe_decimals)
    sign = "-" if quantized < 0 else ""
    absolute = -quantized if quantized < 0 else quantized
    raw = f"{absolute:.{safe_decimals}f}"
    integer_part, _, fraction_part = raw.partition(".")
    grouped = _group_thousands(integer_part)

    if safe_decimals == 0:
        return f"{sign}{grouped}"
    return f"{sign}{grouped}.{fraction_part}"


def format_currency(value: Any, symbol: str = DEFAULT_CURRENCY_SYMBOL) -> str:
    """Format an amount as "R 1,234.56"; rounding happens only here.

    A missing amount is zero. Text that is not a number is returned as is.
    """
    if value is None:
        return f"{symbol} 0.00"
    parsed = _to_decimal(value)
    if parsed is None:
        return str(value)
    text = format_decimal(parsed, decimals=2)
    if text.startswith("-"):
        return f"-{symbol} {text[1:]}"
    return f"{symbol} {text}"


def format_percent(value: Any) -> str:
    """Format a rate without trailing zeros: 15 -> "15%", 12.50 -> "12.5%"."""
    parsed = _to_decimal(value)
    if parsed is None:
        return "-" if value is None else str(value)
    text = format_decimal(parsed, decimals=2)
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text}%"


def format_quantity(value: Any) -> str:
    parsed = _to_decimal(value)
    if parsed is None:
        return "0"
    if parsed == parsed.to_integral_value():
        return format_decimal(parsed, decimals=0)
    return format_decimal(parsed, decimals=2)


def format_date(value: Any) -> str:
    """Format a date value as DD/MM/YYYY, passing unparseable text through."""
    if not value:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime(DATE_FORMAT)
    text = str(value).strip()
    head = text.split("T")[0].split(" ")[0]
    for pattern in ("%Y-%m-%d", "%Y/%m/%d", DATE_FORMAT):
        try:
            return datetime.strptime(head, pattern).strftime(DATE_FORMAT)
        except ValueError:
            continue
    return text
