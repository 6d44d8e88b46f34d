from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

EXCEL_EPOCH = datetime(1899, 12, 30)

_CURRENCY_NOISE_RE = re.compile(r"[£$€,\s]")
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
_LEADING_INT_RE = re.compile(r"^[+-]?\d+")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_UK_DATE_RE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$")

FREQUENCY_MAP = {
    "weekly": "weekly",
    "every week": "weekly",
    "fortnightly": "fortnightly",
    "bi-weekly": "fortnightly",
    "every 2 weeks": "fortnightly",
    "monthly": "monthly",
    "every month": "monthly",
    "quarterly": "quarterly",
    "every 3 months": "quarterly",
    "every quarter": "quarterly",
    "biannual": "biannual",
    "bi-annual": "biannual",
    "every 6 months": "biannual",
    "half yearly": "biannual",
    "half-yearly": "biannual",
    "yearly": "yearly",
    "annual": "yearly",
    "annually": "yearly",
    "every year": "yearly",
}

DEBT_TYPE_MAP = {
    "credit card": "credit_card",
    "credit-card": "credit_card",
    "creditcard": "credit_card",
    "credit": "credit_card",
    "loan": "loan",
    "personal loan": "loan",
    "overdraft": "overdraft",
    "bnpl": "bnpl",
    "buy now pay later": "bnpl",
    "klarna": "bnpl",
    "clearpay": "bnpl",
    "other": "other",
}

BOOLEAN_TRUE = {"yes", "y", "true", "1", "active"}
BOOLEAN_FALSE = {"no", "n", "false", "0", "inactive", "cancelled"}

DEFAULT_FREQUENCY = "monthly"
DEFAULT_DUE_DAY = 1
DEFAULT_DEBT_TYPE = "other"
DEFAULT_INTEREST_TYPE = "none"
DEFAULT_DEBT_STATUS = "open"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text_or_none(value: Any) -> str | None:
    if _is_blank(value):
        return None
    return str(value).strip()


# ══════════════════════════════════════════════════════════════════════════════
# FIELD-LEVEL RULES
# ══════════════════════════════════════════════════════════════════════════════

def normalise_amount(value: Any) -> float | None:
    """Parse a money-like cell, e.g. "£1,200.50" -> 1200.5. None if unparseable."""
    if _is_blank(value):
        return None
    if _is_number(value):
        number = str(value)
    else:
        match = _LEADING_NUMBER_RE.match(_CURRENCY_NOISE_RE.sub("", str(value)))
        if not match:
            return None
        number = match.group(0)
    try:
        rounded = Decimal(number).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    if not rounded.is_finite():
        return None
    return float(rounded)


def excel_serial_to_date(serial: float) -> date | None:
    # Serials count from 1899-12-30 so the phantom 1900-02-29 lines up.
    if serial < 1:
        return None
    try:
        return (EXCEL_EPOCH + timedelta(days=int(serial))).date()
    except OverflowError:
        return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def normalise_date(value: Any) -> str | None:
    """Return YYYY-MM-DD for dates, Excel serials, ISO or day-first UK strings."""
    if _is_blank(value):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if _is_number(value):
        parsed = excel_serial_to_date(value)
        return parsed.isoformat() if parsed else None

    text = str(value).strip()

    m = _ISO_DATE_RE.match(text)
    if m:
        parsed = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return parsed.isoformat() if parsed else None

    m = _UK_DATE_RE.match(text)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if year < 100:
            year += 2000
        parsed = _safe_date(year, month, day)
        return parsed.isoformat() if parsed else None

    return None


def normalise_due_day(value: Any) -> int | None:
    if _is_blank(value):
        return None
    if _is_number(value) and float(value).is_integer() and 1 <= value <= 31:
        return int(value)

    as_date = normalise_date(value)
    if as_date:
        return int(as_date.split("-")[2])

    m = _LEADING_INT_RE.match(str(value).strip())
    if m:
        day = int(m.group(0))
        if 1 <= day <= 31:
            return day
    return None


def normalise_frequency(value: Any) -> str | None:
    if _is_blank(value):
        return None
    return FREQUENCY_MAP.get(str(value).strip().lower())


def normalise_debt_type(value: Any) -> str | None:
    if _is_blank(value):
        return None
    return DEBT_TYPE_MAP.get(str(value).strip().lower(), DEFAULT_DEBT_TYPE)


def normalise_boolean(value: Any) -> bool | None:
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in BOOLEAN_TRUE:
        return True
    if text in BOOLEAN_FALSE:
        return False
    return None


# ══════════════════════════════════════════════════════════════════════════════
# ROW-LEVEL NORMALISATION
# ══════════════════════════════════════════════════════════════════════════════

def normalise_bill_row(data: Mapping[str, Any]) -> dict[str, Any]:
    """Turn mapped raw bill values into a record ready for the bills collection."""
    amount = normalise_amount(data.get("amount"))
    frequency = normalise_frequency(data.get("frequency"))
    due_day = normalise_due_day(data.get("due_day"))
    is_active = normalise_boolean(data.get("is_active"))
    return {
        "name": str(data.get("name") or "").strip(),
        "amount": amount if amount is not None else 0.0,
        "frequency": frequency or DEFAULT_FREQUENCY,
        "due_day": due_day if due_day is not None else DEFAULT_DUE_DAY,
        "provider": _text_or_none(data.get("provider")),
        "bill_type": _text_or_none(data.get("bill_type")),
        "notes": _text_or_none(data.get("notes")),
        "is_active": True if is_active is None else is_active,
        "due_date_rule": "exact",
    }


def normalise_subscription_row(data: Mapping[str, Any]) -> dict[str, Any]:
    record = normalise_bill_row(data)
    record["is_subscription"] = True
    return record


def normalise_debt_row(data: Mapping[str, Any]) -> dict[str, Any]:
    """Turn mapped raw debt values into a record; balances backfill each other."""
    starting = normalise_amount(data.get("starting_balance"))
    current = normalise_amount(data.get("current_balance"))
    if starting is None:
        starting = current
    if current is None:
        current = starting
    interest_type = _text_or_none(data.get("interest_type"))
    return {
        "creditor_name": str(data.get("creditor_name") or "").strip(),
        "debt_type": normalise_debt_type(data.get("debt_type")) or DEFAULT_DEBT_TYPE,
        "starting_balance": starting if starting is not None else 0.0,
        "current_balance": current if current is not None else 0.0,
        "apr": normalise_amount(data.get("apr")),
        "interest_type": interest_type.lower() if interest_type else DEFAULT_INTEREST_TYPE,
        "min_payment": normalise_amount(data.get("min_payment")),
        "due_day": normalise_due_day(data.get("due_day")),
        "notes": _text_or_none(data.get("notes")),
        "status": DEFAULT_DEBT_STATUS,
    }


# ══════════════════════════════════════════════════════════════════════════════
# IMPORT KEYS
# ══════════════════════════════════════════════════════════════════════════════

IMPORT_KEY_DELIMITER = "|"


def _key_part(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def build_bill_import_key(data: Mapping[str, Any]) -> str:
    return IMPORT_KEY_DELIMITER.join(
        [
            _key_part(data.get("name")),
            _key_part(data.get("provider")),
            _key_part(data.get("frequency")),
            _key_part(data.get("due_day")),
        ]
    )


def build_debt_import_key(data: Mapping[str, Any]) -> str:
    return IMPORT_KEY_DELIMITER.join(
        [
            _key_part(data.get("creditor_name")),
            _key_part(data.get("debt_type")),
        ]
    )
