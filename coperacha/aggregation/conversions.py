"""
Amount and Time Conversions

Pure helpers shared by the aggregator, the proposal workflow and the
reply templates.

DESIGN DECISION: Nothing here touches floats. The ledger hands us
integers (wei) and we stay in int/Decimal until a string is rendered.
Local-currency values are rounded half-up to cents, the way a person
would round them on paper.
"""

from datetime import datetime, timezone
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from coperacha.models.finance import CENT, WEI_PER_NATIVE

UNIT_WEI = "wei"
UNIT_NATIVE = "eth"
UNIT_LOCAL = "hnl"
AMOUNT_UNITS = (UNIT_WEI, UNIT_NATIVE, UNIT_LOCAL)


def to_int(value: Any) -> int:
    """
    Read an integer the way ledger nodes return them: Python ints
    from decoded calls, '0x..' hex strings from raw JSON-RPC and
    decimal strings from indexing extensions.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(Decimal(text))
    return int(value)


def wei_to_native(wei: int) -> Decimal:
    return Decimal(int(wei)) / WEI_PER_NATIVE


def native_to_local(native: Decimal, rate: Decimal) -> Decimal:
    return (Decimal(native) * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)


def local_to_native(local: Decimal, rate: Decimal) -> Decimal:
    rate = Decimal(rate)
    if rate <= 0:
        raise ValueError("Exchange rate must be positive")
    return Decimal(local) / rate


def native_to_wei(native: Decimal) -> int:
    """Fractions of a wei are dropped."""
    return int((Decimal(native) * WEI_PER_NATIVE).to_integral_value(rounding=ROUND_DOWN))


def amount_to_wei(amount: Any, unit: str, rate: Decimal) -> int:
    """
    Convert a user-supplied amount to wei.

    unit is one of 'wei', 'eth' (native) or 'hnl' (local).

    Raises:
        ValueError: for an unknown unit, a negative or unparseable amount
    """
    unit = (unit or UNIT_NATIVE).strip().lower()
    if unit not in AMOUNT_UNITS:
        raise ValueError(f"Unknown amount unit: {unit}")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a number: {amount!r}")
    if value < 0:
        raise ValueError("Amount cannot be negative")

    if unit == UNIT_WEI:
        if value != value.to_integral_value():
            raise ValueError("Wei amounts must be whole numbers")
        return int(value)
    if unit == UNIT_LOCAL:
        return native_to_wei(local_to_native(value, rate))
    return native_to_wei(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Unix seconds (int, hex or decimal string) or ISO text to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and not value.strip().lower().startswith("0x"):
        try:
            seconds = int(Decimal(value.strip()))
        except (InvalidOperation, ValueError):
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return datetime.fromtimestamp(to_int(value), tz=timezone.utc)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def time_since(moment: datetime, now: Optional[datetime] = None) -> str:
    """
    Relative age label in Spanish, largest non-zero unit only.

    Examples: 'hace 1 día', 'hace 3 horas', 'hace 0 segundos'
    """
    now = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = max(0, int((now - moment).total_seconds()))
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"hace {days} {_plural(days, 'día', 'días')}"
    if hours > 0:
        return f"hace {hours} {_plural(hours, 'hora', 'horas')}"
    if minutes > 0:
        return f"hace {minutes} {_plural(minutes, 'minuto', 'minutos')}"
    return f"hace {seconds} {_plural(seconds, 'segundo', 'segundos')}"
