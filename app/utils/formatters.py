"""
Formatting helpers for documents and emails (US style).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from typing import Union, Optional

SERVICE_LABELS = {
    'FOOD_TRUCK': 'Food Truck Service',
    'MOBILE_BAR': 'Mobile Bar Service',
    'CATERING': 'Catering Service',
}


def money(value: Union[int, Decimal, str, None], currency_symbol: str = '$') -> str:
    """
    Format an amount as US currency with thousands separators.

    Examples:
        money(Decimal('632.5')) -> "$632.50"
        money(Decimal('1234567.891')) -> "$1,234,567.89"
        money(Decimal('-5')) -> "-$5.00"
        money(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        num = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "-"
    num = num.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    sign = '-' if num < 0 else ''
    return f"{sign}{currency_symbol}{abs(num):,.2f}"


def percent(value: Union[int, Decimal, str, None]) -> str:
    """8.50 -> '8.5%', 18 -> '18%'."""
    if value is None or value == "":
        return "-"
    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "-"
    text = format(num.normalize(), 'f')
    return f"{text}%"


def long_date(value: Optional[Union[date, datetime]]) -> str:
    """date(2025, 1, 5) -> 'January 5, 2025'."""
    if not value:
        return "-"
    if isinstance(value, datetime):
        value = value.date()
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def short_date(value: Optional[Union[date, datetime]]) -> str:
    """date(2025, 1, 5) -> '01/05/2025'."""
    if not value:
        return "-"
    return value.strftime('%m/%d/%Y')


def service_label(service_type: Optional[str]) -> str:
    """Display name for a service type; unknown values are title-cased."""
    if not service_type:
        return ''
    key = service_type.upper()
    return SERVICE_LABELS.get(key, key.replace('_', ' ').title())
