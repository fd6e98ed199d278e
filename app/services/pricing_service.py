"""
Pricing engine for quotes.

Pure functions, no I/O. Every amount is a Decimal; floats are rejected at the
boundary so binary rounding never leaks into money.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from app.exceptions import ValidationError
from app.models.quote import DepositType

CENT = Decimal('0.01')
HUNDRED = Decimal('100')

Number = Union[Decimal, int, str]


@dataclass(frozen=True)
class LineItemInput:
    """A priced line: quantity is a positive integer, unit price is fixed-point."""
    description: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class DepositSpec:
    """Deposit as entered on the quote: a percentage of total or a fixed amount."""
    type: DepositType = DepositType.NONE
    value: Decimal = Decimal('0')


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    tax: Decimal
    gratuity: Decimal
    total: Decimal
    deposit_amount: Decimal
    balance_due: Decimal

    @property
    def has_deposit(self) -> bool:
        return self.deposit_amount > 0


def round_money(value: Decimal) -> Decimal:
    """Round half-up to the cent."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Number, field: str) -> Decimal:
    """Convert an incoming number to Decimal, refusing floats and garbage."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f'{field} must be a fixed-point decimal, got {type(value).__name__}')
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'{field} is not a valid number: {value!r}')
    if not result.is_finite():
        raise ValidationError(f'{field} must be finite')
    return result


def to_minor_units(amount: Decimal) -> int:
    """Major currency units -> integer cents (half-up)."""
    return int((amount * HUNDRED).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    """Integer cents -> major currency units with two decimals."""
    return (Decimal(int(minor)) / HUNDRED).quantize(CENT)


def parse_deposit_spec(deposit_type: Optional[str], value: Optional[Number]) -> DepositSpec:
    """
    Build a DepositSpec from stored/raw values.

    Accepts the enum value in any case ('percentage', 'FIXED'); None or an
    empty type means no deposit.
    """
    if not deposit_type:
        return DepositSpec()
    try:
        kind = DepositType(str(deposit_type).upper())
    except ValueError:
        raise ValidationError(f'Unknown deposit type: {deposit_type!r}')
    if kind is DepositType.NONE:
        return DepositSpec()
    if value is None:
        raise ValidationError(f'Deposit of type {kind.value} requires a value')
    return DepositSpec(type=kind, value=to_decimal(value, 'deposit value'))


def _validate_items(items: Iterable[LineItemInput]) -> list:
    validated = []
    for index, item in enumerate(items, start=1):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError(f'Line {index}: quantity must be an integer')
        if quantity <= 0:
            raise ValidationError(f'Line {index}: quantity must be positive')
        unit_price = to_decimal(item.unit_price, f'Line {index} unit price')
        if unit_price < 0:
            raise ValidationError(f'Line {index}: unit price cannot be negative')
        validated.append((quantity, unit_price))
    return validated


def _validate_rate(rate: Number, field: str) -> Decimal:
    value = to_decimal(rate if rate is not None else 0, field)
    if value < 0:
        raise ValidationError(f'{field} cannot be negative')
    return value


def calculate_subtotal(items: Iterable[LineItemInput]) -> Decimal:
    """Exact sum of quantity x unit price."""
    return sum((q * p for q, p in _validate_items(items)), Decimal('0'))


def stored_deposit_amount(total: Decimal, deposit: DepositSpec) -> Decimal:
    """
    Deposit stored on the quote itself.

    Straight percentage of the total or the fixed amount. There is no
    processor minimum here; see checkout_deposit_minor_units for that.
    """
    if deposit.type is DepositType.NONE:
        return Decimal('0.00')
    if deposit.value < 0:
        raise ValidationError('Deposit value cannot be negative')
    if deposit.type is DepositType.PERCENTAGE:
        if deposit.value > HUNDRED:
            raise ValidationError('Deposit percentage cannot exceed 100')
        return round_money(total * deposit.value / HUNDRED)
    amount = round_money(deposit.value)
    if amount > total:
        raise ValidationError('Fixed deposit cannot exceed the quote total')
    return amount


def checkout_deposit_minor_units(total_minor: int, deposit_pct: Number, minimum_minor: int = 5000) -> int:
    """
    Amount a deposit-mode checkout collects, in cents.

    max(minimum, round(total x pct)) where pct is a fraction (0.2 == 20%).
    The floor exists because the processor will not take tiny deposits.
    """
    if isinstance(total_minor, bool) or not isinstance(total_minor, int) or total_minor < 0:
        raise ValidationError('Checkout total must be a non-negative integer amount of cents')
    pct = to_decimal(deposit_pct, 'deposit percentage')
    if pct < 0 or pct > 1:
        raise ValidationError('Deposit percentage must be a fraction between 0 and 1')
    if minimum_minor < 0:
        raise ValidationError('Minimum deposit cannot be negative')
    raw = (Decimal(total_minor) * pct).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return max(int(minimum_minor), int(raw))


def checkout_deposit_amount(total: Decimal, deposit_pct_value: Number, minimum: Decimal = Decimal('50.00')) -> Decimal:
    """Major-unit view of the checkout deposit; `deposit_pct_value` is a percentage (20 == 20%)."""
    pct = to_decimal(deposit_pct_value, 'deposit percentage') / HUNDRED
    minor = checkout_deposit_minor_units(to_minor_units(total), pct, to_minor_units(minimum))
    return from_minor_units(minor)


def calculate_quote_totals(
    items: Iterable[LineItemInput],
    tax_rate_pct: Number = 0,
    gratuity_rate_pct: Number = 0,
    deposit: Optional[DepositSpec] = None,
) -> QuoteTotals:
    """
    Price a quote.

    Tax and gratuity are computed from the exact subtotal and each rounded
    once; total is the exact sum of the rounded parts so the printed lines
    always add up.

    Raises:
        ValidationError: on any negative or malformed input. Nothing is
        returned partially.
    """
    tax_rate = _validate_rate(tax_rate_pct, 'Tax rate')
    gratuity_rate = _validate_rate(gratuity_rate_pct, 'Gratuity rate')
    deposit = deposit or DepositSpec()

    subtotal = round_money(calculate_subtotal(items))
    tax = round_money(subtotal * tax_rate / HUNDRED)
    gratuity = round_money(subtotal * gratuity_rate / HUNDRED)
    total = subtotal + tax + gratuity

    deposit_amount = stored_deposit_amount(total, deposit)
    balance_due = total - deposit_amount if deposit_amount > 0 else total

    return QuoteTotals(
        subtotal=subtotal,
        tax=tax,
        gratuity=gratuity,
        total=total,
        deposit_amount=deposit_amount,
        balance_due=balance_due,
    )
