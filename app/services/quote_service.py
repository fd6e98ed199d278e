"""Quote service: creation, numbering, pricing from the stored quote, lifecycle moves."""
import logging
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import Integer, cast, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from app.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from app.models import Customer, DepositType, PaymentMode, Quote, QuoteLineItem, QuoteStatus
from app.services.pricing_service import (
    LineItemInput, QuoteTotals, calculate_quote_totals, parse_deposit_spec, to_decimal
)

logger = logging.getLogger(__name__)

QUOTE_NUMBER_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_quote(session: Session, quote_id: int) -> Quote:
    """Load a quote with its customer and items, or raise NotFoundError."""
    quote = (
        session.query(Quote)
        .options(joinedload(Quote.customer), selectinload(Quote.items))
        .filter(Quote.id == quote_id)
        .first()
    )
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found.')
    return quote


def line_inputs(quote: Quote) -> List[LineItemInput]:
    return [
        LineItemInput(description=line.description, quantity=line.quantity, unit_price=Decimal(line.unit_price))
        for line in quote.items
    ]


def price_quote(quote: Quote) -> QuoteTotals:
    """Run the pricing engine over a stored quote (stored deposit, no checkout floor)."""
    return calculate_quote_totals(
        line_inputs(quote),
        tax_rate_pct=Decimal(quote.tax_rate_pct or 0),
        gratuity_rate_pct=Decimal(quote.gratuity_rate_pct or 0),
        deposit=parse_deposit_spec(quote.deposit_type, quote.deposit_value),
    )


def generate_quote_number(session: Session, now: Optional[datetime] = None) -> str:
    """
    Next number in the calendar month: Q-YYYYMM-NNNN.

    Based on the highest sequence already issued for the month, so gaps left by
    deleted quotes are never reused. The sequence is compared as an integer;
    past 9999 it simply grows a digit.
    """
    now = now or utcnow()
    prefix = f"Q-{now.year}{now.month:02d}-"
    last = (
        session.query(func.max(cast(func.substr(Quote.quote_number, len(prefix) + 1), Integer)))
        .filter(Quote.quote_number.like(f"{prefix}%"))
        .scalar()
    )
    return f"{prefix}{(last or 0) + 1:04d}"


def _coerce_item(item: Union[LineItemInput, Dict[str, Any]]) -> LineItemInput:
    if isinstance(item, LineItemInput):
        return item
    try:
        return LineItemInput(
            description=(item.get('description') or '').strip(),
            quantity=item['quantity'],
            unit_price=to_decimal(item['unit_price'], 'unit price'),
        )
    except KeyError as e:
        raise ValidationError(f'Line item missing field {e.args[0]!r}')


def create_quote(
    session: Session,
    customer_id: int,
    items: List[Union[LineItemInput, Dict[str, Any]]],
    tax_rate_pct=0,
    gratuity_rate_pct=0,
    deposit_type: Optional[str] = None,
    deposit_value=None,
    valid_days: int = 30,
    now: Optional[datetime] = None,
    **details,
) -> Quote:
    """
    Create a priced DRAFT quote.

    Args:
        session: Database session
        customer_id: Existing customer
        items: LineItemInput or dicts with description/quantity/unit_price
        tax_rate_pct, gratuity_rate_pct: Percentages (8.5 == 8.5%)
        deposit_type: NONE, PERCENTAGE or FIXED
        deposit_value: Percentage or currency amount, per deposit_type
        valid_days: Days until valid_until
        **details: service_type, event_date, event_time, event_location,
            guest_count, terms, notes

    Returns:
        The committed Quote.

    Raises:
        ValidationError: bad pricing input or unknown customer.
    """
    if not items:
        raise ValidationError('A quote needs at least one line item.')
    if not session.get(Customer, customer_id):
        raise ValidationError(f'Customer {customer_id} does not exist.')

    inputs = [_coerce_item(i) for i in items]
    for index, item in enumerate(inputs, start=1):
        if not item.description:
            raise ValidationError(f'Line {index}: description is required')
    deposit = parse_deposit_spec(deposit_type, deposit_value)
    totals = calculate_quote_totals(inputs, tax_rate_pct, gratuity_rate_pct, deposit)
    now = now or utcnow()

    for attempt in range(1, QUOTE_NUMBER_ATTEMPTS + 1):
        quote = Quote(
            quote_number=generate_quote_number(session, now),
            customer_id=customer_id,
            status=QuoteStatus.DRAFT.value,
            amount=totals.subtotal,
            tax_rate_pct=to_decimal(tax_rate_pct or 0, 'tax rate'),
            gratuity_rate_pct=to_decimal(gratuity_rate_pct or 0, 'gratuity rate'),
            deposit_type=deposit.type.value,
            deposit_value=deposit.value if deposit.type is not DepositType.NONE else None,
            deposit_amount=totals.deposit_amount,
            balance_due=totals.balance_due,
            valid_until=now.date() + timedelta(days=valid_days),
            service_type=details.get('service_type'),
            event_date=details.get('event_date'),
            event_time=details.get('event_time'),
            event_location=details.get('event_location'),
            guest_count=details.get('guest_count'),
            terms=details.get('terms'),
            notes=details.get('notes'),
        )
        for position, item in enumerate(inputs):
            quote.items.append(QuoteLineItem(
                position=position,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total=item.quantity * item.unit_price,
            ))
        session.add(quote)
        try:
            session.commit()
        except IntegrityError:
            # Concurrent create took the same number
            session.rollback()
            logger.warning(f"[QUOTE] Quote number collision on attempt {attempt}, retrying")
            continue
        logger.info(f"[QUOTE] Created {quote.quote_number} for customer {customer_id}, total {totals.total}")
        return quote

    raise ValidationError('Could not allocate a quote number, please retry.', status_code=409)


def _apply_transition(session: Session, quote: Quote, target: QuoteStatus, values: Dict[str, Any]) -> Quote:
    """
    Conditional single-row UPDATE from the status we loaded.

    If another request moved the quote in the meantime nothing is written and
    InvalidTransitionError reports the status we found.
    """
    current = quote.status
    values = dict(values, status=target.value)
    updated = (
        session.query(Quote)
        .filter(Quote.id == quote.id, Quote.status == current)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        session.rollback()
        session.refresh(quote)
        raise InvalidTransitionError(quote.status, target.value, quote.id)
    session.commit()
    session.refresh(quote)
    logger.info(f"[QUOTE] Quote {quote.id} {current} -> {target.value}")
    return quote


def _require(quote: Quote, target: QuoteStatus):
    if not quote.can_transition_to(target):
        raise InvalidTransitionError(quote.status, target.value, quote.id)


def expire_quote(session: Session, quote_id: int) -> Quote:
    quote = get_quote(session, quote_id)
    _require(quote, QuoteStatus.EXPIRED)
    return _apply_transition(session, quote, QuoteStatus.EXPIRED, {})


def accept_quote(session: Session, quote_id: int, today: Optional[date] = None) -> Quote:
    """SENT -> ACCEPTED. A quote past valid_until is expired instead and the accept is refused."""
    quote = get_quote(session, quote_id)
    _require(quote, QuoteStatus.ACCEPTED)
    if quote.is_overdue(today or date.today()):
        _apply_transition(session, quote, QuoteStatus.EXPIRED, {})
        raise InvalidTransitionError(QuoteStatus.EXPIRED.value, QuoteStatus.ACCEPTED.value, quote_id)
    return _apply_transition(session, quote, QuoteStatus.ACCEPTED, {'accepted_at': utcnow()})


def reject_quote(session: Session, quote_id: int) -> Quote:
    quote = get_quote(session, quote_id)
    _require(quote, QuoteStatus.REJECTED)
    return _apply_transition(session, quote, QuoteStatus.REJECTED, {'rejected_at': utcnow()})


def expire_overdue_quotes(session: Session, today: Optional[date] = None) -> int:
    """Move every SENT quote whose valid_until has passed to EXPIRED. Returns the count."""
    today = today or date.today()
    count = (
        session.query(Quote)
        .filter(Quote.status == QuoteStatus.SENT.value, Quote.valid_until.isnot(None), Quote.valid_until < today)
        .update({'status': QuoteStatus.EXPIRED.value}, synchronize_session=False)
    )
    session.commit()
    if count:
        logger.info(f"[QUOTE] Expired {count} overdue quote(s)")
    return count


def _record_deposit(session: Session, quote: Quote, now: datetime) -> Quote:
    """SENT -> ACCEPTED with deposit_paid_at; an ACCEPTED quote only gets the timestamp."""
    if quote.deposit_paid_at:
        logger.info(f"[QUOTE] Quote {quote.id} deposit already recorded; ignoring duplicate payment event")
        return quote
    if quote.status == QuoteStatus.SENT.value:
        return _apply_transition(session, quote, QuoteStatus.ACCEPTED, {'accepted_at': now, 'deposit_paid_at': now})
    if quote.status != QuoteStatus.ACCEPTED.value:
        raise InvalidTransitionError(quote.status, QuoteStatus.ACCEPTED.value, quote.id)

    updated = (
        session.query(Quote)
        .filter(Quote.id == quote.id, Quote.status == QuoteStatus.ACCEPTED.value, Quote.deposit_paid_at.is_(None))
        .update({'deposit_paid_at': now}, synchronize_session=False)
    )
    session.commit()
    session.refresh(quote)
    if updated:
        logger.info(f"[QUOTE] Quote {quote.id} deposit paid")
    return quote


def mark_quote_paid(session: Session, quote_id: int, session_id: Optional[str] = None,
                    mode=PaymentMode.FULL) -> Quote:
    """
    Record a completed payment (webhook path).

    A deposit payment accepts a SENT quote and stamps deposit_paid_at; the
    balance stays due. A full payment moves ACCEPTED -> PAID, and a SENT quote
    paid in full straight from its checkout link is accepted and paid in the
    same update. Duplicates are no-ops so webhook redeliveries are harmless.

    Raises:
        ValidationError: unknown payment mode.
        InvalidTransitionError: the quote can no longer take a payment.
    """
    try:
        mode = PaymentMode(mode)
    except ValueError:
        raise ValidationError(f'Unknown payment mode {mode!r}')

    quote = get_quote(session, quote_id)
    if quote.status == QuoteStatus.PAID.value:
        logger.info(f"[QUOTE] Quote {quote_id} already PAID; ignoring duplicate payment event")
        return quote

    if session_id and quote.payment_session_id and session_id != quote.payment_session_id:
        logger.warning(f"[QUOTE] Quote {quote_id} paid through session {session_id}, "
                       f"stored session is {quote.payment_session_id}")

    now = utcnow()
    if mode is PaymentMode.DEPOSIT:
        return _record_deposit(session, quote, now)
    if quote.status == QuoteStatus.SENT.value:
        return _apply_transition(session, quote, QuoteStatus.PAID, {'accepted_at': now, 'paid_at': now})
    _require(quote, QuoteStatus.PAID)
    return _apply_transition(session, quote, QuoteStatus.PAID, {'paid_at': now})
