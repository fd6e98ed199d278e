"""
Payment link issuance for quotes.

Wraps a CheckoutProvider with request validation, the deposit/full amount
rule and a stable idempotency key per (quote, mode), so a re-send or a retry
after a timeout never opens a second checkout for the same thing.
"""
import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from app.exceptions import InvalidPaymentRequestError, ProviderUnavailableError, ValidationError
from app.models.quote import PaymentMode
from app.services.payment_gateways import CheckoutLineItem, CheckoutProvider, build_checkout_provider
from app.services.pricing_service import checkout_deposit_minor_units, from_minor_units, to_decimal
from app.utils.retry import retry_on

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass(frozen=True)
class CheckoutRequest:
    quote_id: int
    customer_email: str
    mode: PaymentMode
    title: str
    total_minor_units: int
    deposit_pct: Decimal = Decimal('0.20')
    description: Optional[str] = None


@dataclass(frozen=True)
class PaymentLink:
    checkout_url: str
    session_id: str
    amount_collected: Decimal
    mode: PaymentMode
    reused: bool = False


def idempotency_key(quote_id, mode) -> str:
    """Stable key for one checkout per quote and payment mode."""
    mode = PaymentMode(mode)
    return f"quote:{quote_id}:{mode.value}"


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email.strip()) is not None


class PaymentLinkIssuer:
    """
    Creates checkout sessions for quotes.

    Args:
        provider: Checkout adapter.
        base_url: Public site URL used for success/cancel return pages.
        minimum_deposit_minor: Floor for deposit-mode checkouts, in cents.
        currency: ISO currency passed to the provider.
        retry_attempts: Total tries for ProviderUnavailableError.
        retry_base_delay: First backoff delay in seconds.
    """

    def __init__(
        self,
        provider: CheckoutProvider,
        base_url: str,
        minimum_deposit_minor: int = 5000,
        currency: str = 'usd',
        retry_attempts: int = 2,
        retry_base_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip('/')
        self.minimum_deposit_minor = minimum_deposit_minor
        self.currency = currency
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, provider: Optional[CheckoutProvider] = None) -> 'PaymentLinkIssuer':
        return cls(
            provider=provider or build_checkout_provider(config),
            base_url=config.get('APP_BASE_URL', ''),
            minimum_deposit_minor=int(config.get('CHECKOUT_MINIMUM_DEPOSIT_CENTS', 5000)),
            currency=config.get('PAYMENT_CURRENCY', 'usd'),
            retry_attempts=int(config.get('PAYMENT_RETRY_ATTEMPTS', 2)),
            retry_base_delay=float(config.get('PAYMENT_RETRY_BASE_DELAY', 0.2)),
        )

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def validate(self, request: CheckoutRequest) -> PaymentMode:
        """Reject bad requests before any provider call."""
        try:
            mode = PaymentMode(request.mode)
        except ValueError:
            raise InvalidPaymentRequestError(f"Unknown payment mode: {request.mode!r}")
        if not is_valid_email(request.customer_email):
            raise InvalidPaymentRequestError(f"Invalid customer email: {request.customer_email!r}")
        total = request.total_minor_units
        if isinstance(total, bool) or not isinstance(total, int) or total < 0:
            raise InvalidPaymentRequestError('Checkout total must be a non-negative integer amount of cents')
        return mode

    def amount_for(self, request: CheckoutRequest) -> int:
        """Minor units collected by this checkout: floored deposit or the full total."""
        mode = self.validate(request)
        if mode is PaymentMode.FULL:
            return request.total_minor_units
        try:
            pct = to_decimal(request.deposit_pct, 'deposit percentage')
            return checkout_deposit_minor_units(request.total_minor_units, pct, self.minimum_deposit_minor)
        except ValidationError as e:
            raise InvalidPaymentRequestError(e.message)

    def success_url(self, quote_id) -> str:
        # {CHECKOUT_SESSION_ID} is substituted by Stripe, MP ignores it
        return f"{self.base_url}/quotes/success?quoteId={quote_id}&session_id={{CHECKOUT_SESSION_ID}}"

    def cancel_url(self, quote_id) -> str:
        return f"{self.base_url}/quotes/cancel?quoteId={quote_id}"

    def issue(self, request: CheckoutRequest) -> PaymentLink:
        """
        Create (or get back) the checkout session for a quote and mode.

        Raises:
            InvalidPaymentRequestError: request rejected locally or by the provider.
            ProviderUnavailableError: provider still failing after retries.
        """
        mode = self.validate(request)
        amount_minor = self.amount_for(request)
        key = idempotency_key(request.quote_id, mode)
        label = 'Deposit' if mode is PaymentMode.DEPOSIT else 'Payment'
        line_item = CheckoutLineItem(
            name=f"{label} - {request.title}",
            amount_minor=amount_minor,
            currency=self.currency,
            description=request.description,
        )
        metadata = {
            'quoteId': str(request.quote_id),
            'paymentMode': mode.value,
            'customerEmail': request.customer_email,
            'amount': str(from_minor_units(amount_minor)),
        }

        def _create():
            return self.provider.create_checkout_session(
                idempotency_key=key,
                line_item=line_item,
                success_url=self.success_url(request.quote_id),
                cancel_url=self.cancel_url(request.quote_id),
                customer_email=request.customer_email,
                metadata=metadata,
            )

        def _on_retry(attempt, error, delay):
            logger.warning(
                f"[PAYMENT] {self.provider_name} attempt {attempt} failed for quote {request.quote_id}: "
                f"{error}; retrying in {delay:.2f}s"
            )

        session = retry_on(
            _create,
            attempts=self.retry_attempts,
            base=self.retry_base_delay,
            is_retryable=lambda e: isinstance(e, ProviderUnavailableError),
            on_retry=_on_retry,
            sleep=self._sleep,
        )
        logger.info(
            f"[PAYMENT] Checkout ready for quote {request.quote_id} mode={mode.value} "
            f"amount={amount_minor} session={session.id}"
        )
        return PaymentLink(
            checkout_url=session.url,
            session_id=session.id,
            amount_collected=from_minor_units(amount_minor),
            mode=mode,
        )

    def is_session_paid(self, session_id: str) -> bool:
        """Ask the provider whether a stored session was paid."""
        return self.provider.retrieve_session(session_id).is_paid
