"""
Checkout provider adapters.

Each adapter turns one priced line into a provider-hosted checkout page and
maps provider failures onto two outcomes: ProviderUnavailableError (network,
auth, rate limit, 5xx; safe to retry with the same idempotency key) and
InvalidPaymentRequestError (the request itself was rejected).
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import mercadopago  # type: ignore
import requests
import stripe
from mercadopago.config import RequestOptions  # type: ignore

from app.exceptions import InvalidPaymentRequestError, ProviderUnavailableError
from app.services.pricing_service import from_minor_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutLineItem:
    """Single line shown on the hosted checkout page. Amount in minor units."""
    name: str
    amount_minor: int
    currency: str = 'usd'
    description: Optional[str] = None
    quantity: int = 1


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    payment_status: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == 'paid'


class CheckoutProvider(ABC):
    """Port every checkout adapter implements."""

    name = 'abstract'

    @abstractmethod
    def create_checkout_session(
        self,
        idempotency_key: str,
        line_item: CheckoutLineItem,
        success_url: str,
        cancel_url: str,
        customer_email: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        ...

    @abstractmethod
    def retrieve_session(self, session_id: str) -> SessionStatus:
        ...


class DisabledCheckoutProvider(CheckoutProvider):
    """Used when no payment provider is configured; every call is unavailable."""

    name = 'disabled'

    def create_checkout_session(self, idempotency_key, line_item, success_url, cancel_url,
                                customer_email, metadata) -> CheckoutSession:
        raise ProviderUnavailableError('No payment provider configured', provider=self.name)

    def retrieve_session(self, session_id: str) -> SessionStatus:
        raise ProviderUnavailableError('No payment provider configured', provider=self.name)


class StripeCheckoutProvider(CheckoutProvider):
    """Stripe Checkout Sessions in payment mode."""

    name = 'stripe'

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.api_key = api_key

    def create_checkout_session(self, idempotency_key, line_item, success_url, cancel_url,
                                customer_email, metadata) -> CheckoutSession:
        product_data = {'name': line_item.name}
        if line_item.description:
            product_data['description'] = line_item.description

        logger.info(f"[PAYMENT] Creating Stripe checkout session key={idempotency_key} amount={line_item.amount_minor}")
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                mode='payment',
                payment_method_types=['card'],
                customer_email=customer_email,
                line_items=[{
                    'price_data': {
                        'currency': line_item.currency,
                        'product_data': product_data,
                        'unit_amount': line_item.amount_minor,
                    },
                    'quantity': line_item.quantity,
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise self._map_error(e)

        logger.info(f"[PAYMENT] Stripe session created: {session.id}")
        return CheckoutSession(id=session.id, url=session.url)

    def retrieve_session(self, session_id: str) -> SessionStatus:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise self._map_error(e)
        return SessionStatus(
            session_id=session_id,
            payment_status=session.payment_status,
            raw={'status': getattr(session, 'status', None)},
        )

    def _map_error(self, error):
        status = getattr(error, 'http_status', None)
        message = getattr(error, 'user_message', None) or str(error)
        if isinstance(error, (stripe.InvalidRequestError, stripe.CardError, stripe.IdempotencyError)):
            if status is None or status < 500:
                logger.warning(f"[PAYMENT] Stripe rejected request: {message}")
                return InvalidPaymentRequestError(f"Stripe rejected the checkout request: {message}")
        logger.warning(f"[PAYMENT] Stripe unavailable ({type(error).__name__}, status={status}): {message}")
        return ProviderUnavailableError(f"Stripe unavailable: {message}", provider=self.name)


class MercadoPagoCheckoutProvider(CheckoutProvider):
    """Mercado Pago Checkout Pro preferences."""

    name = 'mercadopago'

    def __init__(self, access_token: str, sdk=None):
        if not access_token and sdk is None:
            raise ValueError("MP_ACCESS_TOKEN is required")
        self.sdk = sdk or mercadopago.SDK(access_token)

    def create_checkout_session(self, idempotency_key, line_item, success_url, cancel_url,
                                customer_email, metadata) -> CheckoutSession:
        unit_price = from_minor_units(line_item.amount_minor)
        preference = {
            'items': [{
                'title': line_item.name,
                'description': line_item.description or line_item.name,
                'quantity': line_item.quantity,
                'currency_id': line_item.currency.upper(),
                # MP takes a JSON number in major units
                'unit_price': float(unit_price),
            }],
            'payer': {'email': customer_email},
            'back_urls': {
                'success': success_url,
                'pending': success_url,
                'failure': cancel_url,
            },
            'auto_return': 'approved',
            'external_reference': idempotency_key,
            'metadata': metadata,
        }
        options = RequestOptions(custom_headers={'x-idempotency-key': idempotency_key})

        logger.info(f"[PAYMENT] Creating MP preference key={idempotency_key} amount={unit_price}")
        response = self._call(lambda: self.sdk.preference().create(preference, options))
        body = response['response']
        logger.info(f"[PAYMENT] MP preference created: {body.get('id')}")
        return CheckoutSession(id=body['id'], url=body['init_point'])

    def retrieve_session(self, session_id: str) -> SessionStatus:
        preference = self._call(lambda: self.sdk.preference().get(session_id))['response']
        reference = preference.get('external_reference')
        search = self._call(lambda: self.sdk.payment().search({
            'external_reference': reference,
            'sort': 'date_created',
            'criteria': 'desc',
        }))['response']
        results = search.get('results') or []
        approved = any(p.get('status') == 'approved' for p in results)
        return SessionStatus(
            session_id=session_id,
            payment_status='paid' if approved else 'unpaid',
            raw={'external_reference': reference, 'payments': len(results)},
        )

    def get_payment(self, payment_id) -> dict:
        """Payment resource named by a webhook notification."""
        return self._call(lambda: self.sdk.payment().get(payment_id))['response']

    def _call(self, fn):
        try:
            response = fn()
        except requests.RequestException as e:
            logger.warning(f"[PAYMENT] MP network error: {e}")
            raise ProviderUnavailableError(f"Mercado Pago unavailable: {e}", provider=self.name)

        status = response.get('status', 0)
        if 200 <= status < 300:
            return response
        detail = response.get('response')
        if status in (401, 403, 429) or status >= 500:
            logger.warning(f"[PAYMENT] MP unavailable (status={status}): {detail}")
            raise ProviderUnavailableError(f"Mercado Pago unavailable (HTTP {status})", provider=self.name)
        logger.warning(f"[PAYMENT] MP rejected request (status={status}): {detail}")
        raise InvalidPaymentRequestError(f"Mercado Pago rejected the request (HTTP {status})",
                                         payload={'provider_response': detail})


def build_checkout_provider(config) -> CheckoutProvider:
    """
    Pick the checkout adapter named by PAYMENT_PROVIDER.

    Missing credentials degrade to the disabled provider instead of failing
    app startup, so quotes can still go out with the contact link.
    """
    name = (config.get('PAYMENT_PROVIDER') or '').strip().lower()
    if name == 'stripe':
        if config.get('STRIPE_SECRET_KEY'):
            return StripeCheckoutProvider(config['STRIPE_SECRET_KEY'])
        logger.warning("[PAYMENT] PAYMENT_PROVIDER=stripe but STRIPE_SECRET_KEY is not set; payments disabled")
    elif name == 'mercadopago':
        if config.get('MP_ACCESS_TOKEN'):
            return MercadoPagoCheckoutProvider(config['MP_ACCESS_TOKEN'])
        logger.warning("[PAYMENT] PAYMENT_PROVIDER=mercadopago but MP_ACCESS_TOKEN is not set; payments disabled")
    elif name:
        logger.warning(f"[PAYMENT] Unknown PAYMENT_PROVIDER {name!r}; payments disabled")
    return DisabledCheckoutProvider()
