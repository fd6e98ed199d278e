"""
Unit tests for payment link issuance and the checkout adapters.
"""

import pytest
import requests
import stripe
from decimal import Decimal
from unittest import mock

from app.exceptions import InvalidPaymentRequestError, ProviderUnavailableError
from app.models import PaymentMode
from app.services.payment_gateways import (
    CheckoutLineItem, DisabledCheckoutProvider, MercadoPagoCheckoutProvider, StripeCheckoutProvider,
    build_checkout_provider,
)
from app.services.payment_link_service import CheckoutRequest, PaymentLinkIssuer, idempotency_key
from tests.fakes import FakeCheckoutProvider


def make_request(mode=PaymentMode.FULL, total=63250, email='jane@example.com', **kwargs):
    return CheckoutRequest(
        quote_id=42,
        customer_email=email,
        mode=mode,
        title='Quote Q-202501-0001',
        total_minor_units=total,
        **kwargs
    )


@pytest.fixture
def provider():
    return FakeCheckoutProvider()


@pytest.fixture
def issuer(provider):
    return PaymentLinkIssuer(provider, base_url='https://kockys.test/', retry_attempts=3, sleep=lambda s: None)


class TestPaymentLinkIssuer:
    """Tests for PaymentLinkIssuer."""

    def test_full_payment(self, issuer, provider):
        link = issuer.issue(make_request())

        assert link.amount_collected == Decimal('632.50')
        assert link.mode is PaymentMode.FULL
        assert link.checkout_url == 'https://checkout.test/cs_test_1'
        call = provider.calls[0]
        assert call['line_item'].amount_minor == 63250
        assert call['line_item'].name == 'Payment - Quote Q-202501-0001'
        assert call['metadata'] == {
            'quoteId': '42',
            'paymentMode': 'full',
            'customerEmail': 'jane@example.com',
            'amount': '632.50',
        }

    def test_return_urls(self, issuer, provider):
        issuer.issue(make_request())
        call = provider.calls[0]
        assert call['success_url'] == 'https://kockys.test/quotes/success?quoteId=42&session_id={CHECKOUT_SESSION_ID}'
        assert call['cancel_url'] == 'https://kockys.test/quotes/cancel?quoteId=42'

    def test_deposit_payment(self, issuer, provider):
        link = issuer.issue(make_request(mode=PaymentMode.DEPOSIT))

        assert link.amount_collected == Decimal('126.50')
        assert provider.calls[0]['line_item'].name == 'Deposit - Quote Q-202501-0001'

    @pytest.mark.parametrize('total, expected', [(10000, Decimal('50.00')), (100000, Decimal('200.00'))])
    def test_deposit_minimum(self, issuer, total, expected):
        link = issuer.issue(make_request(mode=PaymentMode.DEPOSIT, total=total))
        assert link.amount_collected == expected

    def test_same_quote_and_mode_reuses_session(self, issuer, provider):
        """Issuing twice with the same key returns the same checkout session."""
        first = issuer.issue(make_request())
        second = issuer.issue(make_request())

        assert first.session_id == second.session_id
        assert {c['idempotency_key'] for c in provider.calls} == {'quote:42:full'}

    def test_modes_get_separate_sessions(self, issuer):
        full = issuer.issue(make_request())
        deposit = issuer.issue(make_request(mode=PaymentMode.DEPOSIT))
        assert full.session_id != deposit.session_id

    def test_retries_unavailable_with_same_key(self, issuer, provider):
        provider.failures = [ProviderUnavailableError('timeout'), ProviderUnavailableError('502')]

        link = issuer.issue(make_request())

        assert link.session_id == 'cs_test_1'
        assert len(provider.calls) == 3
        assert {c['idempotency_key'] for c in provider.calls} == {'quote:42:full'}

    def test_gives_up_after_attempts(self, issuer, provider):
        provider.failures = [ProviderUnavailableError('down')] * 3
        with pytest.raises(ProviderUnavailableError):
            issuer.issue(make_request())
        assert len(provider.calls) == 3

    def test_invalid_request_not_retried(self, issuer, provider):
        provider.failures = [InvalidPaymentRequestError('amount too small')]
        with pytest.raises(InvalidPaymentRequestError):
            issuer.issue(make_request())
        assert len(provider.calls) == 1

    @pytest.mark.parametrize('request_kwargs', [
        {'email': 'not-an-email'},
        {'total': -1},
        {'total': 632.5},
        {'mode': 'installments'},
    ])
    def test_rejects_bad_requests_before_provider(self, issuer, provider, request_kwargs):
        with pytest.raises(InvalidPaymentRequestError):
            issuer.issue(make_request(**request_kwargs))
        assert provider.calls == []

    def test_idempotency_key(self):
        assert idempotency_key(7, 'deposit') == 'quote:7:deposit'
        assert idempotency_key(7, PaymentMode.FULL) == 'quote:7:full'

    def test_is_session_paid(self, issuer, provider):
        provider.paid.add('cs_paid')
        assert issuer.is_session_paid('cs_paid') is True
        assert issuer.is_session_paid('cs_other') is False


class TestStripeCheckoutProvider:
    """Tests for the Stripe adapter (SDK mocked)."""

    line_item = CheckoutLineItem(name='Payment - Quote Q-1', amount_minor=63250, description='Catering')

    def create(self, provider):
        return provider.create_checkout_session(
            idempotency_key='quote:1:full',
            line_item=self.line_item,
            success_url='https://kockys.test/ok',
            cancel_url='https://kockys.test/cancel',
            customer_email='jane@example.com',
            metadata={'quoteId': '1'},
        )

    def test_create_session(self):
        provider = StripeCheckoutProvider('sk_test_123')
        with mock.patch('stripe.checkout.Session.create') as create:
            create.return_value = mock.Mock(id='cs_123', url='https://checkout.stripe.com/c/cs_123')
            session = self.create(provider)

        assert session.id == 'cs_123'
        kwargs = create.call_args.kwargs
        assert kwargs['idempotency_key'] == 'quote:1:full'
        assert kwargs['api_key'] == 'sk_test_123'
        assert kwargs['mode'] == 'payment'
        assert kwargs['line_items'][0]['price_data']['unit_amount'] == 63250
        assert kwargs['line_items'][0]['price_data']['currency'] == 'usd'
        assert kwargs['metadata'] == {'quoteId': '1'}

    def test_invalid_request_maps_to_invalid_payment(self):
        provider = StripeCheckoutProvider('sk_test_123')
        error = stripe.InvalidRequestError('Amount must be at least $0.50', 'amount', http_status=400)
        with mock.patch('stripe.checkout.Session.create', side_effect=error):
            with pytest.raises(InvalidPaymentRequestError):
                self.create(provider)

    @pytest.mark.parametrize('error', [
        stripe.APIConnectionError('connection reset'),
        stripe.AuthenticationError('bad key', http_status=401),
        stripe.RateLimitError('slow down', http_status=429),
        stripe.APIError('server error', http_status=500),
    ])
    def test_transient_errors_map_to_unavailable(self, error):
        provider = StripeCheckoutProvider('sk_test_123')
        with mock.patch('stripe.checkout.Session.create', side_effect=error):
            with pytest.raises(ProviderUnavailableError):
                self.create(provider)

    def test_retrieve_session(self):
        provider = StripeCheckoutProvider('sk_test_123')
        with mock.patch('stripe.checkout.Session.retrieve') as retrieve:
            retrieve.return_value = mock.Mock(payment_status='paid', status='complete')
            status = provider.retrieve_session('cs_123')
        assert status.is_paid

    def test_requires_key(self):
        with pytest.raises(ValueError):
            StripeCheckoutProvider('')


class TestMercadoPagoCheckoutProvider:
    """Tests for the Mercado Pago adapter (SDK mocked)."""

    line_item = CheckoutLineItem(name='Deposit - Quote Q-1', amount_minor=12650, currency='ars')

    def create(self, provider):
        return provider.create_checkout_session(
            idempotency_key='quote:1:deposit',
            line_item=self.line_item,
            success_url='https://kockys.test/ok',
            cancel_url='https://kockys.test/cancel',
            customer_email='jane@example.com',
            metadata={'quoteId': '1'},
        )

    def test_create_preference(self):
        sdk = mock.MagicMock()
        sdk.preference().create.return_value = {
            'status': 201,
            'response': {'id': 'pref-1', 'init_point': 'https://mp.test/checkout/pref-1'},
        }
        session = self.create(MercadoPagoCheckoutProvider(None, sdk=sdk))

        assert session.id == 'pref-1'
        assert session.url == 'https://mp.test/checkout/pref-1'
        preference, options = sdk.preference().create.call_args.args
        assert preference['items'][0]['unit_price'] == 126.5
        assert preference['items'][0]['currency_id'] == 'ARS'
        assert preference['external_reference'] == 'quote:1:deposit'

    @pytest.mark.parametrize('status, expected', [
        (400, InvalidPaymentRequestError),
        (401, ProviderUnavailableError),
        (429, ProviderUnavailableError),
        (503, ProviderUnavailableError),
    ])
    def test_error_mapping(self, status, expected):
        sdk = mock.MagicMock()
        sdk.preference().create.return_value = {'status': status, 'response': {'message': 'nope'}}
        with pytest.raises(expected):
            self.create(MercadoPagoCheckoutProvider(None, sdk=sdk))

    def test_network_error_is_unavailable(self):
        sdk = mock.MagicMock()
        sdk.preference().create.side_effect = requests.ConnectionError('reset')
        with pytest.raises(ProviderUnavailableError):
            self.create(MercadoPagoCheckoutProvider(None, sdk=sdk))

    def test_retrieve_session_paid_when_payment_approved(self):
        sdk = mock.MagicMock()
        sdk.preference().get.return_value = {'status': 200, 'response': {'external_reference': 'quote:1:full'}}
        sdk.payment().search.return_value = {
            'status': 200,
            'response': {'results': [{'status': 'rejected'}, {'status': 'approved'}]},
        }
        status = MercadoPagoCheckoutProvider(None, sdk=sdk).retrieve_session('pref-1')
        assert status.is_paid


class TestBuildCheckoutProvider:
    """Tests for provider selection from config."""

    def test_stripe(self):
        provider = build_checkout_provider({'PAYMENT_PROVIDER': 'stripe', 'STRIPE_SECRET_KEY': 'sk_test'})
        assert provider.name == 'stripe'

    def test_missing_credentials_disable_payments(self):
        provider = build_checkout_provider({'PAYMENT_PROVIDER': 'stripe'})
        assert isinstance(provider, DisabledCheckoutProvider)

    def test_disabled_provider_is_unavailable(self):
        provider = build_checkout_provider({})
        with pytest.raises(ProviderUnavailableError):
            provider.create_checkout_session('k', None, '', '', 'a@b.co', {})
