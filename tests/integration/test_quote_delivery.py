"""
Integration tests for QuoteOrchestrator.send_quote against the in-memory DB
with fake payment and email providers.
"""

import pytest
from decimal import Decimal

from app.exceptions import (
    InvalidTransitionError, MissingCustomerDataError, NotFoundError, NotificationNotSentError,
    ProviderUnavailableError, ValidationError,
)
from app.models import Customer, NotificationAttempt, Quote, QuoteStatus
from app.services.audit_service import list_attempts
from app.services.notification_service import NotificationDispatcher
from app.services.quote_service import create_quote
from tests.fakes import FailingRenderer


def reload(session, quote_id):
    return session.get(Quote, quote_id)


class TestSendQuote:
    """Happy paths."""

    def test_full_payment_reference_quote(self, session, pipeline, quote, checkout_provider, email_providers):
        """Q-202501-0001, full mode, healthy providers: every flag true and DRAFT -> SENT."""
        quote_id = quote.id
        result = pipeline.send_quote(session, quote_id, 'full')

        assert result.checkout_url == 'https://checkout.test/cs_test_1'
        assert result.session_id == 'cs_test_1'
        assert result.email_sent is True
        assert result.pdf_generated is True
        assert result.payment_link_created is True
        assert result.outcome == 'sent'
        assert result.degradations == ()
        assert result.provider_used == 'graph'

        assert checkout_provider.calls[0]['line_item'].amount_minor == 63250
        assert checkout_provider.calls[0]['idempotency_key'] == f'quote:{quote_id}:full'

        saved = reload(session, quote_id)
        assert saved.status == QuoteStatus.SENT.value
        assert saved.sent_at is not None
        assert saved.payment_session_id == 'cs_test_1'
        assert saved.payment_mode == 'full'
        assert saved.payment_amount == Decimal('632.50')

    def test_email_content(self, session, pipeline, quote, email_providers):
        pipeline.send_quote(session, quote.id, 'full')

        message = email_providers[0].sent[0]
        assert message.recipient == 'jane@example.com'
        assert message.subject.startswith('Your Quote Q-202501-0001')
        assert message.cc == ('info@kockys.test',)
        assert '$632.50' in message.html_body
        assert 'https://checkout.test/cs_test_1' in message.html_body
        assert 'Pay Now' in message.html_body
        assert '$632.50' in message.text_body
        assert len(message.attachments) == 1
        assert message.attachments[0].filename == 'quote-Q-202501-0001.pdf'
        assert message.attachments[0].content.startswith(b'%PDF')

    def test_deposit_mode(self, session, pipeline, quote, checkout_provider, email_providers):
        """20% deposit of $632.50 is $126.50."""
        quote_id = quote.id
        result = pipeline.send_quote(session, quote_id, 'deposit')

        assert result.outcome == 'sent'
        assert checkout_provider.calls[0]['line_item'].amount_minor == 12650
        assert checkout_provider.calls[0]['line_item'].name.startswith('Deposit - ')
        assert reload(session, quote_id).payment_amount == Decimal('126.50')
        html = email_providers[0].sent[0].html_body
        assert 'Pay Deposit' in html
        assert '$126.50' in html

    def test_deposit_mode_uses_quote_percentage(self, session, pipeline, customer, checkout_provider):
        quote = create_quote(
            session, customer.id, [{'description': 'Mobile bar', 'quantity': 1, 'unit_price': '500.00'}],
            tax_rate_pct='8.5', gratuity_rate_pct='18', deposit_type='PERCENTAGE', deposit_value='25',
        )
        pipeline.send_quote(session, quote.id, 'deposit')
        assert checkout_provider.calls[0]['line_item'].amount_minor == 15813

    def test_small_deposit_raised_to_minimum(self, session, pipeline, customer, checkout_provider):
        quote = create_quote(session, customer.id, [{'description': 'Tasting', 'quantity': 1, 'unit_price': '100'}])
        pipeline.send_quote(session, quote.id, 'deposit')
        assert checkout_provider.calls[0]['line_item'].amount_minor == 5000

    def test_resend_reuses_stored_session(self, session, pipeline, quote, checkout_provider, email_providers):
        quote_id = quote.id
        first = pipeline.send_quote(session, quote_id, 'full')
        second = pipeline.send_quote(session, quote_id, 'full')

        assert second.session_id == first.session_id
        assert len(checkout_provider.calls) == 1
        assert len(email_providers[0].sent) == 2
        assert reload(session, quote_id).status == 'SENT'

    def test_resend_with_other_mode_opens_new_session(self, session, pipeline, quote, checkout_provider):
        quote_id = quote.id
        first = pipeline.send_quote(session, quote_id, 'full')
        second = pipeline.send_quote(session, quote_id, 'deposit')

        assert second.session_id != first.session_id
        assert reload(session, quote_id).payment_mode == 'deposit'

    def test_audit_row_recorded(self, session, pipeline, quote):
        quote_id = quote.id
        pipeline.send_quote(session, quote_id, 'full')

        attempts = list_attempts(session, quote_id)
        assert len(attempts) == 1
        assert attempts[0].status == 'SENT'
        assert attempts[0].provider == 'graph'
        assert attempts[0].pdf_generated is True
        assert attempts[0].payment_link_created is True

    def test_fallback_provider_recorded(self, session, pipeline, quote, email_providers):
        email_providers[0].outcome = 'raise'
        email_providers[1].outcome = 'fail'
        quote_id = quote.id

        result = pipeline.send_quote(session, quote_id, 'full')

        assert result.provider_used == 'smtp'
        statuses = [(a.provider, a.status) for a in list_attempts(session, quote_id)]
        assert statuses == [('graph', 'FAILED'), ('sendgrid', 'FAILED'), ('smtp', 'SENT')]


class TestDegradedSend:
    """Payment and document failures degrade the send instead of failing it."""

    def test_payment_failure_uses_contact_link(self, session, pipeline, quote, checkout_provider, email_providers):
        checkout_provider.failures = [ProviderUnavailableError('Stripe unavailable')]
        quote_id = quote.id

        result = pipeline.send_quote(session, quote_id, 'full')

        contact = f'https://staging.kockys.test/contact?quote={quote_id}'
        assert result.checkout_url == contact
        assert result.session_id is None
        assert result.payment_link_created is False
        assert result.email_sent is True
        assert result.outcome == 'degraded'
        assert result.degradations == ('payment_link',)
        assert contact in email_providers[0].sent[0].html_body
        saved = reload(session, quote_id)
        assert saved.status == 'SENT'
        assert saved.payment_session_id is None
        assert list_attempts(session, quote_id)[0].payment_link_created is False

    def test_render_failure_sends_without_attachment(self, session, pipeline, quote, email_providers):
        pipeline.renderer = FailingRenderer(pipeline.business, fallback_fails=True)
        quote_id = quote.id

        result = pipeline.send_quote(session, quote_id, 'full')

        assert result.pdf_generated is False
        assert result.payment_link_created is True
        assert result.outcome == 'degraded'
        assert result.degradations == ('document',)
        assert email_providers[0].sent[0].attachments == ()
        assert reload(session, quote_id).status == 'SENT'
        assert list_attempts(session, quote_id)[0].pdf_generated is False

    def test_fallback_document_attached(self, session, pipeline, quote, email_providers):
        pipeline.renderer = FailingRenderer(pipeline.business)

        result = pipeline.send_quote(session, quote.id, 'full')

        assert result.pdf_generated is True
        assert result.outcome == 'sent'
        assert email_providers[0].sent[0].attachments[0].filename == 'quote-Q-202501-0001-fallback.pdf'


class TestFailedSend:
    """Hard failures leave the quote untouched."""

    def test_all_providers_fail(self, session, pipeline, quote, email_providers):
        for provider in email_providers:
            provider.outcome = 'fail'
        quote_id = quote.id

        with pytest.raises(NotificationNotSentError) as exc:
            pipeline.send_quote(session, quote_id, 'full')

        assert exc.value.status_code == 502
        assert len(exc.value.payload['attempts']) == 3
        saved = reload(session, quote_id)
        assert saved.status == 'DRAFT'
        assert saved.sent_at is None
        assert saved.payment_session_id is None
        attempts = list_attempts(session, quote_id)
        assert [a.status for a in attempts] == ['FAILED'] * 3

    def test_no_provider_configured(self, session, pipeline, quote):
        pipeline.dispatcher = NotificationDispatcher([])
        quote_id = quote.id

        with pytest.raises(NotificationNotSentError):
            pipeline.send_quote(session, quote_id, 'full')

        attempts = list_attempts(session, quote_id)
        assert len(attempts) == 1
        assert attempts[0].provider is None
        assert attempts[0].status == 'FAILED'

    def test_missing_customer_email(self, session, pipeline, quote, customer, checkout_provider, email_providers):
        quote_id = quote.id
        session.get(Customer, customer.id).email = None
        session.commit()

        with pytest.raises(MissingCustomerDataError) as exc:
            pipeline.send_quote(session, quote_id, 'full')

        assert exc.value.missing_fields == ['email']
        assert checkout_provider.calls == []
        assert email_providers[0].sent == []
        assert session.query(NotificationAttempt).count() == 0
        assert reload(session, quote_id).status == 'DRAFT'

    def test_malformed_customer_email(self, session, pipeline, quote, customer, checkout_provider):
        quote_id = quote.id
        session.get(Customer, customer.id).email = 'jane-at-example'
        session.commit()

        with pytest.raises(ValidationError):
            pipeline.send_quote(session, quote_id, 'full')
        assert checkout_provider.calls == []

    def test_bad_payment_mode(self, session, pipeline, quote):
        with pytest.raises(ValidationError):
            pipeline.send_quote(session, quote.id, 'installments')

    @pytest.mark.parametrize('status', ['ACCEPTED', 'PAID', 'REJECTED', 'EXPIRED'])
    def test_terminal_or_accepted_quote(self, session, pipeline, quote, checkout_provider, status):
        quote_id = quote.id
        reload(session, quote_id).status = status
        session.commit()

        with pytest.raises(InvalidTransitionError):
            pipeline.send_quote(session, quote_id, 'full')
        assert checkout_provider.calls == []

    def test_unknown_quote(self, session, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.send_quote(session, 999, 'full')


class TestRenderQuoteDocument:
    """Preview / download path."""

    def test_renders_current_quote(self, session, pipeline, quote):
        document = pipeline.render_quote_document(session, quote.id)
        assert document.content.startswith(b'%PDF')
        assert document.filename == 'quote-Q-202501-0001.pdf'
