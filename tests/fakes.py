"""In-memory stand-ins for payment, email and rendering components."""
from app.exceptions import ProviderAuthError, RenderFailureError
from app.services.email_providers import EmailProvider
from app.services.payment_gateways import CheckoutProvider, CheckoutSession, SessionStatus
from app.services.quote_pdf_service import QuoteDocumentRenderer


class FakeCheckoutProvider(CheckoutProvider):
    """In-memory checkout: one session per idempotency key, like the real providers."""

    name = 'fake'

    def __init__(self):
        self.sessions = {}
        self.calls = []
        self.failures = []
        self.paid = set()

    def create_checkout_session(self, idempotency_key, line_item, success_url, cancel_url,
                                customer_email, metadata):
        self.calls.append({
            'idempotency_key': idempotency_key,
            'line_item': line_item,
            'success_url': success_url,
            'cancel_url': cancel_url,
            'customer_email': customer_email,
            'metadata': metadata,
        })
        if self.failures:
            raise self.failures.pop(0)
        if idempotency_key not in self.sessions:
            session_id = f"cs_test_{len(self.sessions) + 1}"
            self.sessions[idempotency_key] = CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")
        return self.sessions[idempotency_key]

    def retrieve_session(self, session_id):
        return SessionStatus(session_id=session_id, payment_status='paid' if session_id in self.paid else 'unpaid')


class FakeEmailProvider(EmailProvider):
    """
    Email provider with a settable outcome:
    'ok' accepts, 'fail' returns False, 'raise' raises, 'auth' raises ProviderAuthError.
    """

    def __init__(self, name, outcome='ok'):
        self.name = name
        self.outcome = outcome
        self.sent = []
        self.invalidations = 0

    def send(self, message):
        if self.outcome == 'raise':
            raise RuntimeError(f"{self.name} connection reset")
        if self.outcome == 'auth':
            raise ProviderAuthError(f"{self.name} token rejected", provider=self.name)
        if self.outcome == 'fail':
            return False
        self.sent.append(message)
        return True

    def invalidate_credentials(self):
        self.invalidations += 1


class FailingRenderer(QuoteDocumentRenderer):
    """Full layout always fails; `fallback_fails` also breaks the simplified page."""

    def __init__(self, business, fallback_fails=False):
        super().__init__(business)
        self.fallback_fails = fallback_fails

    def render(self, snapshot):
        raise RenderFailureError('layout exploded')

    def render_fallback(self, snapshot):
        if self.fallback_fails:
            raise RuntimeError('canvas exploded')
        return super().render_fallback(snapshot)
