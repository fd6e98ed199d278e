import pytest
from datetime import datetime, timezone
from decimal import Decimal

from app import create_app
from app.database import create_all, drop_all, get_session
from app.models import Customer
from app.services.notification_service import NotificationDispatcher
from app.services.payment_link_service import PaymentLinkIssuer
from app.services.quote_pdf_service import BusinessProfile
from app.services.quote_service import create_quote
from config import TestConfig
from tests.fakes import FakeCheckoutProvider, FakeEmailProvider


@pytest.fixture
def business():
    return BusinessProfile(
        name="Kocky's Bar & Grill",
        tagline='BAR & GRILL',
        phone='(559) 217-5719',
        email='info@kockys.test',
        address='123 Main Street, Fresno, CA 93701',
        default_terms='Payment due upon acceptance.',
    )


@pytest.fixture
def checkout_provider():
    return FakeCheckoutProvider()


@pytest.fixture
def email_providers():
    return [FakeEmailProvider('graph'), FakeEmailProvider('sendgrid'), FakeEmailProvider('smtp')]


@pytest.fixture
def app(checkout_provider, email_providers):
    """Application with in-memory DB and fake providers."""
    issuer = PaymentLinkIssuer(
        checkout_provider,
        base_url=TestConfig.APP_BASE_URL,
        retry_attempts=1,
        sleep=lambda seconds: None,
    )
    app = create_app(
        'config.TestConfig',
        payment_issuer=issuer,
        dispatcher=NotificationDispatcher(email_providers),
    )
    with app.app_context():
        create_all()
        yield app
        get_session().remove()
        drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def pipeline(app):
    return app.extensions['quote_pipeline']


@pytest.fixture
def session(app):
    """Scoped session; use ids rather than instances across requests."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture
def customer(session):
    customer = Customer(name='Jane Doe', email='jane@example.com', phone='(559) 555-0101')
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture
def quote(session, customer):
    """Q-202501-0001: $500 catering, 8.5% tax, 18% gratuity -> $632.50."""
    return create_quote(
        session,
        customer.id,
        [{'description': 'Catering package for 50 guests', 'quantity': 1, 'unit_price': '500.00'}],
        tax_rate_pct=Decimal('8.5'),
        gratuity_rate_pct=Decimal('18'),
        valid_days=3650,
        now=datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc),
        service_type='CATERING',
        event_date=datetime(2025, 3, 1).date(),
        event_location='Riverside Park',
        guest_count=50,
    )
