"""
Quote delivery: price, issue the payment link, render the PDF, email it and
record the outcome.

Payment issuance and rendering run side by side on a small thread pool and
only ever see the immutable QuoteSnapshot. Everything that touches the
database happens on the calling thread. On a successful send the quote row
gets exactly one UPDATE, committed together with the audit rows.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from app.exceptions import (
    InvalidPaymentRequestError, InvalidTransitionError, MissingCustomerDataError, NotificationNotSentError,
    ValidationError,
)
from app.metrics import documents_rendered_total, payment_links_total, quotes_sent_total
from app.models import DepositType, PaymentMode, Quote, QuoteStatus
from app.services.audit_service import record_dispatch
from app.services.email_templates import render_email
from app.services.notification_service import (
    Attachment, DispatchResult, NotificationDispatcher, OutboundMessage, build_provider_chain
)
from app.services.payment_link_service import (
    CheckoutRequest, PaymentLink, PaymentLinkIssuer, is_valid_email
)
from app.services.pricing_service import QuoteTotals, from_minor_units, to_minor_units
from app.services.quote_pdf_service import (
    BusinessProfile, QuoteDocumentRenderer, QuoteSnapshot, RenderedDocument
)
from app.services.quote_service import get_quote, price_quote, utcnow
from app.services.storage_service import DocumentStorage
from app.utils.formatters import long_date, money, service_label

logger = logging.getLogger(__name__)

OUTCOME_SENT = 'sent'
OUTCOME_DEGRADED = 'degraded'
DEGRADED_PAYMENT_LINK = 'payment_link'
DEGRADED_DOCUMENT = 'document'


@dataclass(frozen=True)
class SendQuoteResult:
    checkout_url: str
    session_id: Optional[str]
    email_sent: bool
    pdf_generated: bool
    payment_link_created: bool
    outcome: str
    degradations: Tuple[str, ...] = ()
    provider_used: Optional[str] = None
    quote_status: Optional[str] = None

    def to_dict(self):
        data = asdict(self)
        data['degradations'] = list(self.degradations)
        return data


class QuoteOrchestrator:
    """
    Coordinates one quote send.

    Args:
        payment_issuer: PaymentLinkIssuer
        renderer: QuoteDocumentRenderer
        dispatcher: NotificationDispatcher
        business: BusinessProfile used in the email
        base_url: Public site URL, for the contact fallback link
        cc_addresses: Always copied on quote emails
        checkout_deposit_pct: Deposit fraction when the quote has no percentage deposit
        storage: Optional DocumentStorage for pdf_url
    """

    def __init__(
        self,
        payment_issuer: PaymentLinkIssuer,
        renderer: QuoteDocumentRenderer,
        dispatcher: NotificationDispatcher,
        business: BusinessProfile,
        base_url: str,
        cc_addresses: Sequence[str] = (),
        checkout_deposit_pct: Decimal = Decimal('0.20'),
        storage: Optional[DocumentStorage] = None,
        max_workers: int = 2,
    ):
        self.payment_issuer = payment_issuer
        self.renderer = renderer
        self.dispatcher = dispatcher
        self.business = business
        self.base_url = base_url.rstrip('/')
        self.cc_addresses = tuple(cc_addresses)
        self.checkout_deposit_pct = Decimal(str(checkout_deposit_pct))
        self.storage = storage
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config, mail=None, **overrides) -> 'QuoteOrchestrator':
        """Build the pipeline once at startup; keyword overrides replace single parts."""
        business = BusinessProfile.from_config(config)
        storage = overrides.pop('storage', None)
        if storage is None and config.get('DOCUMENT_STORAGE_ENABLED'):
            storage = DocumentStorage.from_config(config)
        return cls(
            payment_issuer=overrides.pop('payment_issuer', None) or PaymentLinkIssuer.from_config(config),
            renderer=overrides.pop('renderer', None) or QuoteDocumentRenderer(business),
            dispatcher=overrides.pop('dispatcher', None) or NotificationDispatcher(build_provider_chain(config, mail)),
            business=business,
            base_url=config.get('APP_BASE_URL', ''),
            cc_addresses=config.get('QUOTE_CC_ADDRESSES') or (),
            checkout_deposit_pct=Decimal(str(config.get('CHECKOUT_DEPOSIT_PCT', '0.20'))),
            storage=storage,
        )

    def contact_url(self, quote_id) -> str:
        return f"{self.base_url}/contact?quote={quote_id}"

    # -- steps -------------------------------------------------------------

    def _validate_customer(self, quote: Quote):
        customer = quote.customer
        missing = []
        if not customer or not (customer.name or '').strip():
            missing.append('name')
        if not customer or not (customer.email or '').strip():
            missing.append('email')
        if missing:
            raise MissingCustomerDataError(missing, quote.id)
        if not is_valid_email(customer.email):
            raise ValidationError(f'Customer email {customer.email!r} is not a valid address',
                                  payload={'quote_id': quote.id})

    def _deposit_pct(self, quote: Quote) -> Decimal:
        """Quote's own percentage when it has one, else the configured checkout default."""
        if quote.deposit_type == DepositType.PERCENTAGE.value and quote.deposit_value:
            return Decimal(quote.deposit_value) / Decimal('100')
        return self.checkout_deposit_pct

    def _checkout_request(self, quote: Quote, snapshot: QuoteSnapshot, mode: PaymentMode) -> CheckoutRequest:
        return CheckoutRequest(
            quote_id=quote.id,
            customer_email=snapshot.customer_email,
            mode=mode,
            title=f"Quote {quote.quote_number}",
            total_minor_units=to_minor_units(snapshot.totals.total),
            deposit_pct=self._deposit_pct(quote),
            description=service_label(quote.service_type) or None,
        )

    def _stored_link(self, quote: Quote, request: CheckoutRequest) -> Optional[PaymentLink]:
        """Session already stored for the same mode and amount, if any."""
        if not (quote.payment_session_id and quote.payment_link):
            return None
        if quote.payment_mode != request.mode.value or quote.payment_amount is None:
            return None
        try:
            expected = from_minor_units(self.payment_issuer.amount_for(request))
        except InvalidPaymentRequestError:
            return None
        if Decimal(quote.payment_amount) != expected:
            return None
        return PaymentLink(
            checkout_url=quote.payment_link,
            session_id=quote.payment_session_id,
            amount_collected=expected,
            mode=request.mode,
            reused=True,
        )

    def _issue_payment(self, request: CheckoutRequest, stored: Optional[PaymentLink]) -> Optional[PaymentLink]:
        provider = self.payment_issuer.provider_name
        if stored is not None:
            logger.info(f"[PAYMENT] Reusing session {stored.session_id} for quote {request.quote_id}")
            payment_links_total.labels(provider=provider, outcome='reused').inc()
            return stored
        try:
            link = self.payment_issuer.issue(request)
        except Exception as e:
            # Never fatal: the email goes out with the contact link instead
            logger.warning(f"[PAYMENT] Link failed for quote {request.quote_id} via {provider}: "
                           f"{type(e).__name__}: {e}")
            payment_links_total.labels(provider=provider, outcome='fallback').inc()
            return None
        payment_links_total.labels(provider=provider, outcome='created').inc()
        return link

    def _render_document(self, snapshot: QuoteSnapshot) -> Tuple[Optional[RenderedDocument], Optional[str]]:
        try:
            document = self.renderer.render_with_fallback(snapshot)
        except Exception:
            logger.exception(f"[PDF] No document for quote {snapshot.quote_id}; sending without attachment")
            documents_rendered_total.labels(outcome='unavailable').inc()
            return None, None
        documents_rendered_total.labels(outcome='fallback' if document.fallback else 'full').inc()

        pdf_url = None
        if self.storage is not None:
            try:
                pdf_url = self.storage.upload_document(snapshot.quote_number, document.content, document.filename)
            except Exception as e:
                logger.warning(f"[STORAGE] Upload failed for quote {snapshot.quote_id}: {e}")
        return document, pdf_url

    def _compose(self, snapshot: QuoteSnapshot, mode: PaymentMode, link: Optional[PaymentLink],
                 document: Optional[RenderedDocument]) -> OutboundMessage:
        totals: QuoteTotals = snapshot.totals
        pay_url = link.checkout_url if link else self.contact_url(snapshot.quote_id)
        deposit = None
        if link and mode is PaymentMode.DEPOSIT:
            deposit = money(link.amount_collected)
        context = {
            'business_name': self.business.name,
            'business_phone': self.business.phone,
            'business_email': self.business.email,
            'business_address': self.business.address,
            'customer_name': snapshot.customer_name,
            'quote_number': snapshot.quote_number,
            'service_label': service_label(snapshot.service_type),
            'event_date': long_date(snapshot.event_date) if snapshot.event_date else None,
            'valid_until': long_date(snapshot.valid_until),
            'subtotal': money(totals.subtotal),
            'tax': money(totals.tax) if snapshot.tax_rate_pct > 0 else None,
            'gratuity': money(totals.gratuity) if snapshot.gratuity_rate_pct > 0 else None,
            'total': money(totals.total),
            'deposit': deposit,
            'terms': snapshot.terms or self.business.default_terms or '',
            'message': snapshot.notes or f"Thank you for choosing {self.business.name}! Here is your quote.",
            'pay_url': pay_url,
            'pay_label': 'Pay Deposit' if mode is PaymentMode.DEPOSIT else 'Pay Now',
            'has_payment_link': link is not None,
            'has_attachment': document is not None,
        }
        rendered = render_email('quote', context)
        attachments = ()
        if document is not None:
            attachments = (Attachment(document.filename, document.content, document.content_type),)
        return OutboundMessage(
            recipient=snapshot.customer_email,
            subject=f"Your Quote {snapshot.quote_number} — {self.business.name}",
            html_body=rendered.html,
            text_body=rendered.text,
            cc=self.cc_addresses,
            attachments=attachments,
        )

    def _persist_sent(self, session: Session, quote: Quote, loaded_status: str, totals: QuoteTotals,
                      link: Optional[PaymentLink], pdf_url: Optional[str]) -> bool:
        """Single UPDATE of the quote row; False when another request moved it first."""
        values = {
            'status': QuoteStatus.SENT.value,
            'sent_at': utcnow(),
            'amount': totals.subtotal,
            'deposit_amount': totals.deposit_amount,
            'balance_due': totals.balance_due,
        }
        if link is not None and not link.reused:
            values.update({
                'payment_session_id': link.session_id,
                'payment_link': link.checkout_url,
                'payment_mode': link.mode.value,
                'payment_amount': link.amount_collected,
            })
        if pdf_url:
            values['pdf_url'] = pdf_url
        updated = (
            session.query(Quote)
            .filter(Quote.id == quote.id, Quote.status == loaded_status)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    # -- operations --------------------------------------------------------

    def send_quote(self, session: Session, quote_id: int, payment_mode) -> SendQuoteResult:
        """
        Send a DRAFT or SENT quote to its customer.

        Hard failures (nothing persisted, nothing sent): NotFoundError,
        InvalidTransitionError, MissingCustomerDataError, ValidationError.
        A missing payment link or document only degrades the result.

        Raises:
            NotificationNotSentError: every email provider failed. Failed
                attempts are recorded; the quote row is left untouched.
        """
        try:
            mode = PaymentMode(payment_mode)
        except ValueError:
            raise ValidationError(f"payment_mode must be 'deposit' or 'full', got {payment_mode!r}")

        quote = get_quote(session, quote_id)
        if not quote.can_transition_to(QuoteStatus.SENT):
            raise InvalidTransitionError(quote.status, QuoteStatus.SENT.value, quote.id)
        self._validate_customer(quote)

        totals = price_quote(quote)
        loaded_status = quote.status
        snapshot = QuoteSnapshot.from_quote(quote, totals)
        request = self._checkout_request(quote, snapshot, mode)
        stored = self._stored_link(quote, request)

        logger.info(f"[QUOTE] Sending {quote.quote_number} (id={quote.id}) mode={mode.value} total={totals.total}")

        # Leaving the block waits for both calls, so a started checkout is never abandoned
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='quote-send') as pool:
            payment_future = pool.submit(self._issue_payment, request, stored)
            document_future = pool.submit(self._render_document, snapshot)
        link = payment_future.result()
        document, pdf_url = document_future.result()

        message = self._compose(snapshot, mode, link, document)
        result: DispatchResult = self.dispatcher.dispatch(message)

        pdf_generated = document is not None
        payment_link_created = link is not None
        degradations = []
        if not payment_link_created:
            degradations.append(DEGRADED_PAYMENT_LINK)
        if not pdf_generated:
            degradations.append(DEGRADED_DOCUMENT)

        if not result.sent:
            record_dispatch(session, quote.id, snapshot.customer_email, result, pdf_generated, payment_link_created)
            session.commit()
            quotes_sent_total.labels(result='not_sent').inc()
            logger.error(f"[QUOTE] {quote.quote_number} not sent: all email providers failed")
            raise NotificationNotSentError(
                f"Quote {quote.quote_number} could not be emailed; no provider accepted the message",
                payload={
                    'quote_id': quote.id,
                    'attempts': [asdict(a) for a in result.attempts],
                    'pdf_generated': pdf_generated,
                    'payment_link_created': payment_link_created,
                },
            )

        if not self._persist_sent(session, quote, loaded_status, totals, link, pdf_url):
            logger.warning(f"[QUOTE] {quote.quote_number} changed status while sending; email went out, "
                           f"status left as is")
        record_dispatch(session, quote.id, snapshot.customer_email, result, pdf_generated, payment_link_created)
        session.commit()
        session.refresh(quote)

        outcome = OUTCOME_DEGRADED if degradations else OUTCOME_SENT
        quotes_sent_total.labels(result=outcome).inc()
        logger.info(f"[QUOTE] {quote.quote_number} {outcome} via {result.provider_used}"
                    f"{' (missing: ' + ', '.join(degradations) + ')' if degradations else ''}")

        return SendQuoteResult(
            checkout_url=link.checkout_url if link else self.contact_url(quote.id),
            session_id=link.session_id if link else None,
            email_sent=True,
            pdf_generated=pdf_generated,
            payment_link_created=payment_link_created,
            outcome=outcome,
            degradations=tuple(degradations),
            provider_used=result.provider_used,
            quote_status=quote.status,
        )

    def render_quote_document(self, session: Session, quote_id: int) -> RenderedDocument:
        """
        Render the current quote for preview/download, independent of sending.

        Raises:
            NotFoundError, ValidationError, DocumentUnavailableError
        """
        quote = get_quote(session, quote_id)
        snapshot = QuoteSnapshot.from_quote(quote, price_quote(quote))
        return self.renderer.render_with_fallback(snapshot)
