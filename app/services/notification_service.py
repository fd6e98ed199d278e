"""
Notification dispatch over an ordered provider chain.

The chain is built once from config (build_provider_chain) and handed to the
dispatcher. Dispatch tries providers in order and stops at the first one that
accepts the message. Exhausting the chain is reported as a result with
sent=False, never raised; the caller decides whether that is fatal.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from app.exceptions import ProviderAuthError
from app.metrics import notification_attempts_total
from app.services.email_providers import (
    EmailProvider, GraphMailProvider, SendGridProvider, SmtpMailProvider
)
from app.services.email_templates import render_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = 'application/pdf'


@dataclass(frozen=True)
class OutboundMessage:
    recipient: str
    subject: str
    html_body: str
    text_body: str = ''
    cc: Tuple[str, ...] = ()
    attachments: Tuple[Attachment, ...] = ()


@dataclass(frozen=True)
class DispatchAttempt:
    provider: str
    attempt_number: int
    sent: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DispatchResult:
    sent: bool
    provider_used: Optional[str] = None
    attempts: Tuple[DispatchAttempt, ...] = ()

    @property
    def failed_attempts(self) -> List[DispatchAttempt]:
        return [a for a in self.attempts if not a.sent]


class NotificationDispatcher:
    """Sends messages through `providers`, first success wins."""

    def __init__(self, providers: Sequence[EmailProvider]):
        self.providers = tuple(providers)

    def dispatch(self, message: OutboundMessage) -> DispatchResult:
        if not self.providers:
            logger.warning(f"[EMAIL] No email provider configured; message to {message.recipient} not sent "
                           f"(subject={message.subject!r})")
            return DispatchResult(sent=False)

        attempts = []
        for number, provider in enumerate(self.providers, start=1):
            error = None
            try:
                sent = bool(provider.send(message))
                if not sent:
                    error = f"{provider.name} did not accept the message"
            except ProviderAuthError as e:
                sent = False
                error = e.message
                logger.warning(f"[EMAIL] Auth failure on {provider.name} (attempt {number}); dropping cached credentials")
                provider.invalidate_credentials()
            except Exception as e:
                # One broken provider must not stop the chain
                sent = False
                error = f"{type(e).__name__}: {e}"
                logger.exception(f"[EMAIL] {provider.name} raised on attempt {number} to {message.recipient}")

            attempts.append(DispatchAttempt(provider=provider.name, attempt_number=number, sent=sent, error=error))
            notification_attempts_total.labels(provider=provider.name, status='sent' if sent else 'failed').inc()

            if sent:
                logger.info(f"[EMAIL] Sent to {message.recipient} via {provider.name} (attempt {number})")
                return DispatchResult(sent=True, provider_used=provider.name, attempts=tuple(attempts))
            logger.warning(f"[EMAIL] {provider.name} failed on attempt {number}: {error}")

        logger.error(f"[EMAIL] All {len(self.providers)} providers failed for {message.recipient}")
        return DispatchResult(sent=False, attempts=tuple(attempts))

    def dispatch_template(
        self,
        template: str,
        recipient: str,
        subject: str,
        context: Mapping[str, Any],
        cc: Sequence[str] = (),
        attachments: Sequence[Attachment] = (),
    ) -> DispatchResult:
        """Render a registered template and dispatch it. Unknown names raise UnknownTemplateError."""
        rendered = render_email(template, context)
        return self.dispatch(OutboundMessage(
            recipient=recipient,
            subject=subject,
            html_body=rendered.html,
            text_body=rendered.text,
            cc=tuple(cc),
            attachments=tuple(attachments),
        ))


def build_provider_chain(config, mail=None) -> List[EmailProvider]:
    """
    Build the ordered provider list from config: Graph, SendGrid, SMTP.

    A provider is included only when its credentials are present.

    Args:
        config: Flask config (or any mapping with the same keys).
        mail: Initialised flask_mail.Mail; SMTP is skipped without it.
    """
    providers: List[EmailProvider] = []
    timeout = int(config.get('EMAIL_TIMEOUT_SECONDS', 10))

    if config.get('O365_TENANT_ID') and config.get('O365_CLIENT_ID') and config.get('O365_CLIENT_SECRET'):
        providers.append(GraphMailProvider(
            tenant_id=config['O365_TENANT_ID'],
            client_id=config['O365_CLIENT_ID'],
            client_secret=config['O365_CLIENT_SECRET'],
            from_email=config.get('O365_FROM_EMAIL'),
            timeout=timeout,
        ))

    if config.get('SENDGRID_API_KEY'):
        providers.append(SendGridProvider(
            api_key=config['SENDGRID_API_KEY'],
            from_email=config.get('SENDGRID_FROM_EMAIL'),
            from_name=config.get('SENDGRID_FROM_NAME'),
            timeout=timeout,
        ))

    if mail is not None and config.get('MAIL_SERVER') and config.get('MAIL_USERNAME'):
        providers.append(SmtpMailProvider(mail, sender=config.get('MAIL_DEFAULT_SENDER')))

    logger.info(f"[EMAIL] Provider chain: {[p.name for p in providers] or 'none (log only)'}")
    return providers
