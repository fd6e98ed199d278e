"""
Email delivery providers.

Each provider takes an OutboundMessage (see notification_service) and returns
True when the provider accepted it. Transport problems surface as False or an
exception; ProviderAuthError means credentials were rejected and any cached
token should be dropped.
"""
import base64
import logging
import smtplib
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests
from flask_mail import Mail, Message

from app.exceptions import ProviderAuthError
from app.services.token_cache import AccessTokenCache

logger = logging.getLogger(__name__)

mail = Mail()

GRAPH_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _cc_without_recipient(message) -> List[str]:
    """CC list minus the primary recipient (SendGrid rejects duplicates)."""
    to = message.recipient.strip().lower()
    seen = set()
    cc = []
    for address in message.cc or ():
        key = address.strip().lower()
        if key and key != to and key not in seen:
            seen.add(key)
            cc.append(address.strip())
    return cc


class EmailProvider(ABC):
    """A single link of the notification provider chain."""

    name = 'abstract'

    @abstractmethod
    def send(self, message) -> bool:
        ...

    def invalidate_credentials(self) -> None:
        """Forget cached credentials so the next send re-authenticates."""


class GraphMailProvider(EmailProvider):
    """Microsoft 365 mailbox via Graph `sendMail`, app-only (client credentials) auth."""

    name = 'graph'

    def __init__(self, tenant_id: str, client_id: str, client_secret: str, from_email: str,
                 timeout: int = 10, http=None):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.from_email = from_email
        self.timeout = timeout
        self.http = http or requests.Session()
        self.tokens = AccessTokenCache(self._fetch_token, name='graph token')

    def _fetch_token(self):
        response = self.http.post(
            GRAPH_TOKEN_URL.format(tenant=self.tenant_id),
            data={
                'grant_type': 'client_credentials',
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'scope': GRAPH_SCOPE,
            },
            timeout=self.timeout,
        )
        if response.status_code in (400, 401, 403):
            raise ProviderAuthError(f"Graph token request rejected: HTTP {response.status_code}", provider=self.name)
        response.raise_for_status()
        data = response.json()
        return data['access_token'], int(data.get('expires_in', 3600))

    def _payload(self, message) -> Dict:
        graph_message = {
            'subject': message.subject,
            'body': {'contentType': 'HTML', 'content': message.html_body},
            'toRecipients': [{'emailAddress': {'address': message.recipient}}],
        }
        cc = _cc_without_recipient(message)
        if cc:
            graph_message['ccRecipients'] = [{'emailAddress': {'address': a}} for a in cc]
        if message.attachments:
            graph_message['attachments'] = [{
                '@odata.type': '#microsoft.graph.fileAttachment',
                'name': a.filename,
                'contentType': a.content_type,
                'contentBytes': base64.b64encode(a.content).decode('ascii'),
            } for a in message.attachments]
        return {'message': graph_message, 'saveToSentItems': True}

    def send(self, message) -> bool:
        token = self.tokens.get_token()
        response = self.http.post(
            GRAPH_SEND_URL.format(sender=self.from_email),
            json=self._payload(message),
            headers={'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'},
            timeout=self.timeout,
        )
        if response.status_code in (401, 403):
            raise ProviderAuthError(f"Graph rejected token: HTTP {response.status_code}", provider=self.name)
        if response.status_code == 202:
            return True
        logger.warning(f"[EMAIL] Graph sendMail returned HTTP {response.status_code}: {response.text[:200]}")
        return False

    def invalidate_credentials(self) -> None:
        self.tokens.invalidate()


class SendGridProvider(EmailProvider):
    """SendGrid v3 transactional API."""

    name = 'sendgrid'

    def __init__(self, api_key: str, from_email: str, from_name: Optional[str] = None,
                 timeout: int = 10, http=None):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self.http = http or requests.Session()

    def _payload(self, message) -> Dict:
        personalization = {'to': [{'email': message.recipient}]}
        cc = _cc_without_recipient(message)
        if cc:
            personalization['cc'] = [{'email': a} for a in cc]
        sender = {'email': self.from_email}
        if self.from_name:
            sender['name'] = self.from_name
        content = []
        if message.text_body:
            content.append({'type': 'text/plain', 'value': message.text_body})
        content.append({'type': 'text/html', 'value': message.html_body})
        payload = {
            'personalizations': [personalization],
            'from': sender,
            'subject': message.subject,
            'content': content,
        }
        if message.attachments:
            payload['attachments'] = [{
                'content': base64.b64encode(a.content).decode('ascii'),
                'filename': a.filename,
                'type': a.content_type,
                'disposition': 'attachment',
            } for a in message.attachments]
        return payload

    def send(self, message) -> bool:
        response = self.http.post(
            SENDGRID_SEND_URL,
            json=self._payload(message),
            headers={'Authorization': f'Bearer {self.api_key}', 'Content-Type': 'application/json'},
            timeout=self.timeout,
        )
        if response.status_code in (401, 403):
            raise ProviderAuthError(f"SendGrid rejected API key: HTTP {response.status_code}", provider=self.name)
        if 200 <= response.status_code < 300:
            return True
        logger.warning(f"[EMAIL] SendGrid returned HTTP {response.status_code}: {response.text[:200]}")
        return False


class SmtpMailProvider(EmailProvider):
    """Authenticated SMTP relay through Flask-Mail. Needs an app context to send."""

    name = 'smtp'

    def __init__(self, mail: Mail, sender: Optional[str] = None):
        self.mail = mail
        self.sender = sender

    def send(self, message) -> bool:
        msg = Message(
            subject=message.subject,
            recipients=[message.recipient],
            cc=_cc_without_recipient(message) or None,
            body=message.text_body,
            html=message.html_body,
            sender=self.sender,
        )
        for attachment in message.attachments or ():
            msg.attach(attachment.filename, attachment.content_type, attachment.content)
        try:
            self.mail.send(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise ProviderAuthError(f"SMTP authentication failed: {e.smtp_code}", provider=self.name)
        return True
