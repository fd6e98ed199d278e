"""Custom exceptions for the quote pipeline."""


class QuotePipelineError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class ValidationError(QuotePipelineError):
    """Bad input: negative amounts, malformed or missing data. Never retried."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class MissingCustomerDataError(ValidationError):
    """Raised when a quote cannot be sent because the customer lacks name or email."""
    def __init__(self, missing_fields, quote_id=None):
        self.missing_fields = list(missing_fields)
        message = f"Customer data missing for quote {quote_id}: {', '.join(self.missing_fields)}"
        super().__init__(message, payload={'missing_fields': self.missing_fields})


class NotFoundError(QuotePipelineError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidTransitionError(QuotePipelineError):
    """Raised when a quote status change violates the lifecycle."""
    def __init__(self, current, target, quote_id=None):
        self.current = current
        self.target = target
        message = f"Quote {quote_id} cannot move from {current} to {target}"
        super().__init__(message, 409, {'current_status': current, 'target_status': target})


class ProviderUnavailableError(QuotePipelineError):
    """A payment or email provider failed at the network/auth level. Recoverable."""
    def __init__(self, message, provider=None, payload=None):
        self.provider = provider
        super().__init__(message, 503, payload)


class InvalidPaymentRequestError(QuotePipelineError):
    """The payment request itself is invalid (amount, email, mode). Never retried."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class RenderFailureError(QuotePipelineError):
    """The full-fidelity document render failed; the fallback may still succeed."""
    def __init__(self, message, payload=None):
        super().__init__(message, 500, payload)


class DocumentUnavailableError(QuotePipelineError):
    """Both the full and the fallback document renders failed."""
    def __init__(self, message, payload=None):
        super().__init__(message, 500, payload)


class UnknownTemplateError(QuotePipelineError):
    """Requested email template does not exist. Never substituted."""
    def __init__(self, template_name):
        self.template_name = template_name
        super().__init__(f"Unknown email template: {template_name!r}", 500)


class ProviderAuthError(QuotePipelineError):
    """An email provider rejected our credentials or token."""
    def __init__(self, message, provider=None):
        self.provider = provider
        super().__init__(message, 503)


class NotificationNotSentError(QuotePipelineError):
    """Every configured notification provider failed; the quote was not advanced."""
    def __init__(self, message, payload=None):
        super().__init__(message, 502, payload)
