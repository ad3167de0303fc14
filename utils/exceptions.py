"""Exception hierarchy for the vacation responder."""


class VacationResponderError(Exception):
    """Base exception for all responder errors."""


class ConfigError(VacationResponderError):
    """Raised when local configuration is missing or malformed."""


class AuthError(VacationResponderError):
    """Raised when Gmail authorization cannot be completed."""


class MailboxError(VacationResponderError):
    """Raised when a Gmail API call fails."""


class TransientRemoteError(MailboxError):
    """Raised for network failures and retryable HTTP statuses."""


class NotFoundError(MailboxError):
    """Raised when a message or label no longer exists."""
