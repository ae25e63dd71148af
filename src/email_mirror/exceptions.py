"""Custom exceptions for Email Mirror."""


class EmailMirrorError(Exception):
    """Base exception for all Email Mirror errors."""


class NotFound(EmailMirrorError):
    """A folder or message is absent after exhausting every candidate."""


class FolderNotFoundError(NotFound):
    """No candidate folder exists (or satisfies the requested predicate)."""


class MessageNotFoundError(NotFound):
    """No candidate folder holds a message with the requested UID."""


class RemoteUnavailable(EmailMirrorError):
    """Exception raised when the IMAP server cannot be reached or used."""


class AuthenticationError(RemoteUnavailable):
    """Exception raised for authentication failures."""


class Inconsistent(EmailMirrorError):
    """Local state changed but the server could not confirm the change."""


class InvalidState(EmailMirrorError):
    """Operation not allowed for the message's current lifecycle state."""


class ConfigurationError(EmailMirrorError):
    """Exception raised for configuration related errors."""


class MailDeliveryError(EmailMirrorError):
    """Exception raised when outbound SMTP delivery fails."""
