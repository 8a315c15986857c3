"""Exceptions raised by the mail archive indexer and session registry."""


class MailArchiveError(Exception):
    """Base exception for all mail archive errors."""


class ArchiveOpenError(MailArchiveError):
    """Raised when an archive cannot be read or indexed; no session is created."""


class InvalidSessionError(MailArchiveError):
    """Raised for operations against an unknown or closed session id."""


class MessageNotFoundError(MailArchiveError):
    """Raised for malformed or unknown message ids and attachment indexes."""


class MessageDecodeError(MailArchiveError):
    """Raised when the MIME decoder rejects a message byte range."""
