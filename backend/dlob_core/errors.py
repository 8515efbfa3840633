from __future__ import annotations


class DlobError(Exception):
    """Base class for errors raised by the club domain and its store."""


class ValidationError(DlobError, ValueError):
    """Malformed input: bad amount, missing field, unknown status."""


class NotFound(DlobError, LookupError):
    """A referenced member, payment or match does not exist."""


class InvalidState(DlobError, ValueError):
    """An operation was attempted on a record not in the required state."""


class Forbidden(DlobError):
    """The caller is not allowed to act on the record."""


class UpstreamUnavailable(DlobError, RuntimeError):
    """Supabase, Supabase Auth or the chat provider could not be reached."""
