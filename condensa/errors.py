"""Exceptions raised by condensa."""


class CondensaError(Exception):
    """Base class for condensa errors."""


class SummarizationError(CondensaError):
    """The summarization call could not produce a usable summary."""


class SessionDisposedError(CondensaError):
    """Raised when a disposed session is used."""


class SessionStoreError(CondensaError):
    """The durable session store could not be read or written."""
