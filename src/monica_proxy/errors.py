"""Exceptions raised while translating an upstream feed."""


class TranslationError(Exception):
    """Base class for errors that abort a translation session."""


class ReadError(TranslationError):
    """The upstream byte stream failed for a reason other than exhaustion."""


class WriteError(TranslationError):
    """Writing or flushing to the client destination failed."""


class UpstreamError(Exception):
    """The upstream service answered with a non-200 status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"upstream returned {status_code}: {body}")
