"""Logging filter enriching log records with request context.

``RequestIdFilter`` copies the current request id from the ContextVar set
by ``RequestIdMiddleware`` onto every record, so the JSON formatter can
emit ``request_id`` for per-request correlation across the API views, the
orchestrator and the outbound HTTP clients without passing it explicitly.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    Records logged outside a request (management commands, startup) get a
    hyphen ("-") so formatters can always reference ``%(request_id)s``.
    A ``request_id`` passed explicitly through ``extra`` is left untouched.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
