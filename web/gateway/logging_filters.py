"""Logging filter that stamps records with the current request id.

Attach ``RequestIdFilter`` to a handler and reference ``%(request_id)s`` in the
formatter; records emitted outside a request get ``"-"``.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Copy the request id from ``REQUEST_ID_CTX`` onto each record."""

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
