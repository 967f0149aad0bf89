"""Middleware that assigns request identifiers and guards API payload size.

``RequestIdMiddleware`` gives every incoming request an identifier: the
incoming ``X-Request-ID`` header when the caller (another service, or the
message relay delivering payment events) provides one, a fresh UUIDv4
otherwise. The id is stored on the request, in a context variable read by
the logging filter and the outbound HTTP clients, and echoed on the
response.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body
exceeds ``settings.API_MAX_BYTES`` before any view runs.
"""

import contextvars
import logging
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

logger = logging.getLogger("orders.api")


class RequestIdMiddleware(MiddlewareMixin):
    """Set, propagate and return a per-request identifier.

    Attributes:
        HEADER (str): Incoming header in ``request.META`` casing.
        RESPONSE_HEADER (str): Header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Add the ``X-Request-ID`` header and clear the context variable."""
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        # Worker threads are reused; do not leak the id into the next request
        REQUEST_ID_CTX.set("-")
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        if clen and clen.isdigit() and int(clen) > limit:
            logger.warning("payload too large", extra={"path": request.path, "content_length": int(clen)})
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
