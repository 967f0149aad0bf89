import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger("orders.api")


def health_view(_request):
    """Report whether the order store database answers a trivial query."""
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unreachable")
        db_ok = False

    return JsonResponse(
        {"ok": db_ok, "components": {"db": {"ok": db_ok}}},
        status=200 if db_ok else 503,
    )
