from rest_framework.response import Response

from core.exceptions import MarketplaceError, PollTimeout


def error_response(exc: MarketplaceError) -> Response:
    """Translate a service error into the API's ``{"detail": ...}`` shape."""
    body = {"detail": exc.message or str(exc)}
    if isinstance(exc, PollTimeout):
        body["status"] = "PENDING"
        body["reference_number"] = exc.reference_number
    return Response(body, status=exc.status_code)
