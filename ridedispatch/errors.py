"""Error taxonomy for ride operations.

Every public operation fails with a subclass of RideError. The API layer turns
these into ``{"error": kind, "detail": message}`` bodies; anything that is not
a RideError is mapped here before it can leak storage details to a caller.
"""
import functools
import logging

import httpx
from postgrest.exceptions import APIError

logger = logging.getLogger(__name__)


class RideError(Exception):
    kind = "Internal"
    status_code = 500

    def __init__(self, message: str = "An internal error occurred processing the ride."):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class InvalidInput(RideError):
    kind = "InvalidInput"
    status_code = 400


class OutstandingDebt(RideError):
    kind = "OutstandingDebt"
    status_code = 402


class InsufficientBalance(RideError):
    kind = "InsufficientBalance"
    status_code = 402


class NotFound(RideError):
    kind = "NotFound"
    status_code = 404


class Forbidden(RideError):
    kind = "Forbidden"
    status_code = 403


class Unavailable(RideError):
    kind = "Unavailable"
    status_code = 409


class TooFarFromPickup(RideError):
    kind = "TooFarFromPickup"
    status_code = 422


class UpstreamUnavailable(RideError):
    kind = "UpstreamUnavailable"
    status_code = 503


class Internal(RideError):
    kind = "Internal"
    status_code = 500


def looks_like_html(text: str) -> bool:
    """Degraded gateways in front of the store answer with an HTML error page."""
    lowered = (text or "").lower()
    return "<!doctype html" in lowered or "<html" in lowered


def translate_error(err: Exception, context: str) -> RideError:
    """Map an arbitrary exception raised inside ``context`` to a RideError."""
    if isinstance(err, RideError):
        return err

    message = getattr(err, "message", None) or str(err)
    if looks_like_html(message):
        logger.error("%s: store returned HTML instead of JSON, service may be down", context)
        return UpstreamUnavailable("Database service is temporarily unavailable. Please try again later.")

    if isinstance(err, (APIError, httpx.HTTPError, ConnectionError, TimeoutError)):
        logger.error("%s: upstream failure: %s", context, message)
        return UpstreamUnavailable("A backing service is temporarily unavailable. Please try again later.")

    logger.exception("Crash in %s", context, exc_info=err)
    return Internal()


def translate_errors(context: str):
    """Decorator: re-raise anything escaping the wrapped operation as a RideError."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as err:
                translated = translate_error(err, context)
                if translated is err:
                    raise
                raise translated from err
        return wrapper
    return decorator
