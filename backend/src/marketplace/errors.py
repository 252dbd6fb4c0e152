"""
Error taxonomy for marketplace operations.

Domain functions raise these; the service layer turns them into structured
results at the operation boundary. Infrastructure faults (anything that is not a
MarketplaceError) are left to propagate.
"""
import functools

from .logging import logger


class ErrorKind:
    VALIDATION = 'validation'
    NOT_FOUND = 'not_found'
    AUTHORIZATION = 'authorization'
    STATE_CONFLICT = 'state_conflict'
    RESOLUTION = 'resolution'


class MarketplaceError(Exception):
    """Base class for recoverable, request-scoped failures."""
    kind = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    kind = ErrorKind.VALIDATION


class NotFoundError(MarketplaceError):
    kind = ErrorKind.NOT_FOUND


class AuthorizationError(MarketplaceError):
    kind = ErrorKind.AUTHORIZATION


class StateConflictError(MarketplaceError):
    kind = ErrorKind.STATE_CONFLICT


class ResolutionError(MarketplaceError):
    kind = ErrorKind.RESOLUTION


def error_result(error: MarketplaceError) -> dict:
    return {
        'success': False,
        'message': error.message,
        'errorKind': error.kind,
    }


def operation(func):
    """
    Recover marketplace errors at the operation boundary.

    The wrapped method returns its own success dict; any MarketplaceError is
    logged and converted to {'success': False, 'message', 'errorKind'}.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except MarketplaceError as e:
            logger.warning(f"{func.__name__} rejected ({e.kind}): {e.message}")
            return error_result(e)
    return wrapper
