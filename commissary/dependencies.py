from fastapi import HTTPException, Request

from commissary.errors import (
    CommissaryError,
    DuplicateKeyError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from commissary.services.provider_factory import get_catalog_provider

ERROR_STATUS = (
    (NotFoundError, 404),
    (InsufficientStockError, 409),
    (InvalidTransitionError, 409),
    (DuplicateKeyError, 400),
    (ValidationError, 400),
    (UpstreamError, 502),
)


def get_actor(request: Request) -> str:
    actor = (request.headers.get('x-actor') or '').strip()
    return actor or 'api'


def get_provider():
    try:
        return get_catalog_provider()
    except UpstreamError as exc:
        raise http_error(exc) from exc


def http_error(exc: CommissaryError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
