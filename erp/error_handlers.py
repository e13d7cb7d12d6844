from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from erp.errors import ErpError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def error_body(exc: ErpError) -> dict:
    return {'error': exc.code, 'message': exc.message}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ErpError)
    async def erp_error_handler(request: Request, exc: ErpError):
        if isinstance(exc, StorageError):
            logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
        return JSONResponse(error_body(exc), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
        message = first.get('msg', 'Invalid request')
        if location:
            message = f'{location}: {message}'
        return JSONResponse(error_body(ValidationError(message)), status_code=ValidationError.status_code)
