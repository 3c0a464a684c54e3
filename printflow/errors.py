from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from printflow.logging_config import get_logger

logger = get_logger('errors')


class PrintflowError(Exception):
    code = 'error'
    status_code = 400

    def __init__(self, message: str, *, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(PrintflowError, ValueError):
    code = 'validation_error'
    status_code = 422

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls(message, details=[{'field': field, 'message': message}])


class InvalidTransitionError(ValidationError):
    code = 'invalid_transition'
    status_code = 409


class NotFoundError(PrintflowError, LookupError):
    code = 'not_found'
    status_code = 404


class SequenceExhaustedError(PrintflowError):
    """A numbering scope has no values left; needs a new scope, never a retry."""

    code = 'sequence_exhausted'
    status_code = 409


class NumberAllocationConflictError(PrintflowError):
    code = 'number_conflict'
    status_code = 503


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PrintflowError)
    async def printflow_error_handler(request: Request, exc: PrintflowError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            'request_failed',
            extra={'path': request.url.path, 'error_code': exc.code, 'error_message': exc.message},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={'error': exc.message, 'code': exc.code, 'details': exc.details},
        )
