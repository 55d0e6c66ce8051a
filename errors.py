import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Raised by the domain layer when a value breaks a model constraint."""


class ConflictError(Exception):
    """The row changed since it was read."""


def error_body(status_code: int, message: str, errors: list | None = None) -> dict:
    return {
        "statusCode": status_code,
        "message": message,
        "success": False,
        "errors": errors or [],
    }


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        error_body(exc.status_code, str(exc.detail)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    message = "Invalid input data. " + ". ".join(e["message"] for e in errors)
    return JSONResponse(jsonable_encoder(error_body(400, message, errors)), status_code=400)


async def domain_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(error_body(400, str(exc)), status_code=400)


async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(error_body(409, str(exc)), status_code=409)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(error_body(500, "Something went wrong"), status_code=500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, domain_validation_handler)
    app.add_exception_handler(ConflictError, conflict_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
