import math
from typing import Any, Sequence

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(data: Any, message: str = "Success", status_code: int = 200) -> JSONResponse:
    """
    Wrap a payload in the standard envelope:
        {"statusCode": 200, "data": ..., "message": "...", "success": true}
    """
    return JSONResponse(
        {
            "statusCode": status_code,
            "data": jsonable_encoder(data),
            "message": message,
            "success": status_code < 400,
        },
        status_code=status_code,
    )


def paginated(items: Sequence[Any], total: int, page: int, limit: int) -> dict:
    return {
        "items": list(items),
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / limit) if limit else 0,
            "totalItems": total,
        },
    }
