# api/responses.py
import os
from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from catalog.results import Ok, NotFound, Failure

load_dotenv()
EXPOSE_ERROR_DETAILS = os.getenv("EXPOSE_ERROR_DETAILS", "true").lower() in (
    "1",
    "true",
    "yes",
)

MSG_SUCCESS = "success"
MSG_ERROR = "Có lỗi xảy ra!"
MSG_BOOK_NOT_FOUND = "Không tìm thấy sách!"
MSG_BOOK_ID_NOT_FOUND = "Không tìm thấy sách có id:{id}"


def encode(data):
    """Make Mongo documents JSON-safe (ObjectId -> str, datetime -> ISO 8601)."""
    return jsonable_encoder(data, custom_encoder={ObjectId: str})


def envelope(result, mutation=False):
    """
    Map a service Result to the uniform response envelope.

    This is the only place where results become HTTP status codes.

    Args:
        result (Ok | NotFound | Failure): Outcome of a catalog operation
        mutation (bool): True for create/update/delete, which report
            NotFound and Failure as 400 instead of 200

    Returns:
        JSONResponse: {message, error, data?, count?, pagination?}
    """
    if isinstance(result, Ok):
        body = {"message": MSG_SUCCESS, "error": 0, "data": encode(result.data)}
        if result.count is not None:
            body["count"] = result.count
        if result.pagination is not None:
            body["pagination"] = result.pagination
        return JSONResponse(body, status_code=200)

    if isinstance(result, NotFound):
        if mutation:
            message = MSG_BOOK_ID_NOT_FOUND.format(id=result.key)
            return JSONResponse(
                {"message": message, "error": 1, "data": None}, status_code=400
            )
        return JSONResponse(
            {"message": MSG_BOOK_NOT_FOUND, "error": 1, "data": encode(result.empty)},
            status_code=200,
        )

    if isinstance(result, Failure):
        message = f"{MSG_ERROR} {result.reason}" if EXPOSE_ERROR_DETAILS else MSG_ERROR
        return JSONResponse(
            {"message": message, "error": 1}, status_code=400 if mutation else 200
        )

    raise TypeError(f"Unexpected result type: {type(result).__name__}")
