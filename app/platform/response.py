from typing import Any, Dict, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """
    Single source of truth for ALL API responses.

    Success (< 400):  {"success": true, "data": ..., "meta": ...}
    Failure (>= 400): {"success": false, "error": "<Code>", "message": "..."}
    """
    success = status_code < 400

    content: Dict[str, Any] = {"success": success}
    if success:
        content["data"] = jsonable_encoder(data) if data is not None else {}
    else:
        content["error"] = error or "Error"
        content["message"] = message or "Request failed"
        if data is not None:
            content["details"] = jsonable_encoder(data)
    if message and success:
        content["message"] = message
    if meta:
        content["meta"] = jsonable_encoder(meta)

    return JSONResponse(status_code=status_code, content=content)
