"""Retired ``/api/v1/messages`` endpoints; every call answers 410 Gone."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from site_manager.common.exceptions import BASE_ERROR_URI

router = APIRouter(tags=["legacy"])

_GONE_BODY = {
    "type": f"{BASE_ERROR_URI}/gone",
    "title": "Gone",
    "status": 410,
    "detail": "The messages API has been retired. Use /api/v1/conversations instead.",
    "replacement": "/api/v1/conversations",
}


@router.api_route(
    "/api/v1/messages",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
@router.api_route(
    "/api/v1/messages/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def messages_gone(path: str = ""):
    return JSONResponse(status_code=410, content=_GONE_BODY, media_type="application/problem+json")
