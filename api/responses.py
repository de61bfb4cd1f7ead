"""
引擎異常 -> HTTP 回應的轉換，所有 router 共用
"""
from typing import Type

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.exceptions import (
    DuplicateMark,
    InvalidState,
    LockedError,
    MarkingEngineException,
    NotFoundError,
    RelationError,
    ValidationError,
)
from services.lookup_cache import TTLCache

STATUS_CODES = {
    NotFoundError: 404,
    RelationError: 404,
    DuplicateMark: 409,
    LockedError: 409,
    InvalidState: 400,
    ValidationError: 422,
}


def status_for(exc: MarkingEngineException) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 400


def failure(exc: MarkingEngineException, result_model: Type[BaseModel], field: str = "error") -> JSONResponse:
    """success=False 的結果物件，搭配對應的 status code 回傳"""
    result = result_model(success=False, **{field: str(exc)})
    return JSONResponse(status_code=status_for(exc), content=result.model_dump(mode="json"))


def http_error(exc: MarkingEngineException) -> HTTPException:
    return HTTPException(status_code=status_for(exc), detail=str(exc))


def get_lookup_cache(request: Request) -> TTLCache:
    """FastAPI dependency：應用程式的 lookup cache（在 main.lifespan 建立）"""
    return request.app.state.lookup_cache
