# storefront/api/deps.py
from functools import lru_cache

from fastapi import HTTPException, Query

from storefront.domain.errors import StorefrontError
from storefront.domain.owner import Owner, resolve_owner
from storefront.services.lock_service import LockService


def to_http(e: StorefrontError) -> HTTPException:
    # structured detail: {"code": ..., "message": ..., <context>}
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


def get_owner(
    user_id: int | None = Query(None, gt=0, description="Account ID from the auth layer"),
    session_id: str | None = Query(None, min_length=1, max_length=128, description="Anonymous session ID"),
) -> Owner:
    try:
        return resolve_owner(user_id=user_id, session_id=session_id)
    except StorefrontError as e:
        raise to_http(e)


@lru_cache(maxsize=1)
def get_lock_service() -> LockService:
    return LockService()
