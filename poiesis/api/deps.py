"""Shared API dependencies: caller identity, request hints, error mapping."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from poiesis.core.assembler import RequestHints
from poiesis.core.auth import User, authenticate, require_admin
from poiesis.core.errors import ChatError


def http_error(error: ChatError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_type: str | None = Header(default=None),
) -> User:
    """Identity asserted by the gateway; 401 when absent."""
    try:
        return authenticate(x_user_id, x_user_type)
    except ChatError as e:
        raise http_error(e)


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    try:
        return require_admin(user)
    except ChatError as e:
        raise http_error(e)


async def get_request_hints(
    x_geo_latitude: str | None = Header(default=None),
    x_geo_longitude: str | None = Header(default=None),
    x_geo_city: str | None = Header(default=None),
    x_geo_country: str | None = Header(default=None),
) -> RequestHints:
    return RequestHints(
        latitude=x_geo_latitude,
        longitude=x_geo_longitude,
        city=x_geo_city,
        country=x_geo_country,
    )
