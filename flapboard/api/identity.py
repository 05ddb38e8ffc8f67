"""Adapter for the upstream identity provider.

Authentication happens in front of this service; the provider forwards the
caller's stable user id in a trusted header (``IDENTITY_HEADER``).
"""

from __future__ import annotations

from fastapi import Request

from flapboard.api.errors import unauthorized
from flapboard.services.users import UserRepository


def get_users(request: Request) -> UserRepository:
    return request.app.state.users


async def get_current_user_id(request: Request) -> str:
    header = request.app.state.settings.identity_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise unauthorized()
    if not await get_users(request).exists(user_id):
        raise unauthorized()
    return user_id


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
