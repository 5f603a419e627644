"""Socket authentication.

A connection is bound to a verified profile before it may touch any room.
The token is taken from the ``token`` query parameter, then from an
``Authorization: Bearer`` header, and finally from a first frame
``{"type": "authenticate", "token": ...}`` that must arrive within the
configured timeout. Every failure raises :class:`AuthenticationError`; the
caller reports it and closes the socket.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from .database_sessions import extract_bearer_token
from .errors import AuthenticationError
from .room_types import UserProfile
from .stores import IdentityVerifier, ProfileStore

logger = logging.getLogger(__name__)


def token_from_handshake(websocket: WebSocket) -> str | None:
    query_token = (websocket.query_params.get("token") or "").strip()
    if query_token:
        return extract_bearer_token(query_token)
    return extract_bearer_token(websocket.headers.get("authorization"))


async def read_token_frame(websocket: WebSocket, timeout: float) -> str:
    try:
        raw = await asyncio.wait_for(websocket.receive_text(), timeout=timeout)
    except asyncio.TimeoutError:
        raise AuthenticationError("Authentication timed out", code="AUTH_TIMEOUT") from None
    except WebSocketDisconnect:
        raise AuthenticationError(
            "Client disconnected before authenticating",
            code="AUTH_DISCONNECTED",
        ) from None

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        raise AuthenticationError("Invalid authentication payload", code="INVALID_AUTH_PAYLOAD") from None

    if not isinstance(payload, dict) or payload.get("type") != "authenticate":
        raise AuthenticationError("Expected an authenticate message", code="INVALID_AUTH_PAYLOAD")

    token = extract_bearer_token(str(payload.get("token") or ""))
    if not token:
        raise AuthenticationError("Authentication token required", code="AUTH_TOKEN_MISSING")
    return token


async def authenticate_connection(
    websocket: WebSocket,
    identities: IdentityVerifier,
    profiles: ProfileStore,
    *,
    timeout: float,
) -> UserProfile:
    token = token_from_handshake(websocket)
    if token is None:
        token = await read_token_frame(websocket, timeout)

    try:
        identity = await identities.verify(token)
    except Exception:
        logger.exception("Identity verification failed")
        raise AuthenticationError("Authentication service unavailable", code="AUTH_UNAVAILABLE") from None
    if identity is None:
        raise AuthenticationError("Invalid or expired token", code="AUTH_TOKEN_INVALID")

    user_id = str(identity.get("user_id") or "")
    try:
        profile = await profiles.get_profile(user_id) if user_id else None
    except Exception:
        logger.exception("Profile lookup failed")
        raise AuthenticationError("Authentication service unavailable", code="AUTH_UNAVAILABLE") from None
    if profile is None:
        raise AuthenticationError("User not found", code="AUTH_USER_NOT_FOUND")
    return profile
