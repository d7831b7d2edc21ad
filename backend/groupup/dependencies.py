"""
GroupUp Backend - Request Dependencies
======================================

What:  FastAPI dependencies that hand each route its caller and its stores.

    get_current_actor   UserActor for a live session, otherwise ANONYMOUS
    require_user        same, but 401 for anonymous callers
    get_spatial_store   the SpatialStore created in the application lifespan

Session lookup:
    The auth provider issues an opaque token, sent either as the session
    cookie (settings.session_cookie_name) or as `Authorization: Bearer ...`.
    A token that is unknown or past `expires_at` is treated as no session.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupup.config import settings
from groupup.database import get_db_session
from groupup.exceptions import AuthenticationError, SpatialStoreUnavailableError
from groupup.models.actor import ANONYMOUS, Actor, UserActor
from groupup.models.common import utcnow
from groupup.models.user import AuthSession, User
from groupup.services.spatial_store import SpatialStore

logger = logging.getLogger(__name__)


def _session_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()

    cookie = request.cookies.get(settings.session_cookie_name)
    if cookie:
        # Signed cookies carry "<token>.<signature>"
        return cookie.split(".", 1)[0]
    return None


async def get_current_actor(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> Actor:
    token = _session_token(request)
    if token is None:
        return ANONYMOUS

    result = await db.execute(
        select(User.id, User.email, User.name)
        .join(AuthSession, AuthSession.user_id == User.id)
        .where(AuthSession.token == token, AuthSession.expires_at > utcnow())
    )
    row = result.first()
    if row is None:
        logger.debug("Session token not found or expired; treating caller as anonymous")
        return ANONYMOUS
    return UserActor(user_id=row.id, email=row.email, name=row.name)


async def require_user(actor: Actor = Depends(get_current_actor)) -> UserActor:
    if not isinstance(actor, UserActor):
        raise AuthenticationError(message="Unauthorized")
    return actor


def get_spatial_store(request: Request) -> SpatialStore:
    store = getattr(request.app.state, "spatial_store", None)
    if store is None:
        raise SpatialStoreUnavailableError(message="Spatial store was not started")
    return store
