"""
CareNote Backend — FastAPI Dependencies
=========================================

What:  Request-scoped dependencies for authentication and authorization.

    get_current_user             Bearer JWT → active User        (401)
    get_access_context           User → AccessContext
    require_active_subscription  billing owner has access         (402)
    require_super_admin          elevated capability              (403)
    require_tenant_admin         owner or can_invite              (403)
    require_owner                tenant owner / solo subscriber   (403)

Usage in a route:
    @router.get("/sessions")
    async def list_sessions(
        ctx: AccessContext = Depends(require_active_subscription),
        db: AsyncSession = Depends(get_db_session),
    ): ...
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from carenote.authorization import AccessContext, check_subscription_access
from carenote.database import get_db_session
from carenote.exceptions import AuthenticationError, ForbiddenError
from carenote.models.user import User
from carenote.security import decode_token

# auto_error=False so a missing header goes through our 401 handler
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(message="Access token required")

    user_id = decode_token(credentials.credentials)
    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationError(message="Invalid token")
    if not user.is_active:
        raise AuthenticationError(message="Account is deactivated", context={"reason": "inactive"})

    # Read by RequestLoggingMiddleware
    request.state.user_id = str(user.id)
    return user


async def get_access_context(user: User = Depends(get_current_user)) -> AccessContext:
    return AccessContext.for_user(user)


async def require_active_subscription(
    ctx: AccessContext = Depends(get_access_context),
    db: AsyncSession = Depends(get_db_session),
) -> AccessContext:
    await check_subscription_access(db, ctx)
    return ctx


async def require_super_admin(ctx: AccessContext = Depends(get_access_context)) -> AccessContext:
    if not ctx.is_elevated:
        raise ForbiddenError(message="Super admin access required")
    return ctx


async def require_tenant_admin(user: User = Depends(get_current_user)) -> User:
    if not (user.is_owner or user.can_invite):
        raise ForbiddenError(message="Only the clinic administrator can manage members")
    return user


async def require_owner(user: User = Depends(get_current_user)) -> User:
    if not user.is_owner:
        raise ForbiddenError(message="Only the account owner can manage the subscription")
    return user
