"""
Admin authentication dependencies for protecting admin routes.

Admins are regular users whose row carries role == admin.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from orchestrator.api.dependencies import AuthenticatedUser, get_current_user
from orchestrator.db.models import User
from orchestrator.db.session import get_write_db
from orchestrator.exceptions import AuthenticationError, AuthorizationError
from orchestrator.models.api import UserRole

logger = get_logger(__name__)


async def require_admin_role(
    identity: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> User:
    """
    Require an authenticated user with the admin role.

    Raises:
        AuthenticationError: If the token's user does not exist
        AuthorizationError: If the user is not an admin

    Returns:
        User: The authenticated admin user
    """
    user = await db.get(User, identity.user_id)
    if user is None:
        logger.warning("admin_auth_user_not_found", user_id=identity.user_id)
        raise AuthenticationError("User not found")

    if user.role != UserRole.ADMIN:
        logger.warning(
            "admin_auth_insufficient_role",
            user_id=user.id,
            email=user.email,
            role=user.role.value,
        )
        raise AuthorizationError("admin")

    logger.debug("admin_auth_success", user_id=user.id, email=user.email)
    return user
