from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole


def require_roles(*roles: UserRole):
    """
    Dependency factory restricting an endpoint to the given session roles.

    Example:
        current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT))
    """
    allowed = {r.value if isinstance(r, UserRole) else r for r in roles}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker


require_student = require_roles(UserRole.STUDENT)
require_admin = require_roles(UserRole.SUPER_ADMIN, UserRole.SCHOOL_ADMIN)
require_school_admin = require_roles(UserRole.SCHOOL_ADMIN)
require_event_author = require_roles(UserRole.SUPER_ADMIN, UserRole.SCHOOL_ADMIN, UserRole.TEACHER)
