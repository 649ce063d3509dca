from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.auth.schemas import CurrentUser
from app.auth.security import decode_access_token
from app.core.enums import UserRole


# Tokens come from the identity provider; tokenUrl only documents where to get one.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve {user id, role, school} from the identity provider's access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized: Please log in",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("user_id") or payload.get("sub")
    role_name = payload.get("role")
    if not user_id_str or role_name not in {r.value for r in UserRole}:
        raise credentials_exception

    try:
        user_id = UUID(str(user_id_str))
    except ValueError:
        raise credentials_exception

    school_id: Optional[UUID] = None
    school_id_str = payload.get("school_id")
    if school_id_str:
        try:
            school_id = UUID(str(school_id_str))
        except ValueError:
            raise credentials_exception
    # Every role below super admin is scoped to a school
    if school_id is None and role_name != UserRole.SUPER_ADMIN.value:
        raise credentials_exception

    return CurrentUser(id=user_id, role=role_name, school_id=school_id)
