# ============================================================
# app/core/security.py
#
# Bearer token verification for the fee endpoints.
#
# Tokens are issued by the surrounding auth service and carry
# user_id, school_id and role. We only verify them here and turn
# them into a CurrentUser; the school_id in the token is what
# scopes every SchoolDB handle an endpoint builds.
#
#   Request → get_current_user() verifies JWT
#           → CurrentUser (school_id, role)
#           → optional require_roles() checks role
# ============================================================

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel

from app.core.config import settings

# Reads: Authorization: Bearer <token>
bearer_scheme = HTTPBearer()


class TokenData(BaseModel):
    """Claims we rely on inside the JWT."""
    user_id: str
    school_id: str
    role: str                   # school_admin | bursar | staff
    email: Optional[str] = None
    full_name: Optional[str] = None


class CurrentUser(BaseModel):
    user_id: str
    school_id: str
    role: str
    email: Optional[str] = None
    full_name: Optional[str] = None


def create_access_token(data: TokenData, expires_minutes: Optional[int] = None) -> str:
    """
    Sign an access token. The auth service owns login; this exists
    for service-to-service calls and tests.
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(
        minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {
        **data.model_dump(),
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> TokenData:
    """Decode and verify a JWT. Raises 401 if invalid, expired or not an access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise credentials_exception
    if payload.get("type") != "access":
        raise credentials_exception
    try:
        return TokenData(**payload)
    except ValueError:
        raise credentials_exception


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
    """
    Add to any endpoint:
        async def my_endpoint(user: CurrentUser = Depends(get_current_user)):
    """
    token_data = verify_token(credentials.credentials)
    return CurrentUser(**token_data.model_dump())


def require_roles(*allowed_roles: str):
    """
    Dependency factory enforcing a role:
        user: CurrentUser = Depends(require_roles("school_admin", "bursar"))
    """
    async def check_role(
        current_user: CurrentUser = Depends(get_current_user)
    ) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {' or '.join(allowed_roles)}",
            )
        return current_user
    return check_role
