"""
Bearer token validation for privileged endpoints.
Access tokens are issued by the identity platform and signed with JWT_SECRET_KEY; the ``sub``
claim carries the caller's user id, and roles are looked up in ``user_roles``.
"""
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from dao.profile_dao import ProfileDAO
from services.db import get_db
from services.security import security_config, SecurityUtils
import logging

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

def decode_access_token(token: str) -> dict:
    """Decode and validate a HS-signed access token. Raises JWTError."""
    return jwt.decode(
        token,
        security_config.jwt_secret_key,
        algorithms=[security_config.jwt_algorithm],
        options={"verify_aud": False}
    )

async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> str:
    """Return the authenticated caller's user id."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        SecurityUtils.log_security_event(
            "missing_authorization_header",
            {"path": request.url.path},
            client_ip=SecurityUtils.get_client_ip(request)
        )
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as e:
        SecurityUtils.log_security_event(
            "jwt_decode_error",
            {"error": str(e)},
            client_ip=SecurityUtils.get_client_ip(request)
        )
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception
    return user_id

def require_roles(*roles: str):
    """Dependency factory: the caller must hold at least one of ``roles``."""

    async def dependency(
        request: Request,
        user_id: str = Depends(get_current_user_id),
        db: AsyncSession = Depends(get_db)
    ) -> str:
        dao = ProfileDAO(db)
        for role in roles:
            if await dao.has_role(user_id, role):
                return user_id

        SecurityUtils.log_security_event(
            "insufficient_role",
            {"user_id": user_id, "required": list(roles), "path": request.url.path},
            client_ip=SecurityUtils.get_client_ip(request)
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied - {' or '.join(roles)} required"
        )

    return dependency
