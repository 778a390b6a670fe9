"""Bearer-token role checks for the image endpoints.

Tokens are issued elsewhere; this module only verifies them and reads the
``role`` claim.
"""

from typing import Callable

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings

security = HTTPBearer(auto_error=False)

EDITORIAL_ROLES = ("admin", "editor")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def decode_token(token: str, settings: Settings) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def require_role(*roles: str) -> Callable[..., dict]:
    def dependency(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        settings: Settings = Depends(get_app_settings),
    ) -> dict:
        if credentials is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token is required")
        try:
            claims = decode_token(credentials.credentials, settings)
        except jwt.InvalidTokenError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token"
            ) from exc
        if claims.get("role") not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return claims

    return dependency


require_editor = require_role(*EDITORIAL_ROLES)
