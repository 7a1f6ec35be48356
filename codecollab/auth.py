"""
Identity of the caller.

Tokens are issued by the external auth service. We only verify the signature
and read the identity claims: ``sub`` (or ``_id``), ``email`` and ``name``.
"""
import logging
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from codecollab import config
from codecollab.models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class InvalidToken(Exception):
    pass


def decode_token(token: Optional[str]) -> User:
    if not token:
        raise InvalidToken("Missing token")
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise InvalidToken(str(e)) from e

    user_id = claims.get("sub") or claims.get("_id")
    if not user_id:
        raise InvalidToken("Token has no subject")
    return User(
        id=str(user_id),
        email=claims.get("email"),
        displayName=claims.get("name") or claims.get("email"),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> User:
    token = credentials.credentials if credentials else None
    try:
        return decode_token(token)
    except InvalidToken as e:
        logger.info("Rejected request: %s", e)
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
