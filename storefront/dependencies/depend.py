from typing import Any, Dict
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from loguru import logger

from storefront.core.config import settings
from storefront.core.metrics import AUTH_TOKEN_VALIDATION_TOTAL


bearer_scheme = HTTPBearer()


def _auth_result(result: str) -> None:
    AUTH_TOKEN_VALIDATION_TOTAL.labels(
        service=settings.SERVICE_NAME,
        result=result,
    ).inc()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def authentication_get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Dict[str, Any]:
    _auth_result("attempt")
    token = credentials.credentials
    logger.info("Validating access token for current user")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Access token expired during validation")
        _auth_result("expired")
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        logger.error("Invalid access token during validation")
        _auth_result("invalid")
        raise _unauthorized("Invalid token")

    if not payload.get("id"):
        logger.error("Access token has no 'id' claim")
        _auth_result("invalid")
        raise _unauthorized("Invalid token")

    logger.info(
        "Access token successfully validated for user_id='{user_id}', name='{name}'",
        user_id=payload.get("id"),
        name=payload.get("sub"),
    )
    _auth_result("success")
    return {
        "id": payload.get("id"),
        "name": payload.get("sub"),
        "email": payload.get("email"),
    }


def current_user_id(
    current_user: Dict[str, Any] = Depends(authentication_get_current_user),
) -> UUID:
    raw = current_user["id"]
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw))
    except ValueError:
        logger.error("Token 'id' claim is not a UUID: {raw}", raw=raw)
        _auth_result("invalid")
        raise _unauthorized("Invalid token")
