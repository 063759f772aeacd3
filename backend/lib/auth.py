"""
Authentication utilities for JWT validation
"""
import asyncio
import os
from typing import Any, Dict, Optional

from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv

from .logger import get_logger
from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"

logger = get_logger("backend.lib.auth")


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    """
    Validate a Supabase access token locally.

    Args:
        token: Bearer token
        secret: Supabase JWT secret

    Returns:
        dict: id, email, role and the raw token

    Raises:
        HTTPException: If the token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError as e:
        logger.warning("Token rejected", data={"reason": str(e)})
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")

    return {
        "id": user_id,
        "email": payload.get("email"),
        "role": payload.get("role", JWT_AUDIENCE),
        "token": token,
    }


async def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """
    Validate JWT token and return user info

    The token is checked locally when SUPABASE_JWT_SECRET is set, otherwise
    Supabase is asked to resolve it.

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: User information including id, email, role, token

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        return decode_token(token, secret)

    try:
        supabase = get_supabase_client()
        user_response = await asyncio.to_thread(supabase.auth.get_user, token)

        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = user_response.user
        return {
            "id": user.id,
            "email": user.email,
            "role": getattr(user, "role", None) or JWT_AUDIENCE,
            "token": token,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Auth error", error=e)
        raise HTTPException(status_code=401, detail="Could not validate credentials")
