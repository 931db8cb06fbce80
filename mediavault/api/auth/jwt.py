"""
JWT Token Handling

Verify bearer tokens issued by the auth provider. Token creation is kept
for service-to-service calls and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from mediavault.api.config import settings
from mediavault.api.roles import Role


def create_access_token(
    user_id: str,
    email: str,
    role: Union[Role, str] = Role.USER,
) -> str:
    """
    Create a new access token.

    Args:
        user_id: User's id
        email: User's email
        role: User's role

    Returns:
        Encoded JWT access token
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role.value if isinstance(role, Role) else str(role),
        "iat": now,
        "exp": expire,
        "type": "access",
    }

    return jwt.encode(
        payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )


def verify_token(token: str, token_type: str = "access") -> Optional[dict]:
    """
    Verify and decode a JWT token.

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        return None
    except InvalidTokenError:
        return None

    if payload.get("type") != token_type:
        return None
    return payload
