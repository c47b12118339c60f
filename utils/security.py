from datetime import datetime, timedelta
from typing import Iterable, Optional
from jose import JWTError, jwt
from config import settings
from fastapi import HTTPException, status


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "iat": datetime.utcnow()})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    return encoded_jwt


def create_actor_token(user_id: int, role: str, permissions: Iterable[str] = (),
                       expires_delta: Optional[timedelta] = None) -> str:
    """Token carrying the claims get_current_actor reads (sub, role, permissions)"""
    return create_access_token(
        {"sub": str(user_id), "role": role, "permissions": list(permissions)},
        expires_delta=expires_delta,
    )


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token

    Raises HTTPException with 401 status if token is invalid.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
