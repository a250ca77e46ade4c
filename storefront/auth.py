from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import get_settings

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    settings = get_settings()
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Dict:
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise credentials_exception

    sub = payload.get("sub")
    role = payload.get("role")
    if sub is None or role not in {ROLE_ADMIN, ROLE_CUSTOMER}:
        raise credentials_exception
    try:
        actor_id = int(sub)
    except (TypeError, ValueError):
        raise credentials_exception
    return {"id": actor_id, "role": role, "name": payload.get("name")}


def get_current_actor(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict:
    return decode_token(credentials.credentials)


def get_current_admin(current: Dict = Depends(get_current_actor)) -> Dict:
    if current["role"] != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Admin access required.",
        )
    return current


def get_current_customer(current: Dict = Depends(get_current_actor)) -> Dict:
    if current["role"] != ROLE_CUSTOMER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Customer access required.",
        )
    return current


def get_optional_customer(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[Dict]:
    """Guest checkout: no token means no customer; a bad token is still rejected."""
    if credentials is None:
        return None
    actor = decode_token(credentials.credentials)
    return actor if actor["role"] == ROLE_CUSTOMER else None
