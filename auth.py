from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import ACCESS_TOKEN_EXPIRE_MINUTES, BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_SECRET
from errors import AuthInvalid, AuthRequired, ForbiddenRole

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


class Identity(BaseModel):
    id: str
    email: str
    role: str = "user"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def issue_token(user_id: str, email: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": user_id, "email": email, "role": role}, expires_delta)


def verify_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthInvalid()
    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        raise AuthInvalid()
    return Identity(id=user_id, email=email, role=payload.get("role") or "user")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def identity_from_header(authorization: Optional[str]) -> Identity:
    token = bearer_token(authorization)
    if token is None:
        raise AuthRequired()
    return verify_token(token)


def optional_identity(authorization: Optional[str]) -> Optional[Identity]:
    """Identity for callers that sent a credential, None for anonymous ones."""
    if not authorization:
        return None
    return identity_from_header(authorization)


def require_role(identity: Identity, *roles: str) -> Identity:
    if identity.role not in roles:
        raise ForbiddenRole()
    return identity
