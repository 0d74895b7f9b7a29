import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Cookie, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

from database import RecordNotFound, RecordStore, get_records
from filters import Field

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7
AUTH_COOKIE = "auth_token"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    avatar_url: Optional[str] = None


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def user_from_token(records: RecordStore, token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if user_id is None:
        return None
    try:
        user = records.get_one("user", user_id)
    except RecordNotFound:
        return None
    return UserOut(id=user["id"], name=user.get("name"), email=user.get("email"), avatar_url=user.get("avatar_url"))


def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    auth_token: Optional[str] = Cookie(None),
    records: RecordStore = Depends(get_records),
) -> Optional[UserOut]:
    """Signed-in user from the bearer header or the auth cookie, None for guests."""
    token = token or auth_token
    if not token:
        return None
    return user_from_token(records, token)


def get_current_user(user: Optional[UserOut] = Depends(get_optional_user)) -> UserOut:
    if user is None:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


def register_user(records: RecordStore, name: str, email: str, password: str) -> UserOut:
    if records.get_first("user", Field("email") == email):
        raise HTTPException(400, "Email already registered")
    user = records.create("user", {
        "name": name,
        "email": email,
        "password_hash": get_password_hash(password),
        "avatar_url": None,
        "is_active": True,
    })
    return UserOut(id=user["id"], name=name, email=email)


def authenticate(records: RecordStore, email: str, password: str) -> Optional[dict]:
    user = records.get_first("user", Field("email") == email)
    if not user or not verify_password(password, user.get("password_hash", "")):
        return None
    return user
