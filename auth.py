from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import UserStore, to_object_id
from errors import AuthenticationError, ConflictError, NotFoundError
from schemas import User

logger = structlog.get_logger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

# Auth setup
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Helpers
def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # bcrypt refuses some inputs outright (NUL bytes); that is a mismatch
        return False


class AuthService:
    """Registration, login and password changes against the users collection."""

    def __init__(self, users: UserStore, secret_key: str):
        self.users = users
        self.secret_key = secret_key

    def create_access_token(self, user_id: str, expires_delta: Optional[timedelta] = None) -> str:
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
        return jwt.encode({"userId": str(user_id), "exp": expire}, self.secret_key, algorithm=ALGORITHM)

    def decode_access_token(self, token: str) -> str:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM], options={"require_exp": True})
        except JWTError:
            raise AuthenticationError("Token is not valid")
        user_id = payload.get("userId")
        if to_object_id(user_id) is None:
            raise AuthenticationError("Token is not valid")
        return user_id

    def register(self, username: str, password: str) -> str:
        # the unique index on username catches a concurrent duplicate insert
        if self.users.find_by_username(username):
            raise ConflictError("User already exists")
        user_id = self.users.create(User(username=username, password_hash=get_password_hash(password)))
        logger.info("user_registered", user_id=user_id)
        return user_id

    def login(self, username: str, password: str) -> str:
        user = self.users.find_by_username(username)
        if not user or not verify_password(password, user.get("passwordHash", "")):
            logger.info("login_failed")
            raise AuthenticationError("Invalid credentials")
        logger.info("login_succeeded", user_id=str(user["_id"]))
        return self.create_access_token(str(user["_id"]))

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """
        Replace the stored hash. Tokens issued before the change stay valid
        until they expire; there is no revocation list.
        """
        user = self.users.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        if not verify_password(current_password, user.get("passwordHash", "")):
            raise AuthenticationError("Current password is incorrect")
        if not self.users.set_password_hash(user["_id"], get_password_hash(new_password)):
            raise NotFoundError("User not found")
        logger.info("password_changed", user_id=str(user["_id"]))


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def get_current_user_id(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
) -> str:
    """Resolve the bearer token to a user id without touching the database."""
    if not token:
        raise AuthenticationError("No token, authorization denied")
    return get_auth_service(request).decode_access_token(token)
