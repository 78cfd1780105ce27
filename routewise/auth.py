"""
Username/password authentication with bcrypt hashes and signed JWTs.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

from routewise.config import (
    BCRYPT_ROUNDS,
    JWT_AUDIENCE,
    JWT_ISSUER,
    JWT_SECRET,
    jwt_expiry_seconds,
)
from routewise.storage import MemStorage, User

LOGGER = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


class AuthError(Exception):
    """Authentication or registration failure with a client-facing message."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthService:
    def __init__(
        self,
        storage: MemStorage,
        secret: str = JWT_SECRET,
        expires_in: Optional[int] = None,
        rounds: int = BCRYPT_ROUNDS,
    ):
        self.storage = storage
        self.secret = secret
        self.expires_in = expires_in if expires_in is not None else jwt_expiry_seconds()
        self.rounds = rounds

    # ---------- passwords ----------

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    @staticmethod
    def check_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    # ---------- tokens ----------

    def generate_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "userId": user.id,
            "username": user.username,
            "iat": now,
            "exp": now + timedelta(seconds=self.expires_in),
            "iss": JWT_ISSUER,
            "aud": JWT_AUDIENCE,
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(token, self.secret, algorithms=["HS256"], audience=JWT_AUDIENCE, issuer=JWT_ISSUER)
        except jwt.PyJWTError as exc:
            LOGGER.info("Token verification failed: %s", exc)
            return None

    def get_user_from_token(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        payload = self.verify_token(token)
        if not payload:
            return None
        user_id = payload.get("userId")
        if not isinstance(user_id, int):
            return None
        return self.storage.get_user(user_id)

    # ---------- flows ----------

    def register(self, username: str, password: str) -> Dict[str, Any]:
        username = (username or "").strip().lower()
        if len(username) < MIN_USERNAME_LENGTH:
            raise AuthError(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise AuthError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
        if self.storage.get_user_by_username(username) is not None:
            raise AuthError("Username already exists", status_code=409)

        user = self.storage.create_user(username=username, password=self.hash_password(password))
        LOGGER.info("Registered user %s (id=%d)", user.username, user.id)
        return {"user": user.public(), "token": self.generate_token(user)}

    def login(self, username: str, password: str) -> Dict[str, Any]:
        user = self.storage.get_user_by_username((username or "").strip().lower())
        if user is None or not self.check_password(password or "", user.password):
            raise AuthError("Invalid credentials", status_code=401)
        return {"user": user.public(), "token": self.generate_token(user)}

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self.storage.get_user(user_id)
        if user is None:
            raise AuthError("User not found", status_code=404)
        if not self.check_password(current_password or "", user.password):
            raise AuthError("Current password is incorrect", status_code=401)
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if len(new_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise AuthError(f"New password must be at most {MAX_PASSWORD_BYTES} bytes long")
        self.storage.update_user_password(user_id, self.hash_password(new_password))
        LOGGER.info("Password changed for user id=%d", user_id)