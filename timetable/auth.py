import logging
from dataclasses import dataclass, asdict
from typing import Optional

import bcrypt
from fastapi import Depends, Header
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy.orm import Session

from .config import SECRET_KEY, TOKEN_MAX_AGE
from .db import get_db
from .errors import AuthenticationError
from .models import User

logger = logging.getLogger(__name__)

_serializer = URLSafeTimedSerializer(SECRET_KEY, salt="access-token")


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, rebuilt from the bearer token on every request."""
    user_id: int
    email: str
    role: str
    group_id: Optional[int] = None
    teacher_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"

    @property
    def is_student(self) -> bool:
        return self.role == "student"

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, email=user.email, role=user.role,
                   group_id=user.group_id, teacher_id=user.teacher_id)

    def to_dict(self) -> dict:
        return asdict(self)


# Password hashing
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))


# Issue a token carrying the identity
def create_access_token(identity: Identity) -> str:
    payload = {
        "userId": identity.user_id,
        "email": identity.email,
        "role": identity.role,
        "groupId": identity.group_id,
        "teacherId": identity.teacher_id,
    }
    return _serializer.dumps(payload)

def decode_access_token(token: str, max_age: int = TOKEN_MAX_AGE) -> Identity:
    try:
        payload = _serializer.loads(token, max_age=max_age)
    except SignatureExpired:
        raise AuthenticationError("Token expired")
    except BadSignature:
        raise AuthenticationError("Invalid token")
    try:
        return Identity(user_id=payload["userId"], email=payload["email"], role=payload["role"],
                        group_id=payload.get("groupId"), teacher_id=payload.get("teacherId"))
    except (KeyError, TypeError):
        raise AuthenticationError("Invalid token")


def authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(password, user.password):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials")
    logger.info("User %s logged in as %s", user.email, user.role)
    return user


# FastAPI dependency: "Authorization: Bearer <token>" -> Identity
def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    if not authorization:
        raise AuthenticationError("Authorization required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization required")
    return decode_access_token(token.strip())


def get_current_user(identity: Identity = Depends(get_current_identity),
                     db: Session = Depends(get_db)) -> User:
    user = db.query(User).get(identity.user_id)
    if not user:
        raise AuthenticationError("User no longer exists")
    return user


# Identity from the stored user row; a deleted teacher link drops its authority at once
def get_verified_identity(user: User = Depends(get_current_user)) -> Identity:
    return Identity.from_user(user)
