from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.exceptions import JOSEError, JWTClaimsError
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .crud import get_user_by_email
from .database import get_db
from .errors import (
    AuthError,
    BadSignature,
    ConfigurationError,
    CredentialStoreError,
    MalformedToken,
    MissingToken,
    TokenExpired,
    UnknownSubject,
    WrongTokenType,
)
from .models import User

logger = structlog.get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return whether ``plain_password`` matches the stored hash.

    A mismatch is ``False``. A stored hash that cannot be parsed is a server
    fault and raises ``CredentialStoreError``.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        raise CredentialStoreError(detail=type(e).__name__) from e


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class SessionIssuer:
    """Signs short-lived access tokens and longer-lived refresh tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ConfigurationError("JWT secret is not configured")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utcnow) -> "SessionIssuer":
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            clock=clock,
        )

    def _claims(self, subject: str, token_type: str, issued_at: datetime, ttl: timedelta) -> dict:
        return {
            "sub": subject,
            "type": token_type,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
            "jti": uuid.uuid4().hex,
        }

    def _sign(self, claims: dict) -> str:
        try:
            return jwt.encode(claims, self._secret, algorithm=self._algorithm)
        except JOSEError as e:
            raise ConfigurationError("Error generating token", detail=str(e)) from e

    def issue(self, subject: str) -> TokenPair:
        now = self._clock()
        return TokenPair(
            access_token=self._sign(self._claims(subject, ACCESS, now, self.access_ttl)),
            refresh_token=self._sign(self._claims(subject, REFRESH, now, self.refresh_ttl)),
        )


class AccessGuard:
    """Validates presented tokens and resolves them to a live user.

    Every rejection raises a distinct ``AuthError`` subclass. Expiry is judged
    by the injected clock, and only after the signature checks out.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", clock: Clock = utcnow):
        if not secret:
            raise ConfigurationError("JWT secret is not configured")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utcnow) -> "AccessGuard":
        return cls(settings.jwt_secret, algorithm=settings.jwt_algorithm, clock=clock)

    def decode(self, token: Optional[str], expected_type: str = ACCESS) -> dict:
        if not token:
            raise MissingToken()

        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as e:
            raise MalformedToken(detail=str(e)) from e

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError as e:
            raise MalformedToken(detail=str(e)) from e
        except JWTError as e:
            raise BadSignature() from e

        exp = payload.get("exp")
        if not isinstance(exp, int):
            raise MalformedToken(detail="exp claim missing")
        if self._clock().timestamp() >= exp:
            raise TokenExpired()

        if payload.get("type") != expected_type:
            raise WrongTokenType(detail={"expected": expected_type, "got": payload.get("type")})

        subject = payload.get("sub")
        if not subject:
            raise MalformedToken(detail="sub claim missing")
        return payload

    def authenticate(self, db: Session, token: Optional[str], expected_type: str = ACCESS) -> User:
        try:
            payload = self.decode(token, expected_type=expected_type)
            user = get_user_by_email(db, email=payload["sub"])
            if user is None:
                raise UnknownSubject()
        except AuthError as e:
            logger.info("Token rejected", reason=e.reason)
            raise
        return user


bearer_scheme = HTTPBearer(auto_error=False)


def get_session_issuer(request: Request) -> SessionIssuer:
    return request.app.state.session_issuer


def get_access_guard(request: Request) -> AccessGuard:
    return request.app.state.access_guard


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    guard: AccessGuard = Depends(get_access_guard),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials if credentials else None
    return guard.authenticate(db, token)
